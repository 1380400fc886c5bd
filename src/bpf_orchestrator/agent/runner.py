"""
Reconcile loop.

Purpose
Continuously:
- ask every controller for its keys
- run the reconcile for each key that is due
- schedule the key again from the result

This is the composition layer of the system.
It stands in for the event delivery layer: level triggered, one key at a
time, so two reconciles for the same key never overlap.

Scheduling rules
A result with requeue_after runs again after that delay, 0.0 meaning the next
cycle. A result without it runs again at the resync interval.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from bpf_orchestrator.agent.reconciler import NodeAgentReconciler, ReconcileResult
from bpf_orchestrator.config import AgentConfig, OperatorConfig
from bpf_orchestrator.core.errors import OrchestratorError
from bpf_orchestrator.core.logging import get_logger
from bpf_orchestrator.core.types import ProgramKind
from bpf_orchestrator.loader.base import LoaderClient
from bpf_orchestrator.operator.aggregator import ClusterAggregator
from bpf_orchestrator.store.base import ObjectStore

logger = get_logger(__name__)


class Controller(Protocol):
    """Anything the loop can drive."""

    @property
    def name(self) -> str:
        """Controller name used in logs and schedule keys."""

    def keys(self) -> List[str]:
        """Keys currently known to the controller."""

    def reconcile(self, key: str) -> ReconcileResult:
        """Reconcile one key."""


@dataclass(frozen=True)
class RunnerConfig:
    """
    Runner configuration.

    interval_seconds
    Resync interval for keys that did not ask for a requeue.

    tick_seconds
    Sleep between cycles in run_forever.
    """

    interval_seconds: float = 30.0
    tick_seconds: float = 1.0


class ReconcileRunner:
    """
    Top level reconcile loop.

    This is not a reconciler.
    This is the runtime loop.
    """

    def __init__(
        self,
        controllers: List[Controller],
        config: RunnerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._controllers = list(controllers)
        self._config = config or RunnerConfig()
        self._clock = clock
        self._sleep = sleep
        self._due: Dict[Tuple[str, str], float] = {}

    def due_at(self, controller: str, key: str) -> Optional[float]:
        return self._due.get((controller, key))

    def run_cycle(self) -> int:
        """
        Execute one cycle over all due keys.

        Returns the number of reconciles that ran.
        """
        ran = 0
        for controller in self._controllers:
            keys = controller.keys()
            known = {(controller.name, k) for k in keys}
            for stale in [sk for sk in self._due if sk[0] == controller.name and sk not in known]:
                del self._due[stale]

            for key in keys:
                now = self._clock()
                if self._due.get((controller.name, key), now) > now:
                    continue

                result = self._run_one(controller, key)
                ran += 1

                if result.requeue_after is not None:
                    delay = result.requeue_after
                else:
                    delay = self._config.interval_seconds
                self._due[(controller.name, key)] = now + delay

        return ran

    def _run_one(self, controller: Controller, key: str) -> ReconcileResult:
        log = logger.bind(controller=controller.name, key=key)
        log.debug("reconcile_start")
        try:
            result = controller.reconcile(key)
        except OrchestratorError as exc:
            log.error("reconcile_failed", error=str(exc))
            return ReconcileResult(requeue_after=self._config.tick_seconds)

        log.debug("reconcile_done", requeue_after=result.requeue_after)
        return result

    def run_until_idle(self, max_cycles: int = 50) -> int:
        """
        Run cycles until no key asks to run right away.

        Useful for tests and one shot local runs. Returns cycles executed.
        """
        for cycle in range(1, max_cycles + 1):
            self.run_cycle()
            now = self._clock()
            if not any(due <= now for due in self._due.values()):
                return cycle
        return max_cycles

    def run_forever(self) -> None:
        """
        Continuous loop execution.
        """

        while True:
            self.run_cycle()
            self._sleep(self._config.tick_seconds)


def build_agent_controllers(
    store: ObjectStore,
    loader: LoaderClient,
    config: AgentConfig,
) -> List[Controller]:
    """One node agent reconciler per program kind."""
    return [
        NodeAgentReconciler(
            kind=kind,
            store=store,
            loader=loader,
            node_name=config.node_name,
            retry_seconds=config.retry_seconds,
            loader_timeout=config.loader_timeout_seconds,
        )
        for kind in ProgramKind
    ]


def build_operator_controllers(store: ObjectStore, config: OperatorConfig) -> List[Controller]:
    return [ClusterAggregator(store=store, retry_seconds=config.retry_seconds)]
