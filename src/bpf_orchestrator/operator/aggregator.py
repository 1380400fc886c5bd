"""
Cluster aggregator.

Purpose
Roll the per node outcome objects of one spec into a single condition on the
spec, and own the spec's deletion finalizer.

The aggregator never creates or deletes outcome objects. It only reads them,
writes the spec condition, and removes the spec finalizer once every outcome
object has been released by its node agent.

Convergence
A spec is converged when every node its node selector picks has reported at
least one outcome object and every outcome object on those nodes is Loaded.
That comparison, made by polling, is the only synchronization point across
nodes.
"""

from __future__ import annotations

from typing import List, Optional

from bpf_orchestrator.agent.reconciler import RETRY_SECONDS, ReconcileResult
from bpf_orchestrator.core.conditions import (
    FAILED_OUTCOMES,
    OPERATOR_FINALIZER,
    OutcomeConditionType,
    SpecConditionType,
    add_finalizer,
    agent_finalizer,
    current_condition,
    has_finalizer,
    remove_finalizer,
    set_condition,
)
from bpf_orchestrator.core.errors import NotFoundError, SelectorError, StoreError
from bpf_orchestrator.core.logging import get_logger
from bpf_orchestrator.core.types import OWNER_LABEL, NodeRecord, OutcomeObject, ProgramSpec
from bpf_orchestrator.planner.selectors import selected_nodes
from bpf_orchestrator.store.base import ObjectStore

logger = get_logger(__name__)


class ClusterAggregator:
    """
    Aggregates outcome objects into the spec condition.

    store
    Declarative store holding specs, nodes and outcome objects.

    retry_seconds
    Fixed backoff for every state that still needs work.
    """

    def __init__(self, store: ObjectStore, retry_seconds: float = RETRY_SECONDS) -> None:
        self._store = store
        self._retry_seconds = retry_seconds

    @property
    def name(self) -> str:
        return "aggregator"

    def keys(self) -> List[str]:
        """One key per spec."""
        try:
            return [s.name for s in self._store.list(ProgramSpec)]
        except StoreError as exc:
            logger.error("spec_list_failed", error=str(exc))
            return []

    def reconcile(self, key: str) -> ReconcileResult:
        """
        Reconcile one spec by name.

        Steps
        1) add the spec finalizer on first sight, nothing else
        2) list outcome objects owned by the spec and the current nodes
        3) not deleting and some selected node has not reported: NotYetLoaded
        4) deleting: DeleteError while any outcome object keeps its finalizer,
           otherwise remove the spec finalizer
        5) any failed outcome: ReconcileError
        6) any outcome on a selected node not yet Loaded: NotYetLoaded,
           otherwise ReconcileSuccess
        """
        log = logger.bind(spec=key)

        try:
            spec = self._store.get(ProgramSpec, key)
        except NotFoundError:
            log.debug("spec_not_found_stale_reconcile")
            return ReconcileResult()
        except StoreError as exc:
            log.error("spec_get_failed", error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        deleting = spec.meta.is_being_deleted

        if not deleting and not has_finalizer(spec.meta, OPERATOR_FINALIZER):
            add_finalizer(spec.meta, OPERATOR_FINALIZER)
            try:
                self._store.update(spec)
            except StoreError as exc:
                log.info("spec_finalizer_add_failed", error=str(exc))
                return ReconcileResult(requeue_after=self._retry_seconds)
            log.debug("spec_finalizer_added")
            return ReconcileResult(requeue_after=0.0)

        try:
            outcomes = self._store.list(OutcomeObject, {OWNER_LABEL: spec.name})
            nodes = self._store.list(NodeRecord)
            eligible = selected_nodes(spec.node_selector, nodes)
        except (StoreError, SelectorError) as exc:
            log.error("aggregate_inputs_failed", error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        if not deleting:
            reported = sorted({o.node for o in outcomes if o.node in eligible})
            if reported != eligible:
                missing = [n for n in eligible if n not in reported]
                log.debug("spec_not_yet_loaded", missing=missing)
                return self._update_status(spec.name, SpecConditionType.not_yet_loaded, "")

        finalized = [o.name for o in outcomes if has_finalizer(o.meta, agent_finalizer(o.kind))]
        failed = [o.name for o in outcomes if self._is_failed(o)]

        if deleting:
            if not finalized:
                return self._remove_finalizer(spec.name)
            return self._update_status(
                spec.name,
                SpecConditionType.delete_error,
                f"Program deletion failed on the following outcome objects: {finalized}",
            )

        if failed:
            return self._update_status(
                spec.name,
                SpecConditionType.reconcile_error,
                f"Program reconciliation failed on the following outcome objects: {failed}",
            )

        pending = [o.name for o in outcomes if o.node in eligible and not self._is_loaded(o)]
        if pending:
            log.debug("spec_not_yet_loaded", pending=pending)
            return self._update_status(spec.name, SpecConditionType.not_yet_loaded, "")

        return self._update_status(spec.name, SpecConditionType.reconcile_success, "")

    def _is_loaded(self, obj: OutcomeObject) -> bool:
        cond = current_condition(obj.conditions)
        return cond is not None and cond.type == OutcomeConditionType.loaded.value

    def _is_failed(self, obj: OutcomeObject) -> bool:
        cond = current_condition(obj.conditions)
        if cond is None:
            return False
        try:
            return OutcomeConditionType(cond.type) in FAILED_OUTCOMES
        except ValueError:
            return False

    def _update_status(self, name: str, cond: SpecConditionType, message: str) -> ReconcileResult:
        """
        Set the spec condition on a fresh copy of the spec.

        Every state except ReconcileSuccess is retried after the backoff.
        """
        requeue: Optional[float] = None if cond == SpecConditionType.reconcile_success else self._retry_seconds

        try:
            spec = self._store.get(ProgramSpec, name)
        except StoreError as exc:
            logger.info("spec_refresh_failed", spec=name, error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        if not set_condition(spec.conditions, cond.condition(message)):
            return ReconcileResult(requeue_after=requeue)

        try:
            self._store.update(spec)
        except StoreError as exc:
            logger.info("spec_status_update_failed", spec=name, error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        logger.info("spec_condition_set", spec=name, condition=cond.value)
        return ReconcileResult(requeue_after=requeue)

    def _remove_finalizer(self, name: str) -> ReconcileResult:
        try:
            spec = self._store.get(ProgramSpec, name)
        except StoreError as exc:
            logger.info("spec_refresh_failed", spec=name, error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        if remove_finalizer(spec.meta, OPERATOR_FINALIZER):
            try:
                self._store.update(spec)
            except StoreError as exc:
                logger.error("spec_finalizer_remove_failed", spec=name, error=str(exc))
                return ReconcileResult(requeue_after=self._retry_seconds)

        logger.info("spec_finalizer_removed", spec=name)
        return ReconcileResult()
