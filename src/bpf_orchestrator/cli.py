"""
Command line entry point.

bpf-orchestrator agent      run the node agent reconcilers for NODENAME
bpf-orchestrator operator   run the cluster aggregator
bpf-orchestrator run        run both tiers in one process, for local use
bpf-orchestrator validate   dry run: expand every spec for every node and print
                            the attachments, without touching a loader

The declarative store is external. Locally it is seeded from a json state file,
see bpf_orchestrator.store.static for the schema.

Missing required environment is fatal: the process logs the reason and exits 1.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from bpf_orchestrator.agent.runner import (
    Controller,
    ReconcileRunner,
    RunnerConfig,
    build_agent_controllers,
    build_operator_controllers,
)
from bpf_orchestrator.config import AgentConfig, LoggingConfig, OperatorConfig
from bpf_orchestrator.core.errors import ConfigurationError, SelectorError
from bpf_orchestrator.core.logging import configure_logging, get_logger
from bpf_orchestrator.core.types import NodeRecord, ProgramSpec
from bpf_orchestrator.loader.base import LoaderConfig
from bpf_orchestrator.loader.http import HttpLoaderClient
from bpf_orchestrator.planner.expander import expand
from bpf_orchestrator.store.base import ObjectStore
from bpf_orchestrator.store.static import StaticStateSource

app = typer.Typer(
    name="bpf-orchestrator",
    help="Keep a fleet converged on declared attachable programs.",
    no_args_is_help=True,
)

logger = get_logger(__name__)


def _setup_logging(json_logs: Optional[bool]) -> None:
    try:
        cfg = LoggingConfig.from_env()
    except ConfigurationError as exc:
        configure_logging("info", json_logs)
        logger.error("invalid_configuration", error=str(exc))
        raise typer.Exit(code=1) from exc
    configure_logging(cfg.level, json_logs if json_logs is not None else cfg.json_format)


def _agent_config() -> AgentConfig:
    try:
        return AgentConfig.from_env()
    except ConfigurationError as exc:
        logger.error("invalid_configuration", error=str(exc))
        raise typer.Exit(code=1) from exc


def _operator_config() -> OperatorConfig:
    try:
        return OperatorConfig.from_env()
    except ConfigurationError as exc:
        logger.error("invalid_configuration", error=str(exc))
        raise typer.Exit(code=1) from exc


def _agent_controllers(store: ObjectStore, cfg: AgentConfig) -> List[Controller]:
    loader = HttpLoaderClient(
        base_url=cfg.loader_url,
        config=LoaderConfig(timeout_seconds=cfg.loader_timeout_seconds),
    )
    return build_agent_controllers(store, loader, cfg)


def _serve(controllers: List[Controller], interval: float) -> None:
    ReconcileRunner(controllers, RunnerConfig(interval_seconds=interval)).run_forever()


STATE_FILE = typer.Option(..., "--state-file", "-s", exists=True, dir_okay=False)
INTERVAL = typer.Option(30.0, "--interval", help="Resync interval in seconds.")
JSON_LOGS = typer.Option(None, "--json-logs/--console-logs")


@app.command()
def agent(state_file: Path = STATE_FILE, interval: float = INTERVAL, json_logs: Optional[bool] = JSON_LOGS) -> None:
    """Run the node agent reconcilers for this node."""
    _setup_logging(json_logs)
    cfg = _agent_config()
    store = StaticStateSource(path=state_file).load()

    logger.info("agent_starting", node=cfg.node_name, namespace=cfg.namespace, loader_url=cfg.loader_url)
    _serve(_agent_controllers(store, cfg), interval)


@app.command()
def operator(state_file: Path = STATE_FILE, interval: float = INTERVAL, json_logs: Optional[bool] = JSON_LOGS) -> None:
    """Run the cluster aggregator."""
    _setup_logging(json_logs)
    cfg = _operator_config()
    store = StaticStateSource(path=state_file).load()

    logger.info("operator_starting", retry_seconds=cfg.retry_seconds)
    _serve(build_operator_controllers(store, cfg), interval)


@app.command()
def run(state_file: Path = STATE_FILE, interval: float = INTERVAL, json_logs: Optional[bool] = JSON_LOGS) -> None:
    """Run the node agent reconcilers and the aggregator against one store."""
    _setup_logging(json_logs)
    agent_cfg = _agent_config()
    operator_cfg = _operator_config()
    store = StaticStateSource(path=state_file).load()

    controllers = _agent_controllers(store, agent_cfg)
    controllers += build_operator_controllers(store, operator_cfg)

    logger.info("starting", node=agent_cfg.node_name, loader_url=agent_cfg.loader_url)
    _serve(controllers, interval)


@app.command()
def validate(state_file: Path = STATE_FILE) -> None:
    """Expand every spec for every node and print the expected attachments."""
    store = StaticStateSource(path=state_file).load()

    failed = False
    for spec in store.list(ProgramSpec):
        for node in store.list(NodeRecord):
            try:
                attachments = expand(spec, node)
            except SelectorError as exc:
                typer.echo(f"{spec.name} on {node.name}: error: {exc}")
                failed = True
                continue
            for att in attachments:
                typer.echo(f"{att.name}: {spec.kind.value} {att.attach_point}")

    if failed:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
