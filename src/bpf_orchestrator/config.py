"""
Process configuration.

Core reconcilers remain free of environment access.
The entry point builds these configs once at startup and fails fast with
ConfigurationError when something required is missing, since no reconciliation
can proceed without it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from bpf_orchestrator.core.errors import ConfigurationError


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class AgentConfig:
    """
    Node agent configuration.

    node_name
    Name of the node this agent runs on. From NODENAME.

    namespace
    Namespace of the agent deployment. From NAMESPACE, informational.

    loader_url
    Base URL of the node local loader. From LOADER_URL.

    loader_timeout_seconds
    Timeout for every loader call. From LOADER_TIMEOUT.

    retry_seconds
    Fixed backoff after a failed pass.
    """

    node_name: str
    loader_url: str
    namespace: str = ""
    loader_timeout_seconds: float = 5.0
    retry_seconds: float = 5.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        env = os.environ if env is None else env

        node_name = env.get("NODENAME", "")
        if not node_name:
            raise ConfigurationError("NODENAME env var not set, cannot determine the agent's node")

        loader_url = env.get("LOADER_URL", "")
        if not loader_url:
            raise ConfigurationError("LOADER_URL env var not set, no loader endpoint to connect to")

        return cls(
            node_name=node_name,
            loader_url=loader_url,
            namespace=env.get("NAMESPACE", ""),
            loader_timeout_seconds=_float_env(env, "LOADER_TIMEOUT", 5.0),
            retry_seconds=_float_env(env, "RETRY_SECONDS", 5.0),
        )


@dataclass(frozen=True)
class OperatorConfig:
    """
    Cluster aggregator configuration.

    retry_seconds
    Fixed backoff for states that still need work.
    """

    retry_seconds: float = 5.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "OperatorConfig":
        env = os.environ if env is None else env
        return cls(retry_seconds=_float_env(env, "RETRY_SECONDS", 5.0))


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging configuration.

    level
    From LOG_LEVEL, info by default, debug includes diff reasons.
    """

    level: str = "info"
    json_format: Optional[bool] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LoggingConfig":
        env = os.environ if env is None else env
        level = env.get("LOG_LEVEL", "info").lower()
        if level not in {"debug", "info", "warning", "error"}:
            raise ConfigurationError(f"LOG_LEVEL must be debug, info, warning or error, got {level!r}")
        return cls(level=level)
