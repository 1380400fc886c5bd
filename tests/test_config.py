import pytest

from bpf_orchestrator.config import AgentConfig, LoggingConfig, OperatorConfig
from bpf_orchestrator.core.errors import ConfigurationError


def test_agent_config_from_env():
    cfg = AgentConfig.from_env(
        {"NODENAME": "node1", "LOADER_URL": "http://127.0.0.1:50051", "NAMESPACE": "bpf", "LOADER_TIMEOUT": "2"}
    )

    assert cfg.node_name == "node1"
    assert cfg.loader_url == "http://127.0.0.1:50051"
    assert cfg.namespace == "bpf"
    assert cfg.loader_timeout_seconds == 2.0
    assert cfg.retry_seconds == 5.0


def test_missing_node_name_is_fatal():
    with pytest.raises(ConfigurationError, match="NODENAME"):
        AgentConfig.from_env({"LOADER_URL": "http://loader"})


def test_missing_loader_url_is_fatal():
    with pytest.raises(ConfigurationError, match="LOADER_URL"):
        AgentConfig.from_env({"NODENAME": "node1"})


@pytest.mark.parametrize("raw", ["abc", "0", "-1"])
def test_bad_numbers_are_rejected(raw: str):
    with pytest.raises(ConfigurationError):
        OperatorConfig.from_env({"RETRY_SECONDS": raw})


def test_operator_defaults():
    assert OperatorConfig.from_env({}).retry_seconds == 5.0


def test_logging_level():
    assert LoggingConfig.from_env({"LOG_LEVEL": "DEBUG"}).level == "debug"
    with pytest.raises(ConfigurationError):
        LoggingConfig.from_env({"LOG_LEVEL": "loud"})
