import json
from typing import Any, List
from urllib.error import URLError

import pytest

import bpf_orchestrator.loader.http as http_mod
from bpf_orchestrator.core.errors import LoaderError
from bpf_orchestrator.core.serialization import load_request_to_json
from bpf_orchestrator.core.types import (
    BytecodeLocation,
    Direction,
    LoadRequest,
    ProgramKind,
    TcAttachInfo,
)
from bpf_orchestrator.loader.base import LoaderConfig
from bpf_orchestrator.loader.http import HttpLoaderClient


class FakeResponse:
    def __init__(self, body: str) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body.encode("utf-8")

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *args: Any) -> None:
        return None


def make_request() -> LoadRequest:
    return LoadRequest(
        bytecode=BytecodeLocation(file="/opt/progs/fw.o"),
        entry_point="pass_all",
        kind=ProgramKind.tc,
        attach=TcAttachInfo(iface="eth0", priority=100, direction=Direction.egress, proceed_on=(3, 30)),
        metadata={"uuid": "abc"},
        global_data={"GLOBAL_u8": b"\x01"},
    )


def install(monkeypatch: pytest.MonkeyPatch, body: str) -> List[Any]:
    seen: List[Any] = []

    def fake_urlopen(req: Any, timeout: float) -> FakeResponse:
        seen.append((req, timeout))
        return FakeResponse(body)

    monkeypatch.setattr(http_mod, "urlopen", fake_urlopen)
    return seen


def test_load_posts_tagged_request(monkeypatch: pytest.MonkeyPatch):
    seen = install(monkeypatch, '{"handle": 7}')
    client = HttpLoaderClient(base_url="http://loader:8080/", config=LoaderConfig(timeout_seconds=2.5))

    assert client.load(make_request()) == 7

    req, timeout = seen[0]
    assert req.full_url == "http://loader:8080/load"
    assert req.get_method() == "POST"
    assert timeout == 2.5
    body = json.loads(req.data.decode("utf-8"))
    assert body["attach"]["type"] == "tc"
    assert body["attach"]["direction"] == "egress"
    assert body["global_data"] == {"GLOBAL_u8": "AQ=="}


def test_explicit_timeout_wins(monkeypatch: pytest.MonkeyPatch):
    seen = install(monkeypatch, "{}")
    HttpLoaderClient(base_url="http://loader").unload(7, timeout=0.5)

    req, timeout = seen[0]
    assert req.full_url == "http://loader/unload"
    assert json.loads(req.data.decode("utf-8")) == {"handle": 7}
    assert timeout == 0.5


def test_list_decodes_records(monkeypatch: pytest.MonkeyPatch):
    record = {"handle": 3, "position": 0, "request": load_request_to_json(make_request())}
    seen = install(monkeypatch, json.dumps({"programs": [record]}))

    [rec] = HttpLoaderClient(base_url="http://loader").list(ProgramKind.tc)

    assert seen[0][0].full_url == "http://loader/programs?kind=tc"
    assert rec.handle == 3
    assert rec.position == 0
    assert rec.correlation_id == "abc"
    assert rec.request == make_request()


def test_transport_failure_is_loader_error(monkeypatch: pytest.MonkeyPatch):
    def fail(req: Any, timeout: float) -> FakeResponse:
        raise URLError("connection refused")

    monkeypatch.setattr(http_mod, "urlopen", fail)

    with pytest.raises(LoaderError):
        HttpLoaderClient(base_url="http://loader").list(ProgramKind.xdp)


def test_bad_replies_are_loader_errors(monkeypatch: pytest.MonkeyPatch):
    client = HttpLoaderClient(base_url="http://loader")

    install(monkeypatch, "not json")
    with pytest.raises(LoaderError):
        client.list(ProgramKind.xdp)

    install(monkeypatch, "{}")
    with pytest.raises(LoaderError):
        client.load(make_request())

    install(monkeypatch, json.dumps({"programs": [{"handle": 1, "request": {"kind": "xdp"}}]}))
    with pytest.raises(LoaderError):
        client.list(ProgramKind.xdp)
