from dataclasses import replace

from bpf_orchestrator.core.types import (
    UUID_METADATA_KEY,
    BytecodeLocation,
    Direction,
    ImageBytecode,
    LoadRequest,
    ProgramKind,
    PullPolicy,
    TcAttachInfo,
    TracepointAttachInfo,
    XdpAttachInfo,
)
from bpf_orchestrator.planner.diff import matches


def make_request() -> LoadRequest:
    return LoadRequest(
        bytecode=BytecodeLocation(file="/opt/progs/fw.o"),
        entry_point="pass_all",
        kind=ProgramKind.tc,
        attach=TcAttachInfo(iface="eth0", priority=100, direction=Direction.ingress, proceed_on=(3, 30)),
        metadata={UUID_METADATA_KEY: "abc", "program_name": "fw"},
        global_data={"GLOBAL_u8": b"\x01"},
    )


def test_identical_requests_match():
    ok, reasons = matches(make_request(), make_request())
    assert ok
    assert reasons == []


def test_bookkeeping_metadata_is_ignored():
    observed = replace(make_request(), metadata={UUID_METADATA_KEY: "other", "program_name": "renamed"})
    ok, _ = matches(make_request(), observed)
    assert ok


def test_proceed_on_is_compared_as_a_set():
    observed = replace(
        make_request(),
        attach=TcAttachInfo(iface="eth0", priority=100, direction=Direction.ingress, proceed_on=(30, 3)),
    )
    ok, _ = matches(make_request(), observed)
    assert ok


def test_priority_change_is_a_mismatch():
    observed = replace(
        make_request(),
        attach=TcAttachInfo(iface="eth0", priority=50, direction=Direction.ingress, proceed_on=(3, 30)),
    )
    ok, reasons = matches(make_request(), observed)
    assert not ok
    assert reasons == ["priority expected 100 observed 50"]


def test_every_runtime_field_is_reported():
    observed = LoadRequest(
        bytecode=BytecodeLocation(file="/opt/progs/other.o"),
        entry_point="drop_all",
        kind=ProgramKind.tc,
        attach=TcAttachInfo(iface="eth1", priority=100, direction=Direction.egress, proceed_on=(2,)),
        metadata={},
        global_data={},
        map_owner_handle=4,
    )
    ok, reasons = matches(make_request(), observed)

    assert not ok
    assert len(reasons) == 7


def test_attach_variant_mismatch():
    observed = replace(make_request(), kind=ProgramKind.xdp, attach=XdpAttachInfo(iface="eth0", priority=100, proceed_on=(3, 30)))
    ok, reasons = matches(make_request(), observed)
    assert not ok
    assert any("attach type" in r for r in reasons)


def test_image_pull_policy_is_not_runtime_behavior():
    expected = LoadRequest(
        bytecode=BytecodeLocation(image=ImageBytecode(url="quay.io/tp:v1")),
        entry_point="trace",
        kind=ProgramKind.tracepoint,
        attach=TracepointAttachInfo(tracepoint="sched/sched_switch"),
    )
    observed = replace(expected, bytecode=BytecodeLocation(image=ImageBytecode(url="quay.io/tp:v1", pull_policy=PullPolicy.always)))
    assert matches(expected, observed)[0]

    moved = replace(expected, bytecode=BytecodeLocation(image=ImageBytecode(url="quay.io/tp:v2")))
    assert not matches(expected, moved)[0]
