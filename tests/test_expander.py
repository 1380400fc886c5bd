import pytest

from bpf_orchestrator.core.errors import BytecodeSelectorError, SelectorError
from bpf_orchestrator.core.types import (
    PROGRAM_NAME_METADATA_KEY,
    UUID_METADATA_KEY,
    BytecodeLocation,
    BytecodeSelector,
    Direction,
    ImageBytecode,
    InterfaceSelector,
    LabelSelector,
    NodeRecord,
    ObjectMeta,
    ProgramKind,
    ProgramSpec,
    TcAttachInfo,
    TracepointAttachInfo,
    XdpAttachInfo,
)
from bpf_orchestrator.planner.expander import expand, proceed_on_codes, tracepoint_attach_point


def make_node(labels: dict[str, str] | None = None) -> NodeRecord:
    return NodeRecord(
        meta=ObjectMeta(name="node1", labels=dict(labels or {})),
        interfaces=["eth0", "eth1"],
        primary_interface="eth0",
    )


def make_spec(kind: ProgramKind = ProgramKind.xdp, **overrides) -> ProgramSpec:  # type: ignore[no-untyped-def]
    fields = {
        "meta": ObjectMeta(name="fw"),
        "kind": kind,
        "entry_point": "pass_all",
        "bytecode": BytecodeSelector(path="/opt/progs/fw.o"),
        "interface_selector": InterfaceSelector(interfaces=["eth0", "eth1"]),
        "priority": 100,
    }
    fields.update(overrides)
    return ProgramSpec(**fields)


def test_xdp_expands_one_attachment_per_interface():
    attachments = expand(make_spec(), make_node())

    assert [a.name for a in attachments] == ["fw-node1-eth0", "fw-node1-eth1"]
    assert [a.attach_point for a in attachments] == ["eth0", "eth1"]

    req = attachments[0].request
    assert req.kind == ProgramKind.xdp
    assert req.entry_point == "pass_all"
    assert req.bytecode == BytecodeLocation(file="/opt/progs/fw.o")
    assert req.attach == XdpAttachInfo(iface="eth0", priority=100, proceed_on=(2, 31))
    assert req.metadata == {PROGRAM_NAME_METADATA_KEY: "fw"}
    assert UUID_METADATA_KEY not in req.metadata


def test_expand_is_deterministic():
    spec = make_spec(global_data={"GLOBAL_u8": b"\x01"})
    node = make_node()
    assert expand(spec, node) == expand(spec, node)


def test_unselected_node_expands_to_nothing():
    spec = make_spec(node_selector=LabelSelector(match_labels={"role": "edge"}))
    assert expand(spec, make_node()) == []
    assert len(expand(spec, make_node({"role": "edge"}))) == 2


def test_tc_carries_direction_and_default_proceed_on():
    spec = make_spec(ProgramKind.tc, direction=Direction.egress, interface_selector=InterfaceSelector(primary_node_interface=True))
    [att] = expand(spec, make_node())

    assert att.request.attach == TcAttachInfo(iface="eth0", priority=100, direction=Direction.egress, proceed_on=(3, 30))


def test_tc_without_direction_is_rejected():
    with pytest.raises(SelectorError):
        expand(make_spec(ProgramKind.tc), make_node())


def test_tracepoint_expands_per_name():
    spec = make_spec(
        ProgramKind.tracepoint,
        tracepoints=["syscalls/sys_enter_kill", "syscalls/sys_enter_setitimer"],
    )
    attachments = expand(spec, make_node())

    assert [a.name for a in attachments] == [
        "fw-node1-syscalls-sys-enter-kill",
        "fw-node1-syscalls-sys-enter-setitimer",
    ]
    assert attachments[0].request.attach == TracepointAttachInfo(tracepoint="syscalls/sys_enter_kill")


def test_tracepoint_attach_point_is_name_safe():
    assert tracepoint_attach_point("sched/sched_switch") == "sched-sched-switch"


def test_map_owner_handle_is_passed_through():
    [att, _] = expand(make_spec(map_owner="owner"), make_node(), map_owner_handle=7)
    assert att.request.map_owner_handle == 7


def test_image_bytecode():
    image = ImageBytecode(url="quay.io/progs/fw:latest")
    [att, _] = expand(make_spec(bytecode=BytecodeSelector(image=image)), make_node())
    assert att.request.bytecode == BytecodeLocation(image=image)


def test_bytecode_selector_must_name_one_location():
    with pytest.raises(BytecodeSelectorError):
        expand(make_spec(bytecode=BytecodeSelector()), make_node())

    both = BytecodeSelector(path="/opt/a.o", image=ImageBytecode(url="quay.io/a"))
    with pytest.raises(BytecodeSelectorError):
        expand(make_spec(bytecode=both), make_node())


def test_priority_out_of_range():
    with pytest.raises(SelectorError):
        expand(make_spec(priority=1001), make_node())


def test_proceed_on_codes():
    assert proceed_on_codes(ProgramKind.xdp, ["drop", "pass", "drop"]) == (1, 2)
    assert proceed_on_codes(ProgramKind.tc, ["unspec", "trap"]) == (-1, 8)
    assert proceed_on_codes(ProgramKind.tracepoint, ["pass"]) == ()

    with pytest.raises(SelectorError):
        proceed_on_codes(ProgramKind.xdp, ["shot"])
