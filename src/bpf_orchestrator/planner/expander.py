"""
Attachment expander.

Purpose
Turn one ProgramSpec and one node's observed attributes into the ordered list
of attachments that should exist on that node, each with the exact LoadRequest
the loader would need.

Why a pure function
The node agent recomputes this on every pass. Same spec plus same node
attributes must give the same list in the same order, whatever the loader
currently reports, so repeated passes derive the same outcome object names
instead of creating duplicates.

Input rules
- node not matched by the node selector: empty list, not an error
- xdp and tc: one attachment per selected interface
- tracepoint: one attachment per tracepoint name
- malformed interface selector: SelectorError
- bytecode selector naming neither or both locations: BytecodeSelectorError
- unknown proceed on value: SelectorError

Attach parameters that the spec leaves empty get the loader defaults filled
in here, so a later diff against the loader's resolved record compares like
with like.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from bpf_orchestrator.core.errors import BytecodeSelectorError, SelectorError
from bpf_orchestrator.core.types import (
    PROGRAM_NAME_METADATA_KEY,
    AttachInfo,
    BytecodeLocation,
    BytecodeSelector,
    Direction,
    ExpectedAttachment,
    LoadRequest,
    NodeRecord,
    ProgramKind,
    ProgramSpec,
    TcAttachInfo,
    TracepointAttachInfo,
    XdpAttachInfo,
    outcome_name,
)
from bpf_orchestrator.planner.selectors import interfaces_for, node_matches

XDP_PROCEED_ON: Dict[str, int] = {
    "aborted": 0,
    "drop": 1,
    "pass": 2,
    "tx": 3,
    "redirect": 4,
    "dispatcher_return": 31,
}

TC_PROCEED_ON: Dict[str, int] = {
    "unspec": -1,
    "ok": 0,
    "reclassify": 1,
    "shot": 2,
    "pipe": 3,
    "stolen": 4,
    "queued": 5,
    "repeat": 6,
    "redirect": 7,
    "trap": 8,
    "dispatcher_return": 30,
}

XDP_DEFAULT_PROCEED_ON = ("pass", "dispatcher_return")
TC_DEFAULT_PROCEED_ON = ("pipe", "dispatcher_return")

MIN_PRIORITY = 0
MAX_PRIORITY = 1000


def proceed_on_codes(kind: ProgramKind, names: List[str]) -> Tuple[int, ...]:
    """
    Map proceed on names to loader exit codes.

    Empty input yields the kind's default set. Order follows the input with
    duplicates dropped.
    """
    if kind == ProgramKind.xdp:
        table, defaults = XDP_PROCEED_ON, XDP_DEFAULT_PROCEED_ON
    elif kind == ProgramKind.tc:
        table, defaults = TC_PROCEED_ON, TC_DEFAULT_PROCEED_ON
    else:
        return ()

    codes: List[int] = []
    for name in names or list(defaults):
        if name not in table:
            raise SelectorError(f"{name} is not a valid {kind.value} proceed on value")
        code = table[name]
        if code not in codes:
            codes.append(code)
    return tuple(codes)


def resolve_bytecode(selector: BytecodeSelector) -> BytecodeLocation:
    """Validate a bytecode selector and return the location handed to the loader."""
    if (selector.path is None) == (selector.image is None):
        raise BytecodeSelectorError("bytecode selector must set exactly one of path or image")

    if selector.image is not None:
        if not selector.image.url:
            raise BytecodeSelectorError("bytecode image url is empty")
        return BytecodeLocation(image=selector.image)

    if not selector.path:
        raise BytecodeSelectorError("bytecode path is empty")
    return BytecodeLocation(file=selector.path)


def tracepoint_attach_point(tracepoint: str) -> str:
    """Name safe identity for a tracepoint, syscalls/sys_enter_kill -> syscalls-sys-enter-kill."""
    return tracepoint.replace("/", "-").replace("_", "-")


def attachment_points(spec: ProgramSpec, node: NodeRecord) -> List[Tuple[str, str]]:
    """
    Return (attach point identity, raw target) pairs for a spec on a node.

    The raw target is the interface or tracepoint name passed to the loader.
    This ignores the node selector, the caller decides whether it applies.
    """
    if spec.kind == ProgramKind.tracepoint:
        out: List[Tuple[str, str]] = []
        seen = set()
        for tp in spec.tracepoints:
            ident = tracepoint_attach_point(tp)
            if tp and ident not in seen:
                seen.add(ident)
                out.append((ident, tp))
        return out

    return [(iface, iface) for iface in interfaces_for(spec.interface_selector, node)]


def _attach_info(spec: ProgramSpec, target: str) -> AttachInfo:
    if spec.kind == ProgramKind.tracepoint:
        return TracepointAttachInfo(tracepoint=target)

    if not MIN_PRIORITY <= spec.priority <= MAX_PRIORITY:
        raise SelectorError(f"priority {spec.priority} outside {MIN_PRIORITY}..{MAX_PRIORITY}")

    proceed_on = proceed_on_codes(spec.kind, spec.proceed_on)

    if spec.kind == ProgramKind.xdp:
        return XdpAttachInfo(iface=target, priority=spec.priority, proceed_on=proceed_on)

    if spec.direction is None:
        raise SelectorError("tc program requires a direction")
    return TcAttachInfo(
        iface=target,
        priority=spec.priority,
        direction=Direction(spec.direction),
        proceed_on=proceed_on,
    )


def expand(
    spec: ProgramSpec,
    node: NodeRecord,
    map_owner_handle: Optional[int] = None,
) -> List[ExpectedAttachment]:
    """
    Expand a spec for one node.

    map_owner_handle is the already resolved handle of the map owner, if the
    spec declares one. Resolving it needs loader state, so it is an input here.
    """
    if not node_matches(spec.node_selector, node.meta.labels):
        return []

    bytecode = resolve_bytecode(spec.bytecode)

    out: List[ExpectedAttachment] = []
    for ident, target in attachment_points(spec, node):
        request = LoadRequest(
            bytecode=bytecode,
            entry_point=spec.entry_point,
            kind=spec.kind,
            attach=_attach_info(spec, target),
            metadata={PROGRAM_NAME_METADATA_KEY: spec.name},
            global_data=dict(spec.global_data),
            map_owner_handle=map_owner_handle,
        )
        out.append(
            ExpectedAttachment(
                name=outcome_name(spec.name, node.name, ident),
                attach_point=ident,
                request=request,
            )
        )
    return out
