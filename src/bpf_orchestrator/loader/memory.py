"""
In memory loader.

This loader is used for tests and local simulations.
It behaves like the program loading service: a table of live programs keyed
by handle, each remembering the request it was loaded with.

Features
- Sequential handles starting at 1
- Records every load and unload call for assertions
- Can inject failures per call type or per attachment point
- Can rewrite what List reports to simulate drift on the node
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set

from bpf_orchestrator.core.errors import LoaderError
from bpf_orchestrator.core.types import (
    LoaderRecord,
    LoadRequest,
    ProgramKind,
    TcAttachInfo,
    TracepointAttachInfo,
    XdpAttachInfo,
)
from bpf_orchestrator.loader.base import LoaderClient


def attach_point_of(request: LoadRequest) -> str:
    """Interface name or tracepoint a request attaches to."""
    attach = request.attach
    if isinstance(attach, (XdpAttachInfo, TcAttachInfo)):
        return attach.iface
    if isinstance(attach, TracepointAttachInfo):
        return attach.tracepoint
    return ""


@dataclass
class InMemoryLoader(LoaderClient):
    """
    In memory loader.

    fail_load, fail_unload, fail_list
    When True the matching call raises LoaderError.

    fail_load_points
    Attachment points, interface or tracepoint, whose loads raise LoaderError.

    programs
    Live programs keyed by handle.

    load_calls, unload_calls
    Every accepted request and every unloaded handle, in call order.
    """

    fail_load: bool = False
    fail_unload: bool = False
    fail_list: bool = False
    fail_load_points: Set[str] = field(default_factory=set)
    programs: Dict[int, LoaderRecord] = field(default_factory=dict)
    load_calls: List[LoadRequest] = field(default_factory=list)
    unload_calls: List[int] = field(default_factory=list)
    next_handle: int = 1

    def load(self, request: LoadRequest, timeout: Optional[float] = None) -> int:
        if self.fail_load or attach_point_of(request) in self.fail_load_points:
            raise LoaderError(f"injected load failure for {attach_point_of(request)}")

        if request.map_owner_handle is not None and request.map_owner_handle not in self.programs:
            raise LoaderError(f"map owner handle {request.map_owner_handle} is not loaded")

        handle = self.next_handle
        self.next_handle += 1
        self.programs[handle] = LoaderRecord(handle=handle, request=request)
        self.load_calls.append(request)
        return handle

    def unload(self, handle: int, timeout: Optional[float] = None) -> None:
        if self.fail_unload:
            raise LoaderError(f"injected unload failure for handle {handle}")
        if handle not in self.programs:
            raise LoaderError(f"handle {handle} is not loaded")

        del self.programs[handle]
        self.unload_calls.append(handle)

    def list(self, kind: ProgramKind, timeout: Optional[float] = None) -> List[LoaderRecord]:
        if self.fail_list:
            raise LoaderError("injected list failure")
        return [rec for _, rec in sorted(self.programs.items()) if rec.request.kind == kind]

    def drift(self, handle: int, **changes: object) -> None:
        """
        Rewrite the request reported for a live program.

        This simulates a program that was changed on the node behind the
        reconciler's back.
        """
        rec = self.programs[handle]
        self.programs[handle] = replace(rec, request=replace(rec.request, **changes))
