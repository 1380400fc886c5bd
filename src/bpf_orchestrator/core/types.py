"""
Core types.

This file defines the shared data structures used across both reconcilers.

Important design choice
We keep these types transport neutral.

Transport neutral means:
The loader client may speak JSON over HTTP or anything else, but the
reconcilers only ever see LoadRequest and LoaderRecord.

Object model
ProgramSpec is the user authored, cluster scoped object.
OutcomeObject is the per node, per attachment record written by the node agent.
NodeRecord is the observed view of one machine.

Every stored object carries an ObjectMeta. Parent and child are linked by the
owner label on the outcome object, never by embedded back pointers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class ProgramKind(str, Enum):
    """
    Program kinds handled by the fleet.

    xdp
      Ordered ingress filter chained on a network interface.

    tc
      Ordered traffic control filter, ingress or egress.

    tracepoint
      Kernel trace hook, no ordering.
    """

    xdp = "xdp"
    tc = "tc"
    tracepoint = "tracepoint"

    @property
    def loader_id(self) -> int:
        """Numeric program type understood by the loader."""
        return _LOADER_IDS[self]


_LOADER_IDS = {
    ProgramKind.tc: 3,
    ProgramKind.tracepoint: 5,
    ProgramKind.xdp: 6,
}


class Direction(str, Enum):
    ingress = "ingress"
    egress = "egress"


class PullPolicy(str, Enum):
    always = "Always"
    if_not_present = "IfNotPresent"
    never = "Never"


@dataclass
class ObjectMeta:
    """
    Bookkeeping shared by every stored object.

    finalizers
    Markers that block physical deletion until the owning reconciler removes them.

    deletion_timestamp
    Set by the store when deletion is requested while finalizers remain.

    resource_version
    Optimistic concurrency token. The store rejects updates carrying a stale value.
    """

    name: str
    labels: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[float] = None
    resource_version: int = 0

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None


@dataclass
class Condition:
    """
    Named state recorded on an object.

    type is the machine readable state, for example Loaded or ReconcileError.
    reason and message are for operators.
    """

    type: str
    status: str
    reason: str
    message: str
    last_transition: float = 0.0


@dataclass
class LabelRequirement:
    """
    One set based label requirement.

    operator is one of In, NotIn, Exists, DoesNotExist.
    """

    key: str
    operator: str
    values: List[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """
    Node selection predicate.

    An empty selector selects every node.
    """

    match_labels: Dict[str, str] = field(default_factory=dict)
    match_expressions: List[LabelRequirement] = field(default_factory=list)


@dataclass
class InterfaceSelector:
    """
    Attachment point selector for interface bound kinds.

    Exactly one of interfaces or primary_node_interface must be set.
    """

    interfaces: Optional[List[str]] = None
    primary_node_interface: bool = False


@dataclass(frozen=True)
class ImageBytecode:
    """
    Bytecode published as a container image.

    Only url affects what runs. pull_policy and image_pull_secret only
    control how the loader fetches it.
    """

    url: str
    pull_policy: PullPolicy = PullPolicy.if_not_present
    image_pull_secret: Optional[str] = None


@dataclass
class BytecodeSelector:
    """Where the bytecode lives. Exactly one of path or image."""

    path: Optional[str] = None
    image: Optional[ImageBytecode] = None


@dataclass
class ProgramSpec:
    """
    User declared program to attach somewhere in the fleet.

    Common fields apply to every kind. Kind specific fields are ignored for
    kinds that do not use them:

    interface_selector, priority, proceed_on
    xdp and tc

    direction
    tc only

    tracepoints
    tracepoint only, one attachment point per name

    priority is only a relative ordering signal. The position in the chain is
    owned by the loader and never stored here.

    map_owner names another spec whose shared maps this program must reuse.
    """

    meta: ObjectMeta
    kind: ProgramKind
    entry_point: str
    bytecode: BytecodeSelector
    node_selector: LabelSelector = field(default_factory=LabelSelector)
    global_data: Dict[str, bytes] = field(default_factory=dict)
    map_owner: Optional[str] = None

    interface_selector: InterfaceSelector = field(default_factory=InterfaceSelector)
    priority: int = 1000
    direction: Optional[Direction] = None
    proceed_on: List[str] = field(default_factory=list)

    tracepoints: List[str] = field(default_factory=list)

    conditions: List[Condition] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.meta.name


@dataclass
class NodeRecord:
    """
    Observed attributes of one machine.

    labels live in meta.labels so node selection reads the same field the
    store indexes on.
    """

    meta: ObjectMeta
    interfaces: List[str] = field(default_factory=list)
    primary_interface: Optional[str] = None

    @property
    def name(self) -> str:
        return self.meta.name


@dataclass
class OutcomeObject:
    """
    Per node, per attachment record of the last reconciliation result.

    owner, node and attach_point form the identity triple. The object name is
    derived from it, see outcome_name.

    correlation_id is generated once at creation and travels through the
    loader as metadata so List results can be matched back to this object.

    handle is the last known loader handle. It is a cache only. The live
    record from List is always the source of truth.
    """

    meta: ObjectMeta
    owner: str
    node: str
    kind: ProgramKind
    attach_point: str
    correlation_id: str
    handle: Optional[int] = None
    conditions: List[Condition] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.meta.name


def outcome_name(spec_name: str, node_name: str, attach_point: str) -> str:
    """Deterministic outcome object name for an identity triple."""
    return f"{spec_name}-{node_name}-{attach_point}"


@dataclass(frozen=True)
class BytecodeLocation:
    """Resolved bytecode reference handed to the loader."""

    file: Optional[str] = None
    image: Optional[ImageBytecode] = None


@dataclass(frozen=True)
class XdpAttachInfo:
    iface: str
    priority: int
    proceed_on: Tuple[int, ...]


@dataclass(frozen=True)
class TcAttachInfo:
    iface: str
    priority: int
    direction: Direction
    proceed_on: Tuple[int, ...]


@dataclass(frozen=True)
class TracepointAttachInfo:
    tracepoint: str


AttachInfo = Union[XdpAttachInfo, TcAttachInfo, TracepointAttachInfo]


@dataclass(frozen=True)
class LoadRequest:
    """
    Everything the loader needs to load one attachment.

    metadata is bookkeeping. It carries the correlation id and the spec name and
    is never compared when deciding whether a live program is correct.
    """

    bytecode: BytecodeLocation
    entry_point: str
    kind: ProgramKind
    attach: AttachInfo
    metadata: Dict[str, str] = field(default_factory=dict)
    global_data: Dict[str, bytes] = field(default_factory=dict)
    map_owner_handle: Optional[int] = None


@dataclass(frozen=True)
class LoaderRecord:
    """
    One live program as reported by the loader List call.

    position is reported by the loader for display only.
    """

    handle: int
    request: LoadRequest
    position: Optional[int] = None

    @property
    def correlation_id(self) -> str:
        return self.request.metadata.get(UUID_METADATA_KEY, "")


UUID_METADATA_KEY = "uuid"
PROGRAM_NAME_METADATA_KEY = "program_name"

OWNER_LABEL = "owner"
NODE_LABEL = "node"
KIND_LABEL = "kind"


@dataclass(frozen=True)
class ExpectedAttachment:
    """
    One attachment the expander says should exist on a node.

    request has no correlation id yet. The reconciler adds it from the
    outcome object.
    """

    name: str
    attach_point: str
    request: LoadRequest
