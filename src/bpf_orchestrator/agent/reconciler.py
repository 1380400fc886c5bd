"""
Node agent reconciler.

One instance runs per program kind on every node. A single reconcile handles
every spec of its kind in one pass, so the loader's chain ordering is derived
from a consistent view.

Each pass
1) read this node's record and all specs of the kind from the store
2) list live programs of the kind from the loader, once
3) for every spec, expand it for this node, then drive each attachment
   through load, unload or reload until the loader matches
4) write the result onto the attachment's outcome object

Safety
The loader is the source of truth for what is live. Outcome objects are a cache
of the last result and are matched to live programs by correlation id only.

An outcome object is created, with its correlation id and finalizer, in a pass
that does not load it. The load happens on the next pass, so a correlation id
is always persisted before any program carrying it exists.

A failed attachment is recorded and the pass moves on. The pass then asks to be
retried after the fixed backoff.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from bpf_orchestrator.core.conditions import (
    OutcomeConditionType,
    add_finalizer,
    agent_finalizer,
    current_condition,
    remove_finalizer,
    set_condition,
)
from bpf_orchestrator.core.errors import (
    BytecodeSelectorError,
    LoaderError,
    SelectorError,
    StoreError,
)
from bpf_orchestrator.core.logging import get_logger
from bpf_orchestrator.core.types import (
    KIND_LABEL,
    NODE_LABEL,
    OWNER_LABEL,
    UUID_METADATA_KEY,
    ExpectedAttachment,
    LoaderRecord,
    LoadRequest,
    NodeRecord,
    ObjectMeta,
    OutcomeObject,
    ProgramKind,
    ProgramSpec,
    outcome_name,
)
from bpf_orchestrator.loader.base import LoaderClient
from bpf_orchestrator.planner.diff import matches
from bpf_orchestrator.planner.expander import attachment_points, expand
from bpf_orchestrator.planner.selectors import node_matches
from bpf_orchestrator.store.base import ObjectStore

logger = get_logger(__name__)

RETRY_SECONDS = 5.0

_RETRY_OUTCOMES = frozenset(
    {
        OutcomeConditionType.load_failed,
        OutcomeConditionType.unload_failed,
        OutcomeConditionType.map_owner_not_found,
        OutcomeConditionType.map_owner_not_loaded,
        OutcomeConditionType.bytecode_selector_error,
    }
)


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of one reconcile call.

    requeue_after
    None means nothing more to do until the next event or resync.
    0.0 means run again right away, used after creating objects.
    A positive value is the fixed backoff after a failure.
    """

    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None


class SpecPassResult(str, Enum):
    unchanged = "unchanged"
    updated = "updated"
    requeue = "requeue"


@dataclass(frozen=True)
class MapOwnerStatus:
    """
    Resolved map owner dependency of a spec on one node.

    is_set
    The spec declares a map owner.

    is_found
    The owner has at least one outcome object on this node.

    is_loaded
    Every such object is Loaded with a handle.

    handle
    Loader handle whose maps the dependent program reuses.
    """

    is_set: bool = False
    is_found: bool = False
    is_loaded: bool = False
    handle: Optional[int] = None

    @property
    def blocked(self) -> Optional[OutcomeConditionType]:
        if not self.is_set:
            return None
        if not self.is_found:
            return OutcomeConditionType.map_owner_not_found
        if not self.is_loaded:
            return OutcomeConditionType.map_owner_not_loaded
        return None


class NodeAgentReconciler:
    """
    Reconciles every spec of one program kind on one node.

    store
    Declarative store holding specs, nodes and outcome objects.

    loader
    Client for the node local program loader.

    node_name
    The node this agent runs on. The agent only touches outcome objects
    labelled with this node.

    retry_seconds
    Fixed backoff returned after any failure.

    loader_timeout
    Timeout passed to every loader call.
    """

    def __init__(
        self,
        kind: ProgramKind,
        store: ObjectStore,
        loader: LoaderClient,
        node_name: str,
        retry_seconds: float = RETRY_SECONDS,
        loader_timeout: Optional[float] = None,
    ) -> None:
        self._kind = kind
        self._store = store
        self._loader = loader
        self._node_name = node_name
        self._retry_seconds = retry_seconds
        self._loader_timeout = loader_timeout
        self._finalizer = agent_finalizer(kind)
        self._log = logger.bind(kind=kind.value, node=node_name)

    @property
    def name(self) -> str:
        return f"{self._node_name}/{self._kind.value}-agent"

    @property
    def finalizer(self) -> str:
        return self._finalizer

    def keys(self) -> List[str]:
        """The agent reconciles one key per kind."""
        return [self._kind.value]

    def reconcile(self, key: str = "") -> ReconcileResult:
        """
        Run one full pass for this kind on this node.

        Store and loader failures never escape. They end in a retry after the
        fixed backoff.
        """
        try:
            node = self._store.get(NodeRecord, self._node_name)
            specs = [s for s in self._store.list(ProgramSpec) if s.kind == self._kind]
        except StoreError as exc:
            self._log.error("store_read_failed", error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        if not specs:
            self._log.debug("no_specs_found")
            return ReconcileResult()

        try:
            live = self._loader.list(self._kind, timeout=self._loader_timeout)
        except LoaderError as exc:
            self._log.error("loader_list_failed", error=str(exc))
            return ReconcileResult(requeue_after=self._retry_seconds)

        live_by_id: Dict[str, LoaderRecord] = {}
        for rec in live:
            if rec.correlation_id:
                live_by_id[rec.correlation_id] = rec

        requeue = False
        updated = False
        for spec in sorted(specs, key=lambda s: s.name):
            self._log.debug("reconciling_spec", spec=spec.name)
            result = self._reconcile_spec(spec, node, live_by_id)
            if result == SpecPassResult.requeue:
                requeue = True
            elif result == SpecPassResult.updated:
                updated = True

        if requeue:
            return ReconcileResult(requeue_after=self._retry_seconds)
        if updated:
            return ReconcileResult(requeue_after=0.0)
        return ReconcileResult()

    def _reconcile_spec(
        self,
        spec: ProgramSpec,
        node: NodeRecord,
        live_by_id: Dict[str, LoaderRecord],
    ) -> SpecPassResult:
        log = self._log.bind(spec=spec.name)
        deleting = spec.meta.is_being_deleted

        try:
            selected = node_matches(spec.node_selector, node.meta.labels)
            existing = {
                o.name: o
                for o in self._store.list(
                    OutcomeObject, {OWNER_LABEL: spec.name, NODE_LABEL: node.name}
                )
                if o.kind == self._kind
            }
            map_owner = self._map_owner_status(spec, node)
        except (StoreError, SelectorError) as exc:
            log.error("spec_prepare_failed", error=str(exc))
            return SpecPassResult.requeue

        # A spec that cannot be expanded keeps its attachment identities, each
        # with request None, and every one of them records why.
        wanted: List[Tuple[str, str, Optional[LoadRequest]]] = []
        invalid = OutcomeConditionType.load_failed
        invalid_message = ""
        if selected and not deleting:
            try:
                wanted = [(a.name, a.attach_point, a.request) for a in self._expand(spec, node, map_owner)]
            except SelectorError as exc:
                if isinstance(exc, BytecodeSelectorError):
                    invalid = OutcomeConditionType.bytecode_selector_error
                invalid_message = f"invalid spec: {exc}"
                log.error("expand_failed", error=str(exc))
                try:
                    wanted = [
                        (outcome_name(spec.name, node.name, ident), ident, None)
                        for ident, _ in attachment_points(spec, node)
                    ]
                except SelectorError as inner:
                    log.error("attachment_points_failed", error=str(inner))
                    wanted = [(o.name, o.attach_point, None) for o in existing.values()]

        requeue = bool(invalid_message) and not wanted
        updated = False

        for name, attach_point, request in wanted:
            obj = existing.pop(name, None)
            if obj is None:
                if self._create_outcome(spec, node, name, attach_point):
                    updated = True
                else:
                    requeue = True
                continue

            if request is None:
                cond, handle, message = self._reconcile_invalid(obj, live_by_id, invalid, invalid_message)
            else:
                cond, handle, message = self._reconcile_wanted(
                    obj, self._with_correlation_id(request, obj.correlation_id), live_by_id, map_owner
                )

            if cond in _RETRY_OUTCOMES:
                requeue = True
            if not self._write_status(obj, cond, handle, message):
                requeue = True

        # Anything left is not wanted: the spec is being deleted, the node was
        # deselected, or the attachment point disappeared.
        for obj in existing.values():
            cond, message = self._reconcile_unwanted(obj, live_by_id, deleting=deleting, selected=selected)
            if cond == OutcomeConditionType.unload_failed:
                requeue = True
                if not self._write_status(obj, cond, obj.handle, message):
                    requeue = True
                continue

            if cond == OutcomeConditionType.unloaded:
                if not self._release(obj):
                    requeue = True
                continue

            if not self._write_status(obj, cond, None, message):
                requeue = True

        if requeue:
            return SpecPassResult.requeue
        if updated:
            return SpecPassResult.updated
        return SpecPassResult.unchanged

    def _expand(self, spec: ProgramSpec, node: NodeRecord, map_owner: MapOwnerStatus) -> List[ExpectedAttachment]:
        return expand(spec, node, map_owner_handle=map_owner.handle)

    def _with_correlation_id(self, request: LoadRequest, correlation_id: str) -> LoadRequest:
        metadata = dict(request.metadata)
        metadata[UUID_METADATA_KEY] = correlation_id
        return replace(request, metadata=metadata)

    def _map_owner_status(self, spec: ProgramSpec, node: NodeRecord) -> MapOwnerStatus:
        """
        Resolve the spec's map owner on this node.

        The owner's outcome objects are read from the store. Their condition
        is trusted here because the owner's own agent pass reconciles it
        against the loader.
        """
        if not spec.map_owner:
            return MapOwnerStatus()

        owners = self._store.list(OutcomeObject, {OWNER_LABEL: spec.map_owner, NODE_LABEL: node.name})
        if not owners:
            return MapOwnerStatus(is_set=True)

        for owner in owners:
            cond = current_condition(owner.conditions)
            if cond is None or cond.type != OutcomeConditionType.loaded.value or owner.handle is None:
                return MapOwnerStatus(is_set=True, is_found=True)

        return MapOwnerStatus(is_set=True, is_found=True, is_loaded=True, handle=owners[0].handle)

    def _reconcile_wanted(
        self,
        obj: OutcomeObject,
        request: LoadRequest,
        live_by_id: Dict[str, LoaderRecord],
        map_owner: MapOwnerStatus,
    ) -> Tuple[OutcomeConditionType, Optional[int], str]:
        """
        Drive one wanted attachment towards Loaded.

        Returns the new condition, the live handle if any, and a message.
        """
        log = self._log.bind(outcome=obj.name)
        record = live_by_id.get(obj.correlation_id)
        blocked = map_owner.blocked

        if record is None:
            if blocked is not None:
                return blocked, None, ""
            return self._load(obj, request)

        if blocked is not None:
            try:
                self._loader.unload(record.handle, timeout=self._loader_timeout)
            except LoaderError as exc:
                log.error("program_unload_failed", handle=record.handle, error=str(exc))
                return OutcomeConditionType.unload_failed, record.handle, str(exc)
            log.info("program_unloaded", handle=record.handle, reason=blocked.value)
            return blocked, None, ""

        same, reasons = matches(request, record.request)
        if same:
            log.debug("program_up_to_date", handle=record.handle)
            return OutcomeConditionType.loaded, record.handle, ""

        log.info("program_out_of_date", handle=record.handle, reasons=reasons)
        try:
            self._loader.unload(record.handle, timeout=self._loader_timeout)
        except LoaderError as exc:
            log.error("program_unload_failed", handle=record.handle, error=str(exc))
            return OutcomeConditionType.unload_failed, record.handle, str(exc)

        return self._load(obj, request)

    def _reconcile_invalid(
        self,
        obj: OutcomeObject,
        live_by_id: Dict[str, LoaderRecord],
        cond: OutcomeConditionType,
        message: str,
    ) -> Tuple[OutcomeConditionType, Optional[int], str]:
        """
        Record a spec that cannot be turned into a load request.

        A program still live from an earlier valid version of the spec no
        longer matches it and is unloaded.
        """
        record = live_by_id.get(obj.correlation_id)
        if record is None:
            return cond, None, message

        log = self._log.bind(outcome=obj.name)
        try:
            self._loader.unload(record.handle, timeout=self._loader_timeout)
        except LoaderError as exc:
            log.error("program_unload_failed", handle=record.handle, error=str(exc))
            return OutcomeConditionType.unload_failed, record.handle, str(exc)

        log.info("program_unloaded", handle=record.handle, reason=cond.value)
        return cond, None, message

    def _load(self, obj: OutcomeObject, request: LoadRequest) -> Tuple[OutcomeConditionType, Optional[int], str]:
        log = self._log.bind(outcome=obj.name)
        try:
            handle = self._loader.load(request, timeout=self._loader_timeout)
        except LoaderError as exc:
            log.error("program_load_failed", error=str(exc))
            return OutcomeConditionType.load_failed, None, str(exc)

        log.info("program_loaded", handle=handle, correlation_id=obj.correlation_id)
        return OutcomeConditionType.loaded, handle, ""

    def _reconcile_unwanted(
        self,
        obj: OutcomeObject,
        live_by_id: Dict[str, LoaderRecord],
        deleting: bool,
        selected: bool,
    ) -> Tuple[OutcomeConditionType, str]:
        """
        Make sure an attachment that should not exist is unloaded.

        Returns Unloaded when the object can be released, NotSelected when it
        should stay as a record for a deselected node, or UnloadFailed.
        """
        absent = OutcomeConditionType.unloaded
        if not deleting and not selected:
            absent = OutcomeConditionType.not_selected

        record = live_by_id.get(obj.correlation_id)
        if record is None:
            return absent, ""

        log = self._log.bind(outcome=obj.name)
        try:
            self._loader.unload(record.handle, timeout=self._loader_timeout)
        except LoaderError as exc:
            log.error("program_unload_failed", handle=record.handle, error=str(exc))
            return OutcomeConditionType.unload_failed, str(exc)

        log.info("program_unloaded", handle=record.handle, reason=absent.value)
        return absent, ""

    def _create_outcome(self, spec: ProgramSpec, node: NodeRecord, name: str, attach_point: str) -> bool:
        obj = OutcomeObject(
            meta=ObjectMeta(
                name=name,
                labels={OWNER_LABEL: spec.name, NODE_LABEL: node.name, KIND_LABEL: self._kind.value},
            ),
            owner=spec.name,
            node=node.name,
            kind=self._kind,
            attach_point=attach_point,
            correlation_id=uuid.uuid4().hex,
        )
        add_finalizer(obj.meta, self._finalizer)

        try:
            self._store.create(obj)
        except StoreError as exc:
            self._log.error("outcome_create_failed", outcome=name, error=str(exc))
            return False

        self._log.info("outcome_created", outcome=name, spec=spec.name)
        return True

    def _write_status(
        self,
        obj: OutcomeObject,
        cond: OutcomeConditionType,
        handle: Optional[int],
        message: str,
    ) -> bool:
        """Persist condition and handle when either changed. Returns False on store failure."""
        changed = set_condition(obj.conditions, cond.condition(message))
        if obj.handle != handle:
            obj.handle = handle
            changed = True

        if not changed:
            return True

        try:
            self._store.update(obj)
        except StoreError as exc:
            self._log.error("outcome_update_failed", outcome=obj.name, error=str(exc))
            return False

        self._log.debug("outcome_updated", outcome=obj.name, condition=cond.value, handle=handle)
        return True

    def _release(self, obj: OutcomeObject) -> bool:
        """
        Record Unloaded, drop our finalizer and delete the object.

        Only called once nothing with this object's correlation id is live.
        """
        set_condition(obj.conditions, OutcomeConditionType.unloaded.condition())
        obj.handle = None
        remove_finalizer(obj.meta, self._finalizer)

        try:
            stored = self._store.update(obj)
            if not stored.meta.is_being_deleted:
                self._store.delete(OutcomeObject, obj.name)
        except StoreError as exc:
            self._log.error("outcome_release_failed", outcome=obj.name, error=str(exc))
            return False

        self._log.info("outcome_released", outcome=obj.name)
        return True
