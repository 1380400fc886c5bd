"""
Conditions and finalizers.

Both reconcilers record their outcome as a condition on an object and gate
deletion with a finalizer string. The helpers here are the only place those
fields are mutated, so the rules stay the same on both tiers:

- an object keeps at most one condition per type
- the most recently set condition is last in the list and is the current one
- setting the current condition again with the same message is a no-op
- finalizers are a plain list field, changes go through a normal store update
"""

from __future__ import annotations

import time
from enum import Enum
from typing import List, Optional

from bpf_orchestrator.core.types import Condition, ObjectMeta, ProgramKind

OPERATOR_FINALIZER = "bpf-orchestrator.dev.operator/finalizer"


def agent_finalizer(kind: ProgramKind) -> str:
    """Finalizer the node agent for a kind puts on its outcome objects."""
    return f"bpf-orchestrator.dev.{kind.value}-agent/finalizer"


class OutcomeConditionType(str, Enum):
    """
    Per attachment states written by the node agent.

    Loaded
    The loader reports the program with the expected parameters.

    LoadFailed, UnloadFailed
    Transient loader failure, retried.

    NotSelected
    The node no longer matches the node selector, nothing is loaded.

    Unloaded
    The spec is being deleted and nothing is loaded any more.

    MapOwnerNotFound, MapOwnerNotLoaded
    The declared map owner is missing or not loaded on this node.

    BytecodeSelectorError
    The spec does not name a usable bytecode location.
    """

    none = "None"
    loaded = "Loaded"
    load_failed = "LoadFailed"
    unload_failed = "UnloadFailed"
    not_selected = "NotSelected"
    unloaded = "Unloaded"
    map_owner_not_found = "MapOwnerNotFound"
    map_owner_not_loaded = "MapOwnerNotLoaded"
    bytecode_selector_error = "BytecodeSelectorError"

    def condition(self, message: str = "") -> Condition:
        reason, default_message = _OUTCOME_TEXT[self]
        return Condition(
            type=self.value,
            status="True",
            reason=reason,
            message=message or default_message,
            last_transition=time.time(),
        )


_OUTCOME_TEXT = {
    OutcomeConditionType.none: ("None", "None of the outcome conditions are met"),
    OutcomeConditionType.loaded: ("Loaded", "Successfully loaded program"),
    OutcomeConditionType.load_failed: ("LoadFailed", "Failed to load program"),
    OutcomeConditionType.unload_failed: ("UnloadFailed", "Failed to unload program"),
    OutcomeConditionType.not_selected: ("NotSelected", "This node is not selected to run the program"),
    OutcomeConditionType.unloaded: ("Unloaded", "The program was unloaded and its spec is being deleted"),
    OutcomeConditionType.map_owner_not_found: ("MapOwnerNotFound", "Map owner was not found on this node"),
    OutcomeConditionType.map_owner_not_loaded: ("MapOwnerNotLoaded", "Map owner is not loaded on this node"),
    OutcomeConditionType.bytecode_selector_error: (
        "BytecodeSelectorError",
        "There was an error processing the provided bytecode selector",
    ),
}

FAILED_OUTCOMES = frozenset(
    {
        OutcomeConditionType.load_failed,
        OutcomeConditionType.unload_failed,
        OutcomeConditionType.bytecode_selector_error,
    }
)


class SpecConditionType(str, Enum):
    """Cluster wide states written by the aggregator onto a spec."""

    not_yet_loaded = "NotYetLoaded"
    reconcile_error = "ReconcileError"
    reconcile_success = "ReconcileSuccess"
    delete_error = "DeleteError"

    def condition(self, message: str = "") -> Condition:
        reason, default_message = _SPEC_TEXT[self]
        return Condition(
            type=self.value,
            status="True",
            reason=reason,
            message=message or default_message,
            last_transition=time.time(),
        )


_SPEC_TEXT = {
    SpecConditionType.not_yet_loaded: (
        "ProgramsNotYetLoaded",
        "Waiting for program to be reconciled to all nodes",
    ),
    SpecConditionType.reconcile_error: ("ReconcileError", "Program reconciliation failed"),
    SpecConditionType.reconcile_success: (
        "ReconcileSuccess",
        "Program reconciliation succeeded on all nodes",
    ),
    SpecConditionType.delete_error: ("DeleteError", "Program deletion failed"),
}


def current_condition(conditions: List[Condition]) -> Optional[Condition]:
    """Return the most recently set condition, or None."""
    if not conditions:
        return None
    return conditions[-1]


def set_condition(conditions: List[Condition], new: Condition) -> bool:
    """
    Record new as the current condition.

    Returns True when the list changed. A condition of the same type and message
    as the current one leaves the list untouched so no store write is needed.
    """
    current = current_condition(conditions)
    if current is not None and current.type == new.type and current.message == new.message:
        return False

    conditions[:] = [c for c in conditions if c.type != new.type]
    conditions.append(new)
    return True


def has_finalizer(meta: ObjectMeta, finalizer: str) -> bool:
    return finalizer in meta.finalizers


def add_finalizer(meta: ObjectMeta, finalizer: str) -> bool:
    """Add finalizer. Returns True when it was not present before."""
    if finalizer in meta.finalizers:
        return False
    meta.finalizers.append(finalizer)
    return True


def remove_finalizer(meta: ObjectMeta, finalizer: str) -> bool:
    """Remove finalizer. Returns True when it was present."""
    if finalizer not in meta.finalizers:
        return False
    meta.finalizers = [f for f in meta.finalizers if f != finalizer]
    return True
