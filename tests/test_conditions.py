from bpf_orchestrator.core.conditions import (
    OutcomeConditionType,
    SpecConditionType,
    add_finalizer,
    agent_finalizer,
    current_condition,
    has_finalizer,
    remove_finalizer,
    set_condition,
)
from bpf_orchestrator.core.types import ObjectMeta, ProgramKind


def test_default_messages_and_reasons():
    cond = SpecConditionType.not_yet_loaded.condition()
    assert cond.type == "NotYetLoaded"
    assert cond.reason == "ProgramsNotYetLoaded"
    assert cond.status == "True"
    assert cond.message

    custom = OutcomeConditionType.load_failed.condition("boom")
    assert custom.type == "LoadFailed"
    assert custom.message == "boom"


def test_set_condition_keeps_latest_last_and_one_per_type():
    conditions = []

    assert set_condition(conditions, OutcomeConditionType.load_failed.condition())
    assert set_condition(conditions, OutcomeConditionType.loaded.condition())
    assert set_condition(conditions, OutcomeConditionType.load_failed.condition())

    assert [c.type for c in conditions] == ["Loaded", "LoadFailed"]
    assert current_condition(conditions).type == "LoadFailed"


def test_setting_same_condition_is_a_noop():
    conditions = []
    set_condition(conditions, SpecConditionType.reconcile_success.condition())
    before = list(conditions)

    assert not set_condition(conditions, SpecConditionType.reconcile_success.condition())
    assert conditions == before


def test_changed_message_is_a_new_transition():
    conditions = []
    set_condition(conditions, SpecConditionType.reconcile_error.condition("a failed"))
    assert set_condition(conditions, SpecConditionType.reconcile_error.condition("b failed"))
    assert len(conditions) == 1
    assert conditions[0].message == "b failed"


def test_current_condition_empty():
    assert current_condition([]) is None


def test_finalizer_helpers():
    meta = ObjectMeta(name="x")
    fin = agent_finalizer(ProgramKind.tc)

    assert add_finalizer(meta, fin)
    assert not add_finalizer(meta, fin)
    assert has_finalizer(meta, fin)
    assert meta.finalizers == [fin]

    assert remove_finalizer(meta, fin)
    assert not remove_finalizer(meta, fin)
    assert meta.finalizers == []


def test_agent_finalizers_differ_per_kind():
    assert agent_finalizer(ProgramKind.xdp) != agent_finalizer(ProgramKind.tc)
