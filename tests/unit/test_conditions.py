from datetime import datetime, timezone

from testflow.conditions import (
    DEPLOYMENT_READY,
    INPUT_READY,
    READY,
    REASON_ERROR,
    ConditionList,
)
from testflow.contracts import ConditionStatus, Severity


def _conditions():
    conditions = ConditionList([])
    conditions.init([INPUT_READY, DEPLOYMENT_READY])
    return conditions


def test_init_puts_ready_first_and_everything_unknown():
    conditions = _conditions()
    assert [c.type for c in conditions] == [READY, INPUT_READY, DEPLOYMENT_READY]
    assert all(c.status == ConditionStatus.UNKNOWN for c in conditions)


def test_mirror_reports_worst_false_condition():
    conditions = _conditions()
    conditions.mark_false(INPUT_READY, REASON_ERROR, Severity.ERROR, "secret missing")
    conditions.mark_false(DEPLOYMENT_READY, REASON_ERROR, Severity.WARNING, "pod failed")

    ready = conditions.mirror(READY)
    assert ready.status == ConditionStatus.FALSE
    assert ready.message == "secret missing"


def test_mirror_is_unknown_until_everything_is_true():
    conditions = _conditions()
    conditions.mark_true(INPUT_READY)
    assert conditions.mirror(READY).status == ConditionStatus.UNKNOWN
    conditions.mark_true(DEPLOYMENT_READY)
    assert conditions.all_sub_conditions_true()
    assert conditions.mirror(READY).status == ConditionStatus.TRUE


def test_unchanged_condition_keeps_transition_time():
    conditions = _conditions()
    old = datetime(2020, 1, 1, tzinfo=timezone.utc)
    conditions.get(INPUT_READY).last_transition_time = old
    saved = conditions.snapshot()

    # Re-initialising produces the same state with a fresh timestamp.
    conditions.init([INPUT_READY, DEPLOYMENT_READY])
    conditions.mark_true(DEPLOYMENT_READY)
    conditions.restore_last_transition_times(saved)

    assert conditions.get(INPUT_READY).last_transition_time == old
    assert conditions.get(DEPLOYMENT_READY).last_transition_time != old


def test_set_with_same_state_is_a_no_op():
    conditions = _conditions()
    before = conditions.get(INPUT_READY)
    conditions.mark_false(INPUT_READY, REASON_ERROR, Severity.ERROR, "x")
    changed = conditions.get(INPUT_READY)
    conditions.mark_false(INPUT_READY, REASON_ERROR, Severity.ERROR, "x")
    assert conditions.get(INPUT_READY) is changed
    assert changed is not before
