from datetime import datetime, timedelta, timezone

import pytest

from container_scheduler.models.schedule import Schedule
from container_scheduler.models.schedule_execution import ExecutionStatus, TriggerType
from container_scheduler.scheduler.errors import (
    ConcurrentClaimLost,
    InvalidTransition,
    NotFound,
    ValidationError,
)


def _schedule(schedule_id="sched-1"):
    return Schedule(id=schedule_id, name="Nightly restart", container_name="web-api", action="restart")


def _run(execution_log, schedule, started_at, status=ExecutionStatus.SUCCESS, trigger=TriggerType.SCHEDULED):
    execution = execution_log.append(schedule, trigger, started_at=started_at)
    return execution_log.complete(execution.id, status, completed_at=started_at + timedelta(seconds=2))


def test_append_records_running_execution(execution_log, clock):
    execution = execution_log.append(_schedule(), TriggerType.MANUAL)

    assert execution.status == "running"
    assert execution.trigger_type == "manual"
    assert execution.schedule_name == "Nightly restart"
    assert execution.container_name == "web-api"
    assert execution.started_at == clock.now
    assert execution_log.running_for("sched-1").id == execution.id


def test_second_running_execution_loses_the_claim(execution_log):
    schedule = _schedule()
    execution_log.append(schedule, TriggerType.SCHEDULED)

    with pytest.raises(ConcurrentClaimLost):
        execution_log.append(schedule, TriggerType.MANUAL)

    # another schedule is unaffected
    execution_log.append(_schedule("sched-2"), TriggerType.MANUAL)


def test_complete_sets_outcome_and_duration(execution_log, clock):
    execution = execution_log.append(_schedule(), TriggerType.SCHEDULED)

    done = execution_log.complete(
        execution.id,
        ExecutionStatus.FAILED,
        error="container not found",
        completed_at=clock.now + timedelta(seconds=3),
    )
    assert done.status == "failed"
    assert done.error == "container not found"
    assert done.duration_seconds == pytest.approx(3.0)
    assert execution_log.running_for("sched-1") is None

    # the schedule can be claimed again
    execution_log.append(_schedule(), TriggerType.SCHEDULED)


def test_complete_is_exactly_once(execution_log):
    execution = execution_log.append(_schedule(), TriggerType.SCHEDULED)
    execution_log.complete(execution.id, ExecutionStatus.SUCCESS, output="ok")

    with pytest.raises(InvalidTransition):
        execution_log.complete(execution.id, ExecutionStatus.FAILED, error="late")
    assert execution_log.get(execution.id).status == "success"


def test_complete_rejects_running_status(execution_log):
    execution = execution_log.append(_schedule(), TriggerType.SCHEDULED)
    with pytest.raises(InvalidTransition):
        execution_log.complete(execution.id, ExecutionStatus.RUNNING)


def test_complete_unknown_execution(execution_log):
    with pytest.raises(NotFound):
        execution_log.complete("missing", ExecutionStatus.SUCCESS)
    with pytest.raises(NotFound):
        execution_log.get("missing")


def test_history_is_newest_first_and_paginates(execution_log, clock):
    schedule = _schedule()
    start = clock.now
    runs = [_run(execution_log, schedule, start + timedelta(minutes=i)) for i in range(5)]
    _run(execution_log, _schedule("other"), start)

    first = execution_log.list_by_criteria(schedule_id="sched-1", limit=2)
    assert [e.id for e in first.items] == [runs[4].id, runs[3].id]
    assert first.total == 5
    assert first.next_cursor

    second = execution_log.list_by_criteria(schedule_id="sched-1", limit=2, cursor=first.next_cursor)
    assert [e.id for e in second.items] == [runs[2].id, runs[1].id]

    third = execution_log.list_by_criteria(schedule_id="sched-1", limit=2, cursor=second.next_cursor)
    assert [e.id for e in third.items] == [runs[0].id]
    assert third.next_cursor is None


def test_history_filters(execution_log, clock):
    schedule = _schedule()
    start = clock.now
    _run(execution_log, schedule, start, status=ExecutionStatus.SUCCESS)
    failed = _run(execution_log, schedule, start + timedelta(minutes=1), status=ExecutionStatus.FAILED)
    manual = _run(execution_log, schedule, start + timedelta(minutes=2), trigger=TriggerType.MANUAL)

    by_status = execution_log.list_by_criteria(schedule_id="sched-1", status="failed")
    assert [e.id for e in by_status.items] == [failed.id]

    by_trigger = execution_log.list_by_criteria(schedule_id="sched-1", trigger_type="manual")
    assert [e.id for e in by_trigger.items] == [manual.id]
    assert by_trigger.total == 1


def test_invalid_cursor_is_a_validation_error(execution_log):
    with pytest.raises(ValidationError):
        execution_log.list_by_criteria(schedule_id="sched-1", cursor="not-a-cursor")


def test_consecutive_failures_counts_the_head_of_history(execution_log, clock):
    schedule = _schedule()
    start = clock.now
    _run(execution_log, schedule, start, status=ExecutionStatus.FAILED)
    _run(execution_log, schedule, start + timedelta(minutes=1), status=ExecutionStatus.SUCCESS)
    _run(execution_log, schedule, start + timedelta(minutes=2), status=ExecutionStatus.FAILED)
    _run(execution_log, schedule, start + timedelta(minutes=3), status=ExecutionStatus.FAILED)

    assert execution_log.consecutive_failures("sched-1", window=10) == 2
    assert execution_log.consecutive_failures("sched-1", window=1) == 1
    assert execution_log.consecutive_failures("unknown", window=10) == 0


def test_fail_stale_running_closes_abandoned_executions(execution_log, clock):
    old = execution_log.append(_schedule(), TriggerType.SCHEDULED, started_at=clock.now - timedelta(hours=1))
    fresh = execution_log.append(_schedule("sched-2"), TriggerType.SCHEDULED)

    assert execution_log.fail_stale_running(timedelta(minutes=10)) == 1

    closed = execution_log.get(old.id)
    assert closed.status == "failed"
    assert "timed out" in closed.error
    assert execution_log.get(fresh.id).status == "running"
    assert execution_log.fail_stale_running(timedelta(minutes=10)) == 0


def test_history_survives_schedule_deletion(store, execution_log, new_schedule, clock):
    schedule = store.create(new_schedule())
    _run(execution_log, schedule, clock.now)
    store.delete(schedule.id)

    page = execution_log.list_by_criteria(schedule_id=schedule.id)
    assert page.total == 1
    assert page.items[0].schedule_name == "Nightly restart"


def test_started_at_is_utc(execution_log):
    execution = execution_log.append(_schedule(), TriggerType.SCHEDULED,
                                     started_at=datetime(2024, 1, 1, 3, 0, tzinfo=timezone(timedelta(hours=-5))))
    assert execution.started_at == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
