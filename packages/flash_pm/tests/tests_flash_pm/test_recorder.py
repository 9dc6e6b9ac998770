from datetime import datetime, timedelta, timezone

import pytest
from flash_pm.exceptions import ValidationError
from flash_pm.recorder import record_trigger_run
from flash_pm.schemas import RunOutcome, TriggerRunStatus, TriggerType
from pydantic import ValidationError as PydanticValidationError

FEB_1 = datetime(2024, 2, 1, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def due_trigger(make_trigger, now):
    """Daily 09:00 UTC trigger whose 09:00 occurrence today is due."""
    return make_trigger(
        cron_expression="0 9 * * *",
        next_run_at=now.replace(hour=9),
        last_run_at=now - timedelta(days=1, hours=3),
    )


def test_success_advances_schedule(due_trigger, now):
    recorded = record_trigger_run(
        due_trigger,
        {"status": "success", "workOrderId": "wo-42"},
        "UTC",
        now=now,
    )

    run = recorded.run
    assert run.status is TriggerRunStatus.SUCCESS
    assert run.trigger_id == due_trigger.id
    assert run.work_order_id == "wo-42"
    assert run.run_at == now
    assert run.scheduled_for == due_trigger.next_run_at
    assert run.error is None
    assert run.details is None

    trigger = recorded.trigger
    assert trigger.last_run_at == now
    assert trigger.next_run_at == datetime(2024, 1, 11, 9, 0, tzinfo=timezone.utc)
    assert trigger.updated_at == now
    assert trigger.cron_expression == due_trigger.cron_expression


def test_attempt_time_drives_next_run(due_trigger, now):
    attempted = now + timedelta(days=2)  # Jan 12 12:00
    recorded = record_trigger_run(
        due_trigger,
        RunOutcome(
            status=TriggerRunStatus.SUCCESS,
            work_order_id="wo-1",
            attempted_at=attempted,
        ),
        "UTC",
        now=now,
    )
    assert recorded.run.run_at == attempted
    assert recorded.trigger.last_run_at == attempted
    assert recorded.trigger.next_run_at == datetime(2024, 1, 13, 9, 0, tzinfo=timezone.utc)


def test_skip_advances_schedule_and_keeps_reason(due_trigger, now):
    recorded = record_trigger_run(
        due_trigger,
        {"status": "skipped", "reason": "asset offline", "details": {"assetId": "a-1"}},
        "UTC",
        now=now,
    )

    assert recorded.run.status is TriggerRunStatus.SKIPPED
    assert recorded.run.details == {"assetId": "a-1", "reason": "asset offline"}
    assert recorded.run.work_order_id is None
    assert recorded.trigger.last_run_at == now
    assert recorded.trigger.next_run_at == datetime(2024, 1, 11, 9, 0, tzinfo=timezone.utc)


def test_failure_leaves_trigger_untouched(make_trigger, now):
    trigger = make_trigger(next_run_at="2024-02-01T00:00:00Z")

    recorded = record_trigger_run(
        trigger,
        {"status": "failed", "error": "work order service unavailable"},
        "UTC",
        now=now,
    )

    assert recorded.trigger == trigger
    assert recorded.trigger.next_run_at == FEB_1
    assert recorded.trigger.last_run_at is None
    assert recorded.run.status is TriggerRunStatus.FAILED
    assert recorded.run.error == "work order service unavailable"
    assert recorded.run.scheduled_for == FEB_1


@pytest.mark.parametrize(
    "outcome",
    [
        {"status": "failed", "error": "boom"},
        {"status": "failed", "error": "boom", "attemptedAt": "2024-03-01T00:00:00Z"},
    ],
)
def test_failure_keeps_next_run(due_trigger, now, outcome):
    recorded = record_trigger_run(due_trigger, outcome, "America/New_York", now=now)
    assert recorded.trigger.next_run_at == due_trigger.next_run_at
    assert recorded.trigger.last_run_at == due_trigger.last_run_at


def test_error_is_only_kept_for_failures(due_trigger, now):
    recorded = record_trigger_run(
        due_trigger,
        {"status": "success", "workOrderId": "wo-1", "error": "stale"},
        "UTC",
        now=now,
    )
    assert recorded.run.error is None


def test_scheduled_for_fallbacks(make_trigger, now):
    explicit = now - timedelta(hours=1)
    trigger = make_trigger(next_run_at=None, start_date=now - timedelta(days=1))

    recorded = record_trigger_run(
        trigger,
        {"status": "success", "workOrderId": "wo-1", "scheduledFor": explicit},
        "UTC",
        now=now,
    )
    assert recorded.run.scheduled_for == explicit

    recorded = record_trigger_run(
        trigger, {"status": "success", "workOrderId": "wo-1"}, "UTC", now=now
    )
    assert recorded.run.scheduled_for == trigger.start_date

    bare = make_trigger(next_run_at=None)
    recorded = record_trigger_run(
        bare, {"status": "success", "workOrderId": "wo-1"}, "UTC", now=now
    )
    assert recorded.run.scheduled_for == now


def test_meter_trigger_run_keeps_null_schedule(make_trigger, now):
    trigger = make_trigger(type=TriggerType.METER, cron_expression=None, meter_threshold=10)
    recorded = record_trigger_run(
        trigger, {"status": "success", "workOrderId": "wo-1"}, "UTC", now=now
    )
    assert recorded.trigger.last_run_at == now
    assert recorded.trigger.next_run_at is None


@pytest.mark.parametrize(
    "outcome",
    [
        {"status": "success"},
        {"status": "failed"},
        {"status": "skipped"},
        {"status": "pending"},
        {"status": "success", "workOrderId": "wo-1", "attemptedAt": "soon"},
    ],
)
def test_malformed_outcome(due_trigger, now, outcome):
    with pytest.raises(ValidationError):
        record_trigger_run(due_trigger, outcome, "UTC", now=now)


def test_run_is_immutable(due_trigger, now):
    recorded = record_trigger_run(
        due_trigger, {"status": "success", "workOrderId": "wo-1"}, "UTC", now=now
    )
    with pytest.raises(PydanticValidationError):
        recorded.run.status = TriggerRunStatus.FAILED
