from datetime import datetime, timedelta, timezone

import pytest
from flash_pm.exceptions import NotFoundError, PmError, ValidationError
from flash_pm.schemas import (
    RunOutcome,
    TriggerPatch,
    TriggerRunStatus,
    format_timestamp,
    validate_payload,
)


def test_format_timestamp_is_fixed_width():
    assert format_timestamp(datetime(2024, 1, 15, 14, 0, tzinfo=timezone.utc)) == (
        "2024-01-15T14:00:00.000Z"
    )
    assert format_timestamp(
        datetime(2024, 1, 15, 9, 0, 0, 123999, tzinfo=timezone(timedelta(hours=-5)))
    ) == "2024-01-15T14:00:00.123Z"


def test_domain_timestamps_render_only_in_json(make_trigger):
    trigger = make_trigger(next_run_at="2024-01-15T14:00:00Z")

    assert isinstance(trigger.model_dump()["next_run_at"], datetime)
    assert trigger.model_dump(mode="json")["next_run_at"] == "2024-01-15T14:00:00.000Z"


def test_patch_distinguishes_absent_from_null():
    assert TriggerPatch.model_validate({}).changes() == {}
    assert TriggerPatch.model_validate({"endDate": None}).changes() == {"end_date": None}
    # Not clearable: null means "keep"
    assert TriggerPatch.model_validate({"isActive": None}).changes() == {}


def test_patch_accepts_both_spellings():
    camel = TriggerPatch.model_validate({"cronExpression": "0 9 * * 1"})
    snake = TriggerPatch.model_validate({"cron_expression": "0 9 * * 1"})
    assert camel.changes() == snake.changes() == {"cron_expression": "0 9 * * 1"}


def test_validate_payload_wraps_pydantic_errors():
    with pytest.raises(ValidationError, match="Invalid trigger patch: startDate") as exc_info:
        validate_payload(TriggerPatch, {"startDate": "soon"}, "trigger patch")

    [error] = exc_info.value.errors
    assert error["loc"] == ("startDate",)
    assert isinstance(exc_info.value.__cause__, Exception)


def test_validate_payload_passes_models_through():
    patch = TriggerPatch(is_active=False)
    assert validate_payload(TriggerPatch, patch, "trigger patch") is patch


def test_outcome_status_requirements():
    assert RunOutcome(status=TriggerRunStatus.SUCCESS, work_order_id="wo-1")
    assert RunOutcome.model_validate({"status": "skipped", "reason": "holiday"})

    with pytest.raises(ValidationError, match="run outcome"):
        validate_payload(RunOutcome, {"status": "failed"}, "run outcome")


def test_exception_hierarchy():
    assert issubclass(ValidationError, PmError)
    assert issubclass(ValidationError, ValueError)
    assert issubclass(NotFoundError, PmError)
    assert issubclass(NotFoundError, LookupError)
    assert ValidationError("bad").errors == []
