"""Trigger run recorder: folds one firing attempt back into its trigger."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping

from .scheduling import next_run_for, require_timestamp
from .schemas import (
    RecordedRun,
    RunOutcome,
    Trigger,
    TriggerRun,
    TriggerRunStatus,
    validate_payload,
)

if TYPE_CHECKING:
    from datetime import datetime

    from .triggers import CronEvaluator


def record_trigger_run(
    trigger: Trigger,
    outcome: RunOutcome | Mapping[str, Any],
    program_timezone: str | None,
    *,
    now: datetime | str,
    evaluator: CronEvaluator | None = None,
) -> RecordedRun:
    """
    Records the outcome of one attempt to fire ``trigger``.

    State machine (``pending`` is implicit and never stored):

    - ``success``: run stored with its work order; ``last_run_at`` becomes
      the attempt time and ``next_run_at`` is recomputed from it.
    - ``skipped``: run stored with ``details["reason"]``; the schedule
      advances exactly as on success.
    - ``failed``: run stored with the error; the trigger is returned
      untouched so the same occurrence stays due.

    Args:
        trigger: The trigger that was attempted.
        outcome: What the executor reports.
        program_timezone: Timezone of the owning program.
        now: Reference instant; also the attempt time unless the outcome
            carries ``attempted_at``.
        evaluator: Cron capability passed through to the calculator.

    Returns:
        The run to insert and the trigger state to persist with it.

    Raises:
        ValidationError: If ``outcome`` is malformed or misses the field its
            status requires.
    """
    reference = require_timestamp(now)
    outcome = validate_payload(RunOutcome, outcome, "run outcome")
    attempted_at = outcome.attempted_at or reference

    scheduled_for = (
        outcome.scheduled_for
        or trigger.next_run_at
        or trigger.start_date
        or attempted_at
    )

    details: dict[str, Any] = dict(outcome.details or {})
    if outcome.status is TriggerRunStatus.SKIPPED:
        details["reason"] = outcome.reason

    run = TriggerRun(
        trigger_id=trigger.id,
        status=outcome.status,
        run_at=attempted_at,
        scheduled_for=scheduled_for,
        work_order_id=outcome.work_order_id,
        error=outcome.error if outcome.status is TriggerRunStatus.FAILED else None,
        details=details or None,
        created_at=reference,
        updated_at=reference,
    )

    if outcome.status is TriggerRunStatus.FAILED:
        return RecordedRun(trigger=trigger, run=run)

    advanced = trigger.model_copy(
        update={
            "last_run_at": attempted_at,
            "next_run_at": next_run_for(
                trigger, program_timezone, now=attempted_at, evaluator=evaluator
            ),
            "updated_at": reference,
        }
    )
    return RecordedRun(trigger=advanced, run=run)
