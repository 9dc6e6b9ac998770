"""
Trigger lifecycle: keeps ``next_run_at`` consistent with a trigger's own
configuration whenever the trigger, or its program's timezone, changes.

Also hosts the same partial-update rules for programs and tasks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Mapping

from .config import pm_settings
from .exceptions import ValidationError
from .scheduling import next_run_for, require_timestamp
from .schemas import (
    Program,
    ProgramPatch,
    Task,
    TaskPatch,
    Trigger,
    TriggerPatch,
    TriggerType,
    validate_payload,
)
from .triggers import CronEvaluator, StandardCronEvaluator

if TYPE_CHECKING:
    from datetime import datetime


def upsert_trigger(
    existing: Trigger | None,
    patch: TriggerPatch | Mapping[str, Any],
    program_timezone: str | None,
    *,
    now: datetime | str,
    program_id: str | None = None,
    evaluator: CronEvaluator | None = None,
) -> Trigger:
    """
    Creates or updates a trigger and recomputes its next run in one step.

    Fields missing from ``patch`` keep their existing value. On creation
    ``is_active`` defaults to True and ``program_id`` is required.

    Args:
        existing: The stored trigger, or None to create one.
        patch: Partial update, as a model or a raw (camelCase or snake_case)
            mapping.
        program_timezone: Timezone of the owning program.
        now: Reference instant of the edit.
        program_id: Owner of a new trigger.
        evaluator: Cron capability passed through to the calculator.

    Returns:
        A new Trigger whose ``next_run_at`` matches its merged configuration.

    Raises:
        ValidationError: If ``patch`` holds malformed values, or a new trigger
            lacks ``program_id`` or ``type``.
    """
    reference = require_timestamp(now)
    changes = validate_payload(TriggerPatch, patch, "trigger patch").changes()

    if existing is None:
        if not program_id:
            raise ValidationError("program_id is required to create a trigger")
        if "type" not in changes:
            raise ValidationError("type is required to create a trigger")
        trigger = Trigger(
            **{
                "program_id": program_id,
                "is_active": True,
                "created_at": reference,
                **changes,
                "updated_at": reference,
            }
        )
    else:
        trigger = existing.model_copy(update={**changes, "updated_at": reference})

    next_run = next_run_for(
        trigger, program_timezone, now=reference, evaluator=evaluator
    )
    return trigger.model_copy(update={"next_run_at": next_run})


def validate_trigger(
    trigger: Trigger,
    evaluator: CronEvaluator | None = None,
) -> None:
    """
    Checks the cross-field rules a trigger must meet before it is stored.

    Raises:
        ValidationError: Listing every violated rule.
    """
    evaluator = evaluator or StandardCronEvaluator()
    errors: list[dict[str, Any]] = []

    if trigger.type is TriggerType.CALENDAR:
        if not trigger.cron_expression:
            errors.append(
                {
                    "loc": ("cronExpression",),
                    "msg": "cronExpression is required for calendar triggers",
                    "type": "missing",
                }
            )
        else:
            try:
                evaluator.validate(trigger.cron_expression)
            except ValueError as e:
                errors.append(
                    {"loc": ("cronExpression",), "msg": str(e), "type": "cron"}
                )

    if trigger.type is TriggerType.METER and trigger.meter_threshold is None:
        errors.append(
            {
                "loc": ("meterThreshold",),
                "msg": "meterThreshold is required for meter triggers",
                "type": "missing",
            }
        )

    if (
        trigger.start_date is not None
        and trigger.end_date is not None
        and trigger.start_date > trigger.end_date
    ):
        errors.append(
            {
                "loc": ("endDate",),
                "msg": "endDate must be after startDate",
                "type": "range",
            }
        )

    if errors:
        raise ValidationError(
            "; ".join(err["msg"] for err in errors),
            errors,
        )


def reschedule_triggers(
    triggers: Iterable[Trigger],
    program_timezone: str | None,
    *,
    now: datetime | str,
    evaluator: CronEvaluator | None = None,
) -> list[Trigger]:
    """Recomputes ``next_run_at`` for every trigger of a program."""
    reference = require_timestamp(now)
    return [
        trigger.model_copy(
            update={
                "next_run_at": next_run_for(
                    trigger, program_timezone, now=reference, evaluator=evaluator
                ),
                "updated_at": reference,
            }
        )
        for trigger in triggers
    ]


def apply_program_patch(
    existing: Program | None,
    patch: ProgramPatch | Mapping[str, Any],
    *,
    now: datetime | str,
    tenant_id: str | None = None,
    owner_id: str | None = None,
) -> Program:
    """
    Creates or updates a program.

    On creation the owner is ``patch.owner_id`` or else ``owner_id`` (the
    acting user), and the timezone defaults to ``DEFAULT_TIMEZONE``.

    Raises:
        ValidationError: On malformed values, a missing name/tenant/owner on
            creation, or an explicit attempt to clear the owner.
    """
    reference = require_timestamp(now)
    payload = validate_payload(ProgramPatch, patch, "program patch")
    changes = payload.changes()

    if existing is None:
        owner = changes.pop("owner_id", None) or owner_id
        if not tenant_id:
            raise ValidationError("tenant_id is required to create a program")
        if not owner:
            raise ValidationError("ownerId is required")
        if "name" not in changes:
            raise ValidationError("Program name is required")
        changes.setdefault("timezone", pm_settings.DEFAULT_TIMEZONE)
        return Program(
            tenant_id=tenant_id,
            owner_id=owner,
            created_at=reference,
            updated_at=reference,
            **changes,
        )

    if "owner_id" in payload.model_fields_set and payload.owner_id is None:
        raise ValidationError("ownerId is required")

    return existing.model_copy(update={**changes, "updated_at": reference})


def apply_task_patch(
    existing: Task | None,
    patch: TaskPatch | Mapping[str, Any],
    *,
    now: datetime | str,
    program_id: str | None = None,
    default_position: int = 0,
) -> Task:
    """
    Creates or updates a checklist task.

    A new task without an explicit position is appended at
    ``default_position`` (callers pass the current task count).
    """
    reference = require_timestamp(now)
    changes = validate_payload(TaskPatch, patch, "task patch").changes()

    if existing is None:
        if not program_id:
            raise ValidationError("program_id is required to create a task")
        if "title" not in changes:
            raise ValidationError("Task title is required")
        changes.setdefault("position", default_position)
        return Task(
            program_id=program_id,
            created_at=reference,
            updated_at=reference,
            **changes,
        )

    return existing.model_copy(update={**changes, "updated_at": reference})
