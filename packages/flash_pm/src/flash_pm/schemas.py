"""Pydantic schemas/data contracts for the preventive-maintenance engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ValidationError

M = TypeVar("M", bound=BaseModel)


def ensure_utc(v: datetime) -> datetime:
    """Normalizes to UTC. Naive values (e.g. from SQLite) are read as UTC."""
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


def format_timestamp(v: datetime) -> str:
    """Fixed-width ISO-8601 UTC with milliseconds: ``2024-01-15T14:00:00.000Z``."""
    v = ensure_utc(v)
    return v.strftime("%Y-%m-%dT%H:%M:%S.") + f"{v.microsecond // 1000:03d}Z"


# Domain timestamps stay datetimes in python mode and render fixed-width in JSON.
UtcDatetime = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(format_timestamp, return_type=str, when_used="json"),
]

# Wire timestamps always render as strings, so a dumped payload is JSON-ready.
IsoTimestamp = Annotated[
    datetime,
    AfterValidator(ensure_utc),
    PlainSerializer(format_timestamp, return_type=str),
]


def new_id() -> str:
    return uuid.uuid4().hex


def validate_payload(model: type[M], value: Any, subject: str) -> M:
    """
    Coerces ``value`` into ``model``, translating pydantic errors.

    Raises:
        ValidationError: If ``value`` does not satisfy the model.
    """
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, subject) from e


class TriggerType(str, Enum):
    """How a trigger decides that it is due."""

    CALENDAR = "calendar"
    METER = "meter"


class TriggerRunStatus(str, Enum):
    """Terminal state of one firing attempt."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


# --- Domain records ---


class Owner(BaseModel):
    """Summary of the user who owns a program."""

    id: str
    name: str
    email: str


class Program(BaseModel):
    """A named preventive-maintenance definition."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    owner_id: str
    asset_id: str | None = None
    name: str
    description: str | None = None
    timezone: str = "UTC"
    is_active: bool = True
    last_generated_at: UtcDatetime | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class Task(BaseModel):
    """One ordered checklist step of a program."""

    id: str = Field(default_factory=new_id)
    program_id: str
    title: str
    instructions: str | None = None
    position: int = 0
    estimated_minutes: int | None = None
    requires_sign_off: bool = False
    created_at: UtcDatetime
    updated_at: UtcDatetime


class Trigger(BaseModel):
    """
    Recurrence definition of a program.

    ``next_run_at`` is ``None`` when the trigger never fires on its own
    (meter triggers, calendar triggers without a rule or with a closed window).
    """

    id: str = Field(default_factory=new_id)
    program_id: str
    type: TriggerType
    cron_expression: str | None = None
    interval_days: int | None = None
    meter_threshold: float | None = None
    settings: dict[str, Any] | None = None
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None
    last_run_at: UtcDatetime | None = None
    next_run_at: UtcDatetime | None = None
    is_active: bool = True
    created_at: UtcDatetime
    updated_at: UtcDatetime


class ProgramSnapshot(Program):
    """A program together with everything it owns, as read in one go."""

    owner: Owner | None = None
    tasks: list[Task] = Field(default_factory=list)
    triggers: list[Trigger] = Field(default_factory=list)


class TriggerRun(BaseModel):
    """Immutable record of one attempt to fire a trigger."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    trigger_id: str
    status: TriggerRunStatus
    run_at: UtcDatetime
    scheduled_for: UtcDatetime | None = None
    work_order_id: str | None = None
    error: str | None = None
    details: dict[str, Any] | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class DueTrigger(BaseModel):
    """A trigger whose occurrence is due, with the program it belongs to."""

    program: ProgramSnapshot
    trigger: Trigger


# --- Partial updates ---


class PatchModel(BaseModel):
    """
    Base for partial-update payloads.

    A field left out of the payload keeps the existing value. A field sent
    as ``None`` clears the existing value only if it is listed in
    ``NULLABLE``; otherwise ``None`` also means "keep".
    """

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )

    NULLABLE: ClassVar[frozenset[str]] = frozenset()

    def changes(self) -> dict[str, Any]:
        """Returns the fields this patch actually applies."""
        out: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name not in self.NULLABLE:
                continue
            out[name] = value
        return out


class TriggerPatch(PatchModel):
    NULLABLE: ClassVar[frozenset[str]] = frozenset(
        {
            "cron_expression",
            "interval_days",
            "meter_threshold",
            "settings",
            "start_date",
            "end_date",
        }
    )

    type: TriggerType | None = None
    cron_expression: str | None = None
    interval_days: int | None = Field(default=None, ge=1)
    meter_threshold: float | None = Field(default=None, gt=0)
    settings: dict[str, Any] | None = None
    start_date: UtcDatetime | None = None
    end_date: UtcDatetime | None = None
    is_active: bool | None = None

    @field_validator("cron_expression")
    @classmethod
    def blank_cron_is_none(cls, v: str | None) -> str | None:
        return v or None


class ProgramPatch(PatchModel):
    NULLABLE: ClassVar[frozenset[str]] = frozenset({"asset_id"})

    name: str | None = Field(default=None, min_length=3, max_length=160)
    description: str | None = Field(default=None, max_length=4000)
    asset_id: str | None = None
    timezone: str | None = Field(default=None, min_length=1, max_length=80)
    is_active: bool | None = None
    owner_id: str | None = None

    @field_validator("description")
    @classmethod
    def blank_description_is_none(cls, v: str | None) -> str | None:
        return v or None


class TaskPatch(PatchModel):
    title: str | None = Field(default=None, min_length=3, max_length=200)
    instructions: str | None = Field(default=None, max_length=4000)
    position: int | None = Field(default=None, ge=0)
    estimated_minutes: int | None = Field(default=None, ge=0, le=24 * 60)
    requires_sign_off: bool | None = None

    @field_validator("instructions")
    @classmethod
    def blank_instructions_is_none(cls, v: str | None) -> str | None:
        return v or None


# --- Run outcomes ---


class RunOutcome(BaseModel):
    """What the executor reports after attempting a due trigger."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    status: TriggerRunStatus
    attempted_at: UtcDatetime | None = None
    scheduled_for: UtcDatetime | None = None
    work_order_id: str | None = None
    error: str | None = None
    reason: str | None = None
    details: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_status_fields(self) -> RunOutcome:
        if self.status is TriggerRunStatus.SUCCESS and not self.work_order_id:
            raise ValueError("work_order_id is required for a successful run")
        if self.status is TriggerRunStatus.FAILED and not self.error:
            raise ValueError("error is required for a failed run")
        if self.status is TriggerRunStatus.SKIPPED and not self.reason:
            raise ValueError("reason is required for a skipped run")
        return self


class RecordedRun(BaseModel):
    """The run to persist and the trigger state to persist alongside it."""

    trigger: Trigger
    run: TriggerRun


# --- Wire payloads ---


class WireModel(BaseModel):
    """Response payloads: camelCase on the wire, enums as plain strings."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class OwnerSummary(WireModel):
    id: str
    name: str
    email: str


class TaskSummary(WireModel):
    id: str
    title: str
    instructions: str | None = None
    position: int
    estimated_minutes: int | None = None
    requires_sign_off: bool


class TaskDetail(TaskSummary):
    program_id: str
    created_at: IsoTimestamp
    updated_at: IsoTimestamp


class TriggerSummary(WireModel):
    id: str
    type: TriggerType
    cron_expression: str | None = None
    interval_days: int | None = None
    meter_threshold: float | None = None
    settings: dict[str, Any] | None = None
    start_date: IsoTimestamp | None = None
    end_date: IsoTimestamp | None = None
    last_run_at: IsoTimestamp | None = None
    next_run_at: IsoTimestamp | None = None
    is_active: bool


class TriggerDetail(TriggerSummary):
    program_id: str
    created_at: IsoTimestamp
    updated_at: IsoTimestamp


class ProgramSummary(WireModel):
    """A program as embedded in the overview payload."""

    id: str
    name: str
    description: str | None = None
    asset_id: str | None = None
    timezone: str
    is_active: bool
    last_generated_at: IsoTimestamp | None = None
    owner: OwnerSummary | None = None
    tasks: list[TaskSummary]
    triggers: list[TriggerSummary]
    created_at: IsoTimestamp
    updated_at: IsoTimestamp


class ProgramDetail(WireModel):
    """A program as returned by the per-program endpoints."""

    id: str
    tenant_id: str
    owner_id: str
    name: str
    description: str | None = None
    asset_id: str | None = None
    timezone: str
    is_active: bool
    last_generated_at: IsoTimestamp | None = None
    owner: OwnerSummary | None = None
    tasks: list[TaskDetail]
    triggers: list[TriggerDetail]
    created_at: IsoTimestamp
    updated_at: IsoTimestamp


class TriggerRunDetail(WireModel):
    id: str
    trigger_id: str
    status: TriggerRunStatus
    run_at: IsoTimestamp
    scheduled_for: IsoTimestamp | None = None
    work_order_id: str | None = None
    details: dict[str, Any] | None = None
    error: str | None = None
    created_at: IsoTimestamp
    updated_at: IsoTimestamp


class RunHistoryEntry(WireModel):
    id: str
    trigger_id: str
    program_id: str
    program_name: str
    status: TriggerRunStatus
    run_at: IsoTimestamp
    scheduled_for: IsoTimestamp | None = None
    work_order_id: str | None = None
    error: str | None = None
    details: dict[str, Any] | None = None


class UpcomingEvent(WireModel):
    id: str
    program_id: str
    program_name: str
    trigger_id: str
    scheduled_for: IsoTimestamp
    overdue: bool


class OverviewStats(WireModel):
    active_programs: int = 0
    overdue_triggers: int = 0
    upcoming_week: int = 0
    total_tasks: int = 0


class Overview(WireModel):
    stats: OverviewStats
    programs: list[ProgramSummary]
    upcoming_events: list[UpcomingEvent]
    runs: list[RunHistoryEntry]
