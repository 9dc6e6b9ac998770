"""
Program/overview aggregation.

Pure functions over one snapshot of a tenant's programs and recent runs;
nothing here re-reads state, so stats, the program list and the upcoming
feed always agree with each other.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, TypeVar

from .config import pm_settings
from .exceptions import NotFoundError
from .scheduling import require_timestamp
from .schemas import (
    Overview,
    OverviewStats,
    OwnerSummary,
    ProgramDetail,
    ProgramSnapshot,
    ProgramSummary,
    RunHistoryEntry,
    Task,
    TaskDetail,
    TaskSummary,
    Trigger,
    TriggerDetail,
    TriggerRun,
    TriggerRunDetail,
    TriggerSummary,
    UpcomingEvent,
    WireModel,
)

if TYPE_CHECKING:
    from pydantic import BaseModel

    from .config import PmSettings

W = TypeVar("W", bound=WireModel)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _project(dto: type[W], record: BaseModel, **extra) -> W:
    """Copies the fields ``dto`` declares from ``record``."""
    data = {
        name: getattr(record, name)
        for name in dto.model_fields
        if name not in extra and hasattr(record, name)
    }
    return dto.model_validate({**data, **extra})


def is_overdue(trigger: Trigger, now: datetime) -> bool:
    return trigger.next_run_at is not None and trigger.next_run_at < now


def is_due_within(trigger: Trigger, now: datetime, window: timedelta) -> bool:
    """True if the next run falls in ``[now, now + window]``, both ends included."""
    if trigger.next_run_at is None:
        return False
    diff = trigger.next_run_at - now
    return timedelta(0) <= diff <= window


def _by_next_run(trigger: Trigger) -> tuple[bool, datetime]:
    # Unscheduled triggers sort last
    return (trigger.next_run_at is None, trigger.next_run_at or _EPOCH)


def _owner(program: ProgramSnapshot) -> OwnerSummary | None:
    return _project(OwnerSummary, program.owner) if program.owner else None


def serialize_task(task: Task) -> TaskDetail:
    return _project(TaskDetail, task)


def serialize_trigger(trigger: Trigger) -> TriggerDetail:
    return _project(TriggerDetail, trigger)


def serialize_trigger_run(run: TriggerRun) -> TriggerRunDetail:
    return _project(TriggerRunDetail, run)


def serialize_program(program: ProgramSnapshot) -> ProgramDetail:
    """
    Per-program shape: tasks by position, triggers newest first.
    """
    tasks = sorted(program.tasks, key=lambda t: t.position)
    triggers = sorted(program.triggers, key=lambda t: t.created_at, reverse=True)
    return _project(
        ProgramDetail,
        program,
        owner=_owner(program),
        tasks=[serialize_task(t) for t in tasks],
        triggers=[serialize_trigger(t) for t in triggers],
    )


def summarize_program(program: ProgramSnapshot) -> ProgramSummary:
    """
    Overview shape: tasks by position, triggers soonest first.
    """
    tasks = sorted(program.tasks, key=lambda t: t.position)
    triggers = sorted(program.triggers, key=_by_next_run)
    return _project(
        ProgramSummary,
        program,
        owner=_owner(program),
        tasks=[_project(TaskSummary, t) for t in tasks],
        triggers=[_project(TriggerSummary, t) for t in triggers],
    )


def build_overview(
    programs: Iterable[ProgramSnapshot],
    recent_runs: Iterable[TriggerRun],
    *,
    now: datetime | str,
    settings: PmSettings | None = None,
) -> Overview:
    """
    Aggregates a tenant's programs into the overview payload.

    Args:
        programs: Every program of the tenant, with tasks and triggers.
        recent_runs: Recent runs of the tenant's triggers.
        now: Evaluation instant for overdue/upcoming classification.
        settings: Window and limits. Defaults to ``pm_settings``.

    Returns:
        Stats, the program list (newest first), the upcoming-events feed
        (soonest first) and the run history (latest first).

    Raises:
        NotFoundError: If a run references a trigger outside ``programs``.
    """
    reference = require_timestamp(now)
    settings = settings or pm_settings
    window = timedelta(days=settings.UPCOMING_WINDOW_DAYS)

    ordered = sorted(programs, key=lambda p: p.created_at, reverse=True)
    pairs = [(program, trigger) for program in ordered for trigger in program.triggers]

    stats = OverviewStats(
        active_programs=sum(1 for p in ordered if p.is_active),
        overdue_triggers=sum(1 for _, t in pairs if is_overdue(t, reference)),
        upcoming_week=sum(1 for _, t in pairs if is_due_within(t, reference, window)),
        total_tasks=sum(len(p.tasks) for p in ordered),
    )

    upcoming = sorted(
        (
            UpcomingEvent(
                id=f"{trigger.id}:{program.id}",
                program_id=program.id,
                program_name=program.name,
                trigger_id=trigger.id,
                scheduled_for=trigger.next_run_at,
                overdue=trigger.next_run_at < reference,
            )
            for program, trigger in pairs
            if trigger.is_active and trigger.next_run_at is not None
        ),
        key=lambda event: event.scheduled_for,
    )[: settings.UPCOMING_EVENTS_LIMIT]

    owners = {trigger.id: program for program, trigger in pairs}
    latest = sorted(recent_runs, key=lambda r: r.run_at, reverse=True)
    runs = []
    for run in latest[: settings.RECENT_RUNS_LIMIT]:
        program = owners.get(run.trigger_id)
        if program is None:
            raise NotFoundError(f"Trigger '{run.trigger_id}' not found")
        runs.append(
            _project(
                RunHistoryEntry,
                run,
                program_id=program.id,
                program_name=program.name,
            )
        )

    return Overview(
        stats=stats,
        programs=[summarize_program(p) for p in ordered],
        upcoming_events=upcoming,
        runs=runs,
    )
