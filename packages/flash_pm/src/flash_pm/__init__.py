"""
flash_pm: preventive-maintenance trigger scheduling.

Computes when PM triggers are next due, keeps them consistent on every edit,
records firing outcomes and aggregates a tenant's programs into an overview.
"""

from .config import PmSettings, pm_settings
from .exceptions import NotFoundError, PmError, ValidationError
from .lifecycle import (
    apply_program_patch,
    apply_task_patch,
    reschedule_triggers,
    upsert_trigger,
    validate_trigger,
)
from .overview import build_overview, serialize_program, serialize_trigger_run
from .recorder import record_trigger_run
from .scheduling import compute_next_run, resolve_timezone, utc_now
from .schemas import (
    Overview,
    Program,
    ProgramPatch,
    ProgramSnapshot,
    RecordedRun,
    RunOutcome,
    Task,
    TaskPatch,
    Trigger,
    TriggerPatch,
    TriggerRun,
    TriggerRunStatus,
    TriggerType,
)
from .service import PmService
from .stores import MemoryPmStore, PmStore, SQLAlchemyPmStore
from .triggers import CronEvaluator, StandardCronEvaluator

__all__ = [
    "CronEvaluator",
    "MemoryPmStore",
    "NotFoundError",
    "Overview",
    "PmError",
    "PmService",
    "PmSettings",
    "PmStore",
    "Program",
    "ProgramPatch",
    "ProgramSnapshot",
    "RecordedRun",
    "RunOutcome",
    "SQLAlchemyPmStore",
    "StandardCronEvaluator",
    "Task",
    "TaskPatch",
    "Trigger",
    "TriggerPatch",
    "TriggerRun",
    "TriggerRunStatus",
    "TriggerType",
    "ValidationError",
    "apply_program_patch",
    "apply_task_patch",
    "build_overview",
    "compute_next_run",
    "pm_settings",
    "record_trigger_run",
    "reschedule_triggers",
    "resolve_timezone",
    "serialize_program",
    "serialize_trigger_run",
    "upsert_trigger",
    "utc_now",
]
