"""
Caller-side orchestration of the PM engine.

Route handlers call :class:`PmService`; it fetches one snapshot from the
store, runs the pure core over it with the injected clock, and persists the
result in a single write.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from .config import PmSettings, pm_settings
from .exceptions import NotFoundError, ValidationError
from .lifecycle import (
    apply_program_patch,
    apply_task_patch,
    reschedule_triggers,
    upsert_trigger,
    validate_trigger,
)
from .logging import scoped_trace_id
from .overview import (
    build_overview,
    serialize_program,
    serialize_task,
    serialize_trigger,
    serialize_trigger_run,
)
from .recorder import record_trigger_run
from .scheduling import utc_now
from .schemas import TriggerRunStatus
from .stores.memory import MemoryPmStore
from .triggers import CronEvaluator, StandardCronEvaluator

if TYPE_CHECKING:
    from datetime import datetime

    from .schemas import (
        DueTrigger,
        Overview,
        ProgramDetail,
        ProgramPatch,
        ProgramSnapshot,
        RunOutcome,
        TaskDetail,
        TaskPatch,
        TriggerDetail,
        TriggerPatch,
        TriggerRunDetail,
    )
    from .stores.base import PmStore

logger = logging.getLogger(__name__)


class PmService:
    """
    Preventive-maintenance programs, tasks and triggers for many tenants.

    Examples:
        >>> from datetime import datetime, timezone
        >>> service = PmService(
        ...     clock=lambda: datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
        ... )
        >>> program = await service.create_program(
        ...     "tenant-1", "user-1", {"name": "Boiler inspection"}
        ... )
        >>> trigger = await service.create_trigger(
        ...     "tenant-1",
        ...     program.id,
        ...     {"type": "calendar", "cronExpression": "0 9 * * 1"},
        ... )
        >>> trigger.model_dump(by_alias=True)["nextRunAt"]
        '2024-01-15T09:00:00.000Z'
    """

    def __init__(
        self,
        store: PmStore | None = None,
        clock: Callable[[], datetime] | None = None,
        evaluator: CronEvaluator | None = None,
        settings: PmSettings | None = None,
    ) -> None:
        """
        Initialize the service with optional custom collaborators.

        Args:
            store: Storage backend. Defaults to MemoryPmStore.
            clock: Source of "now". Defaults to the UTC wall clock.
            evaluator: Cron capability. Defaults to StandardCronEvaluator.
            settings: Limits and windows. Defaults to ``pm_settings``.
        """
        self.store = store or MemoryPmStore()
        self.clock = clock or utc_now
        self.evaluator = evaluator or StandardCronEvaluator()
        self.settings = settings or pm_settings

    async def _require_program(
        self, tenant_id: str, program_id: str
    ) -> ProgramSnapshot:
        program = await self.store.get_program(program_id, tenant_id=tenant_id)
        if program is None:
            raise NotFoundError("Program not found")
        return program

    async def _require_owner(self, owner_id: str) -> None:
        if await self.store.get_owner(owner_id) is None:
            raise ValidationError("ownerId must reference a known user")

    # --- Programs ---

    async def list_programs(self, tenant_id: str) -> list[ProgramDetail]:
        programs = await self.store.list_programs(tenant_id)
        return [serialize_program(p) for p in programs]

    async def get_program(self, tenant_id: str, program_id: str) -> ProgramDetail:
        return serialize_program(await self._require_program(tenant_id, program_id))

    async def create_program(
        self,
        tenant_id: str,
        user_id: str,
        patch: ProgramPatch | Mapping[str, Any],
    ) -> ProgramDetail:
        """
        Creates a program owned by ``patch.ownerId`` or else by ``user_id``.

        Raises:
            ValidationError: On malformed input or an unknown owner.
        """
        program = apply_program_patch(
            None, patch, now=self.clock(), tenant_id=tenant_id, owner_id=user_id
        )
        await self._require_owner(program.owner_id)
        await self.store.save_program(program)

        with scoped_trace_id(f"program:{program.id}"):
            logger.info("Created program '%s' for tenant %s", program.name, tenant_id)

        return await self.get_program(tenant_id, program.id)

    async def update_program(
        self,
        tenant_id: str,
        program_id: str,
        patch: ProgramPatch | Mapping[str, Any],
    ) -> ProgramDetail:
        """
        Updates a program. A timezone change reschedules all its triggers in
        the same write.
        """
        existing = await self._require_program(tenant_id, program_id)
        now = self.clock()
        program = apply_program_patch(existing, patch, now=now)

        if program.owner_id != existing.owner_id:
            await self._require_owner(program.owner_id)

        rescheduled = []
        if program.timezone != existing.timezone:
            rescheduled = reschedule_triggers(
                existing.triggers, program.timezone, now=now, evaluator=self.evaluator
            )

        await self.store.save_program(program, rescheduled)

        with scoped_trace_id(f"program:{program_id}"):
            if rescheduled:
                logger.info(
                    "Timezone changed to %s, rescheduled %d trigger(s)",
                    program.timezone,
                    len(rescheduled),
                )
            else:
                logger.info("Updated program '%s'", program.name)

        return await self.get_program(tenant_id, program_id)

    async def delete_program(self, tenant_id: str, program_id: str) -> None:
        await self._require_program(tenant_id, program_id)
        await self.store.delete_program(program_id)
        with scoped_trace_id(f"program:{program_id}"):
            logger.info("Deleted program with its tasks and triggers")

    # --- Tasks ---

    async def list_tasks(self, tenant_id: str, program_id: str) -> list[TaskDetail]:
        program = await self._require_program(tenant_id, program_id)
        tasks = sorted(program.tasks, key=lambda t: t.position)
        return [serialize_task(t) for t in tasks]

    async def create_task(
        self,
        tenant_id: str,
        program_id: str,
        patch: TaskPatch | Mapping[str, Any],
    ) -> TaskDetail:
        """Appends a task unless the payload names a position."""
        program = await self._require_program(tenant_id, program_id)
        task = apply_task_patch(
            None,
            patch,
            now=self.clock(),
            program_id=program_id,
            default_position=len(program.tasks),
        )
        await self.store.save_task(task)
        return serialize_task(task)

    async def update_task(
        self,
        tenant_id: str,
        program_id: str,
        task_id: str,
        patch: TaskPatch | Mapping[str, Any],
    ) -> TaskDetail:
        await self._require_program(tenant_id, program_id)
        existing = await self.store.get_task(task_id)
        if existing is None or existing.program_id != program_id:
            raise NotFoundError("Task not found")

        task = apply_task_patch(existing, patch, now=self.clock())
        await self.store.save_task(task)
        return serialize_task(task)

    async def delete_task(self, tenant_id: str, program_id: str, task_id: str) -> None:
        await self._require_program(tenant_id, program_id)
        existing = await self.store.get_task(task_id)
        if existing is None or existing.program_id != program_id:
            raise NotFoundError("Task not found")
        await self.store.delete_task(task_id)

    # --- Triggers ---

    async def list_triggers(
        self, tenant_id: str, program_id: str
    ) -> list[TriggerDetail]:
        program = await self._require_program(tenant_id, program_id)
        triggers = sorted(program.triggers, key=lambda t: t.created_at, reverse=True)
        return [serialize_trigger(t) for t in triggers]

    async def create_trigger(
        self,
        tenant_id: str,
        program_id: str,
        patch: TriggerPatch | Mapping[str, Any],
    ) -> TriggerDetail:
        """
        Creates a trigger with its first ``next_run_at`` already computed.

        Raises:
            NotFoundError: If the program is not in the tenant.
            ValidationError: On malformed values or violated trigger rules.
        """
        program = await self._require_program(tenant_id, program_id)
        trigger = upsert_trigger(
            None,
            patch,
            program.timezone,
            now=self.clock(),
            program_id=program_id,
            evaluator=self.evaluator,
        )
        validate_trigger(trigger, self.evaluator)
        await self.store.save_trigger(trigger)

        with scoped_trace_id(f"trigger:{trigger.id}"):
            logger.info("Created %s trigger, next run %s", trigger.type.value, trigger.next_run_at)

        return serialize_trigger(trigger)

    async def update_trigger(
        self,
        tenant_id: str,
        program_id: str,
        trigger_id: str,
        patch: TriggerPatch | Mapping[str, Any],
    ) -> TriggerDetail:
        program = await self._require_program(tenant_id, program_id)
        existing = await self.store.get_trigger(trigger_id)
        if existing is None or existing.program_id != program_id:
            raise NotFoundError("Trigger not found")

        trigger = upsert_trigger(
            existing,
            patch,
            program.timezone,
            now=self.clock(),
            evaluator=self.evaluator,
        )
        validate_trigger(trigger, self.evaluator)
        await self.store.save_trigger(trigger)

        with scoped_trace_id(f"trigger:{trigger_id}"):
            logger.info("Updated trigger, next run %s", trigger.next_run_at)

        return serialize_trigger(trigger)

    async def delete_trigger(
        self, tenant_id: str, program_id: str, trigger_id: str
    ) -> None:
        await self._require_program(tenant_id, program_id)
        existing = await self.store.get_trigger(trigger_id)
        if existing is None or existing.program_id != program_id:
            raise NotFoundError("Trigger not found")
        await self.store.delete_trigger(trigger_id)

    async def list_trigger_runs(
        self, tenant_id: str, program_id: str, trigger_id: str
    ) -> list[TriggerRunDetail]:
        await self._require_program(tenant_id, program_id)
        trigger = await self.store.get_trigger(trigger_id)
        if trigger is None or trigger.program_id != program_id:
            raise NotFoundError("Trigger not found")
        runs = await self.store.list_trigger_runs(
            trigger_id, self.settings.TRIGGER_RUNS_LIMIT
        )
        return [serialize_trigger_run(r) for r in runs]

    # --- Overview ---

    async def get_overview(self, tenant_id: str) -> Overview:
        programs = await self.store.list_programs(tenant_id)
        runs = await self.store.recent_runs(tenant_id, self.settings.RECENT_RUNS_LIMIT)
        return build_overview(programs, runs, now=self.clock(), settings=self.settings)

    # --- Execution feedback ---

    async def due_triggers(self) -> list[DueTrigger]:
        """Triggers an external executor should attempt now."""
        return await self.store.due_triggers(
            self.clock(), self.settings.DUE_TRIGGERS_BATCH
        )

    async def record_run(
        self,
        trigger_id: str,
        outcome: RunOutcome | Mapping[str, Any],
    ) -> TriggerRunDetail:
        """
        Stores the outcome of one attempt and reschedules the trigger.

        A successful run also stamps the program's ``last_generated_at``.

        Raises:
            NotFoundError: If the trigger or its program no longer exists.
            ValidationError: If ``outcome`` is malformed.
        """
        trigger = await self.store.get_trigger(trigger_id)
        if trigger is None:
            raise NotFoundError("Trigger not found")
        program = await self.store.get_program(trigger.program_id)
        if program is None:
            raise NotFoundError("Program not found")

        now = self.clock()
        recorded = record_trigger_run(
            trigger, outcome, program.timezone, now=now, evaluator=self.evaluator
        )

        updated_program = None
        if recorded.run.status == TriggerRunStatus.SUCCESS:
            updated_program = program.model_copy(
                update={"last_generated_at": recorded.run.run_at, "updated_at": now}
            )

        await self.store.commit_run(recorded.run, recorded.trigger, updated_program)

        with scoped_trace_id(f"trigger:{trigger_id}"):
            if recorded.run.status == TriggerRunStatus.FAILED:
                logger.warning(
                    "Run failed, occurrence %s stays due: %s",
                    recorded.run.scheduled_for,
                    recorded.run.error,
                )
            else:
                logger.info(
                    "Run %s, next run %s",
                    recorded.run.status.value,
                    recorded.trigger.next_run_at,
                )

        return serialize_trigger_run(recorded.run)
