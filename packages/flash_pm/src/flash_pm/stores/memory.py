from __future__ import annotations

from datetime import datetime

from ..schemas import (
    DueTrigger,
    Owner,
    Program,
    ProgramSnapshot,
    Task,
    Trigger,
    TriggerRun,
    TriggerType,
)
from .base import PmStore


def _flatten(program: Program) -> Program:
    """Drops snapshot-only fields so only the program row is kept."""
    return Program(**{name: getattr(program, name) for name in Program.model_fields})


class MemoryPmStore(PmStore):
    """
    In-memory store implementation.

    Keeps every record in Python dictionaries. It is not persistent and data
    will be lost when the application stops. Useful for testing or simple,
    ephemeral applications.

    Examples:
        >>> store = MemoryPmStore()
        >>> await store.save_program(program)
        >>> snapshot = await store.get_program(program.id, tenant_id="t-1")
    """

    def __init__(self) -> None:
        self._owners: dict[str, Owner] = {}
        self._programs: dict[str, Program] = {}
        self._tasks: dict[str, Task] = {}
        self._triggers: dict[str, Trigger] = {}
        self._runs: dict[str, TriggerRun] = {}

    def _snapshot(self, program: Program) -> ProgramSnapshot:
        tasks = sorted(
            (t for t in self._tasks.values() if t.program_id == program.id),
            key=lambda t: t.position,
        )
        triggers = sorted(
            (t for t in self._triggers.values() if t.program_id == program.id),
            key=lambda t: t.created_at,
            reverse=True,
        )
        return ProgramSnapshot(
            **program.model_dump(),
            owner=self._owners.get(program.owner_id),
            tasks=tasks,
            triggers=triggers,
        )

    async def save_owner(self, owner: Owner) -> None:
        self._owners[owner.id] = owner

    async def get_owner(self, owner_id: str) -> Owner | None:
        return self._owners.get(owner_id)

    async def list_programs(self, tenant_id: str) -> list[ProgramSnapshot]:
        programs = sorted(
            (p for p in self._programs.values() if p.tenant_id == tenant_id),
            key=lambda p: p.created_at,
            reverse=True,
        )
        return [self._snapshot(p) for p in programs]

    async def get_program(
        self, program_id: str, tenant_id: str | None = None
    ) -> ProgramSnapshot | None:
        program = self._programs.get(program_id)
        if program is None:
            return None
        if tenant_id is not None and program.tenant_id != tenant_id:
            return None
        return self._snapshot(program)

    async def save_program(
        self, program: Program, triggers: list[Trigger] | None = None
    ) -> None:
        self._programs[program.id] = _flatten(program)
        for trigger in triggers or []:
            self._triggers[trigger.id] = trigger

    async def delete_program(self, program_id: str) -> bool:
        """
        Removes a program and cascades to its tasks and triggers.

        Returns:
            True if the program was found and removed, False otherwise.
        """
        if program_id not in self._programs:
            return False
        del self._programs[program_id]
        self._tasks = {k: t for k, t in self._tasks.items() if t.program_id != program_id}
        self._triggers = {
            k: t for k, t in self._triggers.items() if t.program_id != program_id
        }
        return True

    async def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    async def save_task(self, task: Task) -> None:
        self._tasks[task.id] = task

    async def delete_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        return self._triggers.get(trigger_id)

    async def save_trigger(self, trigger: Trigger) -> None:
        self._triggers[trigger.id] = trigger

    async def delete_trigger(self, trigger_id: str) -> bool:
        return self._triggers.pop(trigger_id, None) is not None

    async def due_triggers(self, now: datetime, limit: int) -> list[DueTrigger]:
        """
        Returns triggers whose occurrence is due.

        A trigger is due if:
        1. It is an active calendar trigger of an active program.
        2. Its next_run_at is <= now, or it has none and its start_date is <= now.
        """
        due: list[Trigger] = []
        for trigger in self._triggers.values():
            program = self._programs.get(trigger.program_id)
            if program is None or not program.is_active or not trigger.is_active:
                continue
            if trigger.type is not TriggerType.CALENDAR:
                continue
            if trigger.next_run_at is not None:
                if trigger.next_run_at <= now:
                    due.append(trigger)
            elif trigger.start_date is not None and trigger.start_date <= now:
                due.append(trigger)

        due.sort(key=lambda t: (t.next_run_at is None, t.next_run_at or now))
        return [
            DueTrigger(
                program=self._snapshot(self._programs[t.program_id]),
                trigger=t,
            )
            for t in due[:limit]
        ]

    async def commit_run(
        self,
        run: TriggerRun,
        trigger: Trigger,
        program: Program | None = None,
    ) -> None:
        self._runs[run.id] = run
        self._triggers[trigger.id] = trigger
        if program is not None:
            self._programs[program.id] = _flatten(program)

    async def list_trigger_runs(self, trigger_id: str, limit: int) -> list[TriggerRun]:
        runs = [r for r in self._runs.values() if r.trigger_id == trigger_id]
        runs.sort(key=lambda r: r.run_at, reverse=True)
        return runs[:limit]

    async def recent_runs(self, tenant_id: str, limit: int) -> list[TriggerRun]:
        runs = []
        for run in self._runs.values():
            trigger = self._triggers.get(run.trigger_id)
            if trigger is None:
                continue
            program = self._programs.get(trigger.program_id)
            if program is not None and program.tenant_id == tenant_id:
                runs.append(run)
        runs.sort(key=lambda r: r.run_at, reverse=True)
        return runs[:limit]
