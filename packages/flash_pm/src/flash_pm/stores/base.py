from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from flash_pm.schemas import (
        DueTrigger,
        Owner,
        Program,
        ProgramSnapshot,
        Task,
        Trigger,
        TriggerRun,
    )


class PmStore(ABC):
    """
    Interface for program, task, trigger and run storage.

    Any storage backend (Memory, SQL) must implement these methods. Each
    write method is one atomic unit: callers never observe half of it.
    """

    # --- Owners ---

    @abstractmethod
    async def save_owner(self, owner: Owner) -> None:
        """Adds or replaces an owner summary."""
        ...

    @abstractmethod
    async def get_owner(self, owner_id: str) -> Owner | None:
        ...

    # --- Programs ---

    @abstractmethod
    async def list_programs(self, tenant_id: str) -> list[ProgramSnapshot]:
        """Returns the tenant's programs, newest first, with tasks and triggers."""
        ...

    @abstractmethod
    async def get_program(
        self, program_id: str, tenant_id: str | None = None
    ) -> ProgramSnapshot | None:
        """Retrieves one program, optionally scoped to a tenant."""
        ...

    @abstractmethod
    async def save_program(
        self, program: Program, triggers: list[Trigger] | None = None
    ) -> None:
        """Adds or replaces a program, plus any triggers rescheduled with it."""
        ...

    @abstractmethod
    async def delete_program(self, program_id: str) -> bool:
        """Removes a program with its tasks and triggers. Runs are kept."""
        ...

    # --- Tasks ---

    @abstractmethod
    async def get_task(self, task_id: str) -> Task | None:
        ...

    @abstractmethod
    async def save_task(self, task: Task) -> None:
        ...

    @abstractmethod
    async def delete_task(self, task_id: str) -> bool:
        ...

    # --- Triggers ---

    @abstractmethod
    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        ...

    @abstractmethod
    async def save_trigger(self, trigger: Trigger) -> None:
        ...

    @abstractmethod
    async def delete_trigger(self, trigger_id: str) -> bool:
        ...

    @abstractmethod
    async def due_triggers(self, now: datetime, limit: int) -> list[DueTrigger]:
        """
        Returns active calendar triggers of active programs that are due:
        ``next_run_at <= now``, or no ``next_run_at`` and ``start_date <= now``.
        Ordered by ``next_run_at``, unscheduled ones last.
        """
        ...

    # --- Runs ---

    @abstractmethod
    async def commit_run(
        self,
        run: TriggerRun,
        trigger: Trigger,
        program: Program | None = None,
    ) -> None:
        """Inserts a run and stores its trigger (and program) in one unit."""
        ...

    @abstractmethod
    async def list_trigger_runs(self, trigger_id: str, limit: int) -> list[TriggerRun]:
        """Returns the trigger's runs, latest first."""
        ...

    @abstractmethod
    async def recent_runs(self, tenant_id: str, limit: int) -> list[TriggerRun]:
        """Returns the latest runs of triggers that still belong to the tenant."""
        ...
