"""SQLAlchemy-based store implementation."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from flash_pm.schemas import (
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


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class OwnerRow(Base):
    __tablename__ = "pm_owners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255))


class ProgramRow(Base):
    __tablename__ = "pm_programs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    owner_id: Mapped[str] = mapped_column(String(64))
    asset_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    timezone: Mapped[str] = mapped_column(String(80), default="UTC")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TaskRow(Base):
    __tablename__ = "pm_tasks"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), index=True)
    title: Mapped[str] = mapped_column(String(200))
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    estimated_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requires_sign_off: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TriggerRow(Base):
    __tablename__ = "pm_triggers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(20))
    cron_expression: Mapped[str | None] = mapped_column(String(255), nullable=True)
    interval_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    meter_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    settings: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class TriggerRunRow(Base):
    __tablename__ = "pm_trigger_runs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Plain column, not a foreign key: runs outlive their trigger
    trigger_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20))
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    scheduled_for: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    work_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


def _program_row(program: Program) -> ProgramRow:
    return ProgramRow(**{name: getattr(program, name) for name in Program.model_fields})


def _trigger_row(trigger: Trigger) -> TriggerRow:
    data = trigger.model_dump()
    data["type"] = trigger.type.value
    return TriggerRow(**data)


def _run_row(run: TriggerRun) -> TriggerRunRow:
    data = run.model_dump()
    data["status"] = run.status.value
    return TriggerRunRow(**data)


class SQLAlchemyPmStore(PmStore):
    """
    SQLAlchemy-based persistent store.

    Saves programs, tasks, triggers and runs to a relational database. It
    requires an asyncio-compatible engine (e.g., asyncpg, aiosqlite).
    Timestamps are written in UTC; naive values read back from backends
    without timezone support are re-tagged as UTC by the schemas.

    Examples:
        >>> from sqlalchemy.ext.asyncio import create_async_engine
        >>> engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        >>> store = SQLAlchemyPmStore(engine)
        >>> await store.initialize()  # Create tables
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self) -> None:
        """
        Creates the necessary database tables if they don't exist.

        Also initializes the session factory. This must be called before
        performing any operations.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    def _get_session(self) -> AsyncSession:
        if self._session_factory is not None:
            return self._session_factory()
        msg = "Store not initialized. Call initialize() first."
        raise RuntimeError(msg)

    async def _snapshots(
        self, session: AsyncSession, rows: list[ProgramRow]
    ) -> list[ProgramSnapshot]:
        """Loads owners, tasks and triggers for ``rows`` in three queries."""
        if not rows:
            return []
        ids = [row.id for row in rows]

        owners = await session.execute(
            select(OwnerRow).where(OwnerRow.id.in_([row.owner_id for row in rows]))
        )
        owner_map = {
            o.id: Owner.model_validate(o, from_attributes=True)
            for o in owners.scalars()
        }

        tasks = await session.execute(
            select(TaskRow)
            .where(TaskRow.program_id.in_(ids))
            .order_by(TaskRow.position.asc())
        )
        task_map: dict[str, list[Task]] = {}
        for t in tasks.scalars():
            task_map.setdefault(t.program_id, []).append(
                Task.model_validate(t, from_attributes=True)
            )

        triggers = await session.execute(
            select(TriggerRow)
            .where(TriggerRow.program_id.in_(ids))
            .order_by(TriggerRow.created_at.desc())
        )
        trigger_map: dict[str, list[Trigger]] = {}
        for t in triggers.scalars():
            trigger_map.setdefault(t.program_id, []).append(
                Trigger.model_validate(t, from_attributes=True)
            )

        return [
            ProgramSnapshot(
                **Program.model_validate(row, from_attributes=True).model_dump(),
                owner=owner_map.get(row.owner_id),
                tasks=task_map.get(row.id, []),
                triggers=trigger_map.get(row.id, []),
            )
            for row in rows
        ]

    async def save_owner(self, owner: Owner) -> None:
        async with self._get_session() as session:
            await session.merge(OwnerRow(**owner.model_dump()))
            await session.commit()

    async def get_owner(self, owner_id: str) -> Owner | None:
        async with self._get_session() as session:
            row = await session.get(OwnerRow, owner_id)
            if row:
                return Owner.model_validate(row, from_attributes=True)
            return None

    async def list_programs(self, tenant_id: str) -> list[ProgramSnapshot]:
        async with self._get_session() as session:
            result = await session.execute(
                select(ProgramRow)
                .where(ProgramRow.tenant_id == tenant_id)
                .order_by(ProgramRow.created_at.desc())
            )
            return await self._snapshots(session, list(result.scalars().all()))

    async def get_program(
        self, program_id: str, tenant_id: str | None = None
    ) -> ProgramSnapshot | None:
        async with self._get_session() as session:
            row = await session.get(ProgramRow, program_id)
            if row is None:
                return None
            if tenant_id is not None and row.tenant_id != tenant_id:
                return None
            snapshots = await self._snapshots(session, [row])
            return snapshots[0]

    async def save_program(
        self, program: Program, triggers: list[Trigger] | None = None
    ) -> None:
        async with self._get_session() as session:
            await session.merge(_program_row(program))
            for trigger in triggers or []:
                await session.merge(_trigger_row(trigger))
            await session.commit()

    async def delete_program(self, program_id: str) -> bool:
        """
        Removes a program and cascades to its tasks and triggers.

        Returns:
            True if the program was found and removed, False otherwise.
        """
        async with self._get_session() as session:
            row = await session.get(ProgramRow, program_id)
            if row is None:
                return False

            await session.execute(delete(TaskRow).where(TaskRow.program_id == program_id))
            await session.execute(
                delete(TriggerRow).where(TriggerRow.program_id == program_id)
            )
            await session.delete(row)
            await session.commit()
            return True

    async def get_task(self, task_id: str) -> Task | None:
        async with self._get_session() as session:
            row = await session.get(TaskRow, task_id)
            if row:
                return Task.model_validate(row, from_attributes=True)
            return None

    async def save_task(self, task: Task) -> None:
        async with self._get_session() as session:
            await session.merge(TaskRow(**task.model_dump()))
            await session.commit()

    async def delete_task(self, task_id: str) -> bool:
        async with self._get_session() as session:
            row = await session.get(TaskRow, task_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def get_trigger(self, trigger_id: str) -> Trigger | None:
        async with self._get_session() as session:
            row = await session.get(TriggerRow, trigger_id)
            if row:
                return Trigger.model_validate(row, from_attributes=True)
            return None

    async def save_trigger(self, trigger: Trigger) -> None:
        async with self._get_session() as session:
            await session.merge(_trigger_row(trigger))
            await session.commit()

    async def delete_trigger(self, trigger_id: str) -> bool:
        async with self._get_session() as session:
            row = await session.get(TriggerRow, trigger_id)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def due_triggers(self, now: datetime, limit: int) -> list[DueTrigger]:
        """
        Returns triggers whose occurrence is due.

        A trigger is due if:
        1. It is an active calendar trigger of an active program.
        2. next_run_at is <= now, or it is unset and start_date is <= now.
        """
        async with self._get_session() as session:
            stmt = (
                select(TriggerRow, ProgramRow)
                .join(ProgramRow, ProgramRow.id == TriggerRow.program_id)
                .where(
                    TriggerRow.is_active.is_(True),
                    ProgramRow.is_active.is_(True),
                    TriggerRow.type == TriggerType.CALENDAR.value,
                    or_(
                        TriggerRow.next_run_at <= now,
                        TriggerRow.next_run_at.is_(None) & (TriggerRow.start_date <= now),
                    ),
                )
                .order_by(TriggerRow.next_run_at.asc().nulls_last())
                .limit(limit)
            )
            result = await session.execute(stmt)
            pairs = result.all()

            programs = {row.id: row for _, row in pairs}
            snapshots = {
                s.id: s for s in await self._snapshots(session, list(programs.values()))
            }
            return [
                DueTrigger(
                    program=snapshots[program_row.id],
                    trigger=Trigger.model_validate(trigger_row, from_attributes=True),
                )
                for trigger_row, program_row in pairs
            ]

    async def commit_run(
        self,
        run: TriggerRun,
        trigger: Trigger,
        program: Program | None = None,
    ) -> None:
        async with self._get_session() as session:
            session.add(_run_row(run))
            await session.merge(_trigger_row(trigger))
            if program is not None:
                await session.merge(_program_row(program))
            await session.commit()

    async def list_trigger_runs(self, trigger_id: str, limit: int) -> list[TriggerRun]:
        async with self._get_session() as session:
            result = await session.execute(
                select(TriggerRunRow)
                .where(TriggerRunRow.trigger_id == trigger_id)
                .order_by(TriggerRunRow.run_at.desc())
                .limit(limit)
            )
            return [
                TriggerRun.model_validate(r, from_attributes=True)
                for r in result.scalars()
            ]

    async def recent_runs(self, tenant_id: str, limit: int) -> list[TriggerRun]:
        async with self._get_session() as session:
            result = await session.execute(
                select(TriggerRunRow)
                .join(TriggerRow, TriggerRow.id == TriggerRunRow.trigger_id)
                .join(ProgramRow, ProgramRow.id == TriggerRow.program_id)
                .where(ProgramRow.tenant_id == tenant_id)
                .order_by(TriggerRunRow.run_at.desc())
                .limit(limit)
            )
            return [
                TriggerRun.model_validate(r, from_attributes=True)
                for r in result.scalars()
            ]
