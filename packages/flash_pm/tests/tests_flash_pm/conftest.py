from datetime import datetime, timezone

import pytest
from flash_pm.schemas import (
    Owner,
    Program,
    ProgramSnapshot,
    Task,
    Trigger,
    TriggerRun,
    TriggerRunStatus,
    TriggerType,
)


@pytest.fixture
def now():
    """
    Wednesday, Jan 10th 2024 12:00:00 UTC.
    Fixed anchor so every schedule in the suite is deterministic.
    """
    return datetime(2024, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def owner():
    return Owner(id="user-1", name="Ada Lovelace", email="ada@example.com")


@pytest.fixture
def make_program(now, owner):
    def _make(
        *,
        tasks: int = 0,
        triggers: list[Trigger] | None = None,
        **fields,
    ) -> ProgramSnapshot:
        data = {
            "tenant_id": "tenant-1",
            "owner_id": owner.id,
            "name": "Boiler inspection",
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        program = Program(**data)
        return ProgramSnapshot(
            **program.model_dump(),
            owner=owner,
            tasks=[
                Task(
                    program_id=program.id,
                    title=f"Step {i + 1}",
                    position=i,
                    created_at=now,
                    updated_at=now,
                )
                for i in range(tasks)
            ],
            triggers=[
                t.model_copy(update={"program_id": program.id}) for t in triggers or []
            ],
        )

    return _make


@pytest.fixture
def make_trigger(now):
    def _make(**fields) -> Trigger:
        data = {
            "program_id": "program-1",
            "type": TriggerType.CALENDAR,
            "cron_expression": "0 9 * * 1",
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        return Trigger(**data)

    return _make


@pytest.fixture
def make_run(now):
    def _make(trigger_id: str, **fields) -> TriggerRun:
        data = {
            "trigger_id": trigger_id,
            "status": TriggerRunStatus.SUCCESS,
            "run_at": now,
            "work_order_id": "wo-1",
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        return TriggerRun(**data)

    return _make
