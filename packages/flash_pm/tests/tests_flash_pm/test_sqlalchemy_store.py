from datetime import timedelta

import pytest
import pytest_asyncio
from flash_pm.schemas import Task, TriggerRunStatus, TriggerType
from flash_pm.stores.sql_alchemy import SQLAlchemyPmStore
from sqlalchemy.ext.asyncio import create_async_engine

# Apply asyncio marker to all tests in this module
pytestmark = pytest.mark.asyncio


# --- Fixtures ---


@pytest_asyncio.fixture
async def engine():
    # Use in-memory SQLite for testing
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine) -> SQLAlchemyPmStore:
    store = SQLAlchemyPmStore(engine)
    await store.initialize()
    return store


@pytest_asyncio.fixture
async def program(store, make_program, owner):
    program = make_program(asset_id="asset-7", timezone="America/New_York")
    await store.save_owner(owner)
    await store.save_program(program)
    return program


# --- Tests ---


async def test_uninitialized_store_raises(engine):
    store = SQLAlchemyPmStore(engine)
    with pytest.raises(RuntimeError, match="not initialized"):
        await store.get_owner("user-1")


async def test_program_round_trip(store, program, owner):
    loaded = await store.get_program(program.id, tenant_id="tenant-1")

    assert loaded.name == program.name
    assert loaded.asset_id == "asset-7"
    assert loaded.timezone == "America/New_York"
    assert loaded.is_active is True
    # SQLite drops the offset; values come back as UTC
    assert loaded.created_at == program.created_at
    assert loaded.created_at.utcoffset() == timedelta(0)
    assert loaded.owner == owner

    assert await store.get_program(program.id, tenant_id="tenant-2") is None
    assert await store.get_owner("nobody") is None


async def test_list_programs_newest_first(store, program, make_program, now):
    older = make_program(name="Older program", created_at=now - timedelta(days=3))
    foreign = make_program(tenant_id="tenant-2")
    await store.save_program(older)
    await store.save_program(foreign)

    programs = await store.list_programs("tenant-1")
    assert [p.id for p in programs] == [program.id, older.id]


async def test_trigger_round_trip(store, program, make_trigger, now):
    trigger = make_trigger(
        program_id=program.id,
        interval_days=7,
        settings={"priority": "high", "tags": ["boiler"]},
        start_date=now - timedelta(days=1),
        next_run_at=now + timedelta(days=5),
    )
    await store.save_trigger(trigger)

    loaded = await store.get_trigger(trigger.id)
    assert loaded.model_dump() == trigger.model_dump()
    assert loaded.type is TriggerType.CALENDAR

    updated = trigger.model_copy(update={"cron_expression": "0 6 * * *", "next_run_at": None})
    await store.save_trigger(updated)
    assert (await store.get_trigger(trigger.id)).model_dump() == updated.model_dump()


async def test_snapshot_orderings(store, program, make_trigger, now):
    for position in (1, 0):
        await store.save_task(
            Task(
                program_id=program.id,
                title=f"Step {position}",
                position=position,
                created_at=now,
                updated_at=now,
            )
        )
    first = make_trigger(program_id=program.id, created_at=now)
    second = make_trigger(program_id=program.id, created_at=now + timedelta(minutes=1))
    await store.save_trigger(first)
    await store.save_trigger(second)

    snapshot = await store.get_program(program.id)
    assert [t.position for t in snapshot.tasks] == [0, 1]
    assert [t.id for t in snapshot.triggers] == [second.id, first.id]


async def test_delete_program_cascades(store, program, make_trigger, make_run, now):
    task = Task(program_id=program.id, title="Step", created_at=now, updated_at=now)
    trigger = make_trigger(program_id=program.id)
    await store.save_task(task)
    await store.save_trigger(trigger)
    await store.commit_run(make_run(trigger.id), trigger)

    assert await store.delete_program(program.id) is True
    assert await store.get_program(program.id) is None
    assert await store.get_task(task.id) is None
    assert await store.get_trigger(trigger.id) is None
    assert len(await store.list_trigger_runs(trigger.id, 10)) == 1
    assert await store.recent_runs("tenant-1", 10) == []

    assert await store.delete_program(program.id) is False


async def test_delete_task_and_trigger(store, program, make_trigger, now):
    task = Task(program_id=program.id, title="Step", created_at=now, updated_at=now)
    trigger = make_trigger(program_id=program.id)
    await store.save_task(task)
    await store.save_trigger(trigger)

    assert await store.delete_task(task.id) is True
    assert await store.delete_task(task.id) is False
    assert await store.delete_trigger(trigger.id) is True
    assert await store.delete_trigger(trigger.id) is False


async def test_due_triggers(store, program, make_program, make_trigger, now):
    paused_program = make_program(is_active=False)
    await store.save_program(paused_program)

    overdue = make_trigger(program_id=program.id, next_run_at=now - timedelta(hours=2))
    due_now = make_trigger(program_id=program.id, next_run_at=now)
    future = make_trigger(program_id=program.id, next_run_at=now + timedelta(minutes=1))
    never_scheduled = make_trigger(
        program_id=program.id, next_run_at=None, start_date=now - timedelta(days=1)
    )
    paused = make_trigger(
        program_id=program.id, next_run_at=now - timedelta(hours=1), is_active=False
    )
    meter = make_trigger(
        program_id=program.id,
        type=TriggerType.METER,
        cron_expression=None,
        meter_threshold=5,
        next_run_at=now - timedelta(hours=1),
    )
    in_paused_program = make_trigger(
        program_id=paused_program.id, next_run_at=now - timedelta(hours=1)
    )
    for t in (overdue, due_now, future, never_scheduled, paused, meter, in_paused_program):
        await store.save_trigger(t)

    due = await store.due_triggers(now, limit=25)
    assert [d.trigger.id for d in due] == [overdue.id, due_now.id, never_scheduled.id]
    assert due[0].program.id == program.id
    assert due[0].program.timezone == "America/New_York"

    assert len(await store.due_triggers(now, limit=2)) == 2


async def test_commit_run(store, program, make_trigger, make_run, now):
    trigger = make_trigger(program_id=program.id, next_run_at=now)
    await store.save_trigger(trigger)

    run = make_run(
        trigger.id,
        status=TriggerRunStatus.SKIPPED,
        work_order_id=None,
        details={"reason": "holiday"},
        scheduled_for=now,
    )
    advanced = trigger.model_copy(
        update={"last_run_at": now, "next_run_at": now + timedelta(days=7)}
    )
    stamped = program.model_copy(update={"last_generated_at": now})

    await store.commit_run(run, advanced, stamped)

    assert (await store.get_trigger(trigger.id)).next_run_at == now + timedelta(days=7)
    assert (await store.get_program(program.id)).last_generated_at == now

    [loaded] = await store.list_trigger_runs(trigger.id, 10)
    assert loaded.model_dump() == run.model_dump()
    assert loaded.status is TriggerRunStatus.SKIPPED


async def test_run_history_ordering(store, program, make_trigger, make_run, now):
    trigger = make_trigger(program_id=program.id)
    await store.save_trigger(trigger)

    runs = [make_run(trigger.id, run_at=now - timedelta(hours=h)) for h in (3, 1, 2)]
    for r in runs:
        await store.commit_run(r, trigger)

    recent = await store.recent_runs("tenant-1", 2)
    assert [r.run_at for r in recent] == [now - timedelta(hours=1), now - timedelta(hours=2)]
    assert await store.recent_runs("tenant-2", 10) == []
