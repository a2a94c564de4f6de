"""
Timestamps stay timezone-aware UTC through the store.
"""

from datetime import datetime, timedelta, timezone

import pytest

from questcycle.db.repositories import ActiveTaskRepository, RerollQuotaRepository
from questcycle.models import ActiveTask, TaskTemplate


@pytest.mark.asyncio
async def test_active_task_round_trip_is_utc(session_factory):
    local = timezone(timedelta(hours=-5))
    assigned = datetime(2024, 3, 15, 7, 0, 0, 123456, tzinfo=local)
    task = ActiveTask("alice", TaskTemplate(key="fish", type="fish"), "daily", assigned)

    async with session_factory() as session:
        await ActiveTaskRepository(session).insert_many([task])
        await session.commit()

    async with session_factory() as session:
        loaded = await ActiveTaskRepository(session).get(task.identity)

    assert loaded is not None
    assert loaded.assigned_at.tzinfo is not None
    assert loaded.assigned_at.utcoffset() == timedelta(0)
    assert loaded.assigned_at == datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_quota_reset_time_is_aware(session_factory):
    now = datetime(2024, 3, 15, 12, 0, 30, 999, tzinfo=timezone.utc)

    async with session_factory() as session:
        repo = RerollQuotaRepository(session)
        await repo.ensure("alice", "daily", now)
        await repo.ensure("alice", "daily", now + timedelta(hours=1))
        await session.commit()

    async with session_factory() as session:
        count, last_reset = await RerollQuotaRepository(session).get("alice", "daily")

    assert count == 0
    assert last_reset == datetime(2024, 3, 15, 12, 0, 30, tzinfo=timezone.utc)
    assert last_reset.tzinfo is not None


@pytest.mark.asyncio
async def test_engine_clock_produces_aware_timestamps(engine):
    await engine.login("alice")

    for task in engine.cache.get("alice"):
        assert task.assigned_at.tzinfo is not None
        assert task.assigned_at.microsecond == 0
