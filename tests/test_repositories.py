"""
Repository statements against the store.
"""

from types import SimpleNamespace

import pytest

from questcycle.db.repositories import ActiveTaskRepository, _dialect_insert
from questcycle.db.tables import RerollQuotaTable
from questcycle.models import ActiveTask, TaskTemplate

from .conftest import START


def test_unsupported_dialect_is_rejected():
    session = SimpleNamespace(
        get_bind=lambda: SimpleNamespace(dialect=SimpleNamespace(name="mysql"))
    )

    with pytest.raises(ValueError, match="mysql"):
        _dialect_insert(session, RerollQuotaTable)


@pytest.mark.asyncio
async def test_add_progress_reports_stored_previous_value(session_factory):
    task = ActiveTask(
        "alice", TaskTemplate(key="fish", type="fish", target_amount=5), "daily", START
    )
    async with session_factory() as session:
        repo = ActiveTaskRepository(session)
        await repo.insert_many([task])
        first = await repo.add_progress(task.identity, 3, task.target)
        second = await repo.add_progress(task.identity, 4, task.target)
        third = await repo.add_progress(task.identity, 1, task.target)
        await session.commit()

    assert first == (0, 3, False)
    assert second == (3, 5, True)
    assert third is None
