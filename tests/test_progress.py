"""
Progress application, completion, milestones and reward claiming.
"""

import asyncio

import pytest

from questcycle.db.repositories import ActiveTaskRepository
from questcycle.models import CategoryPolicy, NotificationKind, RerollMode

from .conftest import distinct_targets


@pytest.fixture
async def progress_engine(make_engine, daily_category):
    engine = await make_engine([daily_category])
    await engine.import_templates(distinct_targets("daily", 3))
    await engine.login("alice")
    return engine


def task_for(engine, key: str, player_id: str = "alice"):
    return engine.cache.find(player_id, key)


@pytest.mark.asyncio
async def test_progress_accumulates_and_completes_once(progress_engine, sink):
    engine = progress_engine

    report = await engine.report_progress("alice", "break", "minecraft:block_0", 3)
    assert report.matched == 1
    assert report.updates[0].current == 3
    assert not task_for(engine, "daily_0").completed

    report = await engine.report_progress("alice", "break", "minecraft:block_0", 5)
    assert report.updates[0].current == 4
    assert report.updates[0].just_completed
    assert task_for(engine, "daily_0").completed

    report = await engine.report_progress("alice", "break", "minecraft:block_0", 1)
    assert report.matched == 0
    assert len(sink.of_kind(NotificationKind.COMPLETED)) == 1


@pytest.mark.asyncio
async def test_non_matching_events_are_ignored(progress_engine):
    engine = progress_engine

    assert (await engine.report_progress("alice", "kill", "minecraft:block_0")).matched == 0
    assert (await engine.report_progress("alice", "break", "minecraft:dirt")).matched == 0
    assert (await engine.report_progress("alice", "break", "minecraft:block_0", 0)).matched == 0
    assert (await engine.report_progress("nobody", "break", "minecraft:block_0")).matched == 0


@pytest.mark.asyncio
async def test_milestones_are_reported_once_each(progress_engine, sink):
    engine = progress_engine

    milestones = []
    for _ in range(4):
        report = await engine.report_progress("alice", "break", "minecraft:block_1")
        milestones.append(report.updates[0].milestone)

    assert milestones == [25, 50, 75, None]
    sent = [n.payload["percent"] for n in sink.of_kind(NotificationKind.MILESTONE)]
    assert sent == [25, 50, 75]


@pytest.mark.asyncio
async def test_progress_is_persisted(progress_engine, session_factory):
    engine = progress_engine
    await engine.report_progress("alice", "break", "minecraft:block_2", 2)

    async with session_factory() as session:
        stored = await ActiveTaskRepository(session).get(task_for(engine, "daily_2").identity)
    assert stored.progress == 2
    assert not stored.completed


@pytest.mark.asyncio
async def test_category_complete_notified_once_per_cycle(progress_engine, sink):
    engine = progress_engine
    for i in range(3):
        await engine.report_progress("alice", "break", f"minecraft:block_{i}", 4)

    complete = sink.of_kind(NotificationKind.CATEGORY_COMPLETE)
    assert len(complete) == 1
    assert complete[0].payload["category"] == "Daily"

    await engine.login("alice")
    await engine.report_progress("alice", "break", "minecraft:block_0", 4)
    assert len(sink.of_kind(NotificationKind.CATEGORY_COMPLETE)) == 1


@pytest.mark.asyncio
async def test_category_complete_again_after_reroll(make_engine, daily_category, sink):
    engine = await make_engine([daily_category])
    await engine.import_templates(distinct_targets("daily", 6))
    await engine.login("alice")

    async def finish_all():
        for task in engine.cache.get("alice", "daily"):
            await engine.report_progress("alice", "break", task.template.targets[0], 4)

    await finish_all()
    await engine.reroll("alice", "daily", RerollMode.FORCE)
    await finish_all()

    assert len(sink.of_kind(NotificationKind.CATEGORY_COMPLETE)) == 2


@pytest.mark.asyncio
async def test_auto_claim_grants_reward(make_engine, rewards, sink):
    engine = await make_engine([CategoryPolicy(id="daily", auto_claim=True)])
    await engine.import_templates(distinct_targets("daily", 3))
    await engine.login("alice")

    report = await engine.report_progress("alice", "break", "minecraft:block_0", 4)

    assert report.updates[0].auto_claimed
    assert task_for(engine, "daily_0").claimed
    assert rewards.granted[0][0] == "alice"
    assert rewards.granted[0][1].money == 10
    assert len(sink.of_kind(NotificationKind.AUTO_CLAIMED)) == 1
    assert sink.of_kind(NotificationKind.COMPLETED) == []


@pytest.mark.asyncio
async def test_claim_reward_flow(progress_engine, rewards, sink):
    engine = progress_engine

    early = await engine.claim_reward("alice", "daily_0")
    assert early.code == "NOT_COMPLETED"

    await engine.report_progress("alice", "break", "minecraft:block_0", 4)
    claimed = await engine.claim_reward("alice", "daily_0")
    again = await engine.claim_reward("alice", "daily_0")
    missing = await engine.claim_reward("alice", "no_such_task")

    assert claimed.success
    assert claimed.data["task"]["claimed"] is True
    assert again.code == "ALREADY_CLAIMED"
    assert missing.code == "NOT_FOUND"
    assert len(rewards.granted) == 1
    assert len(sink.of_kind(NotificationKind.REWARD_CLAIMED)) == 1


@pytest.mark.asyncio
async def test_claim_race_between_processes(make_engine, daily_category, rewards):
    first = await make_engine([daily_category])
    await first.import_templates(distinct_targets("daily", 3))
    second = await make_engine([daily_category])
    await second.reload_catalog()

    await first.login("alice")
    await second.login("alice")
    await first.report_progress("alice", "break", "minecraft:block_0", 4)
    await second.login("alice")

    results = await asyncio.gather(
        first.claim_reward("alice", "daily_0"),
        second.claim_reward("alice", "daily_0"),
    )

    assert sorted(r.code for r in results) == ["CONCURRENCY_CONFLICT", "OK"]
    assert len(rewards.granted) == 1


@pytest.mark.asyncio
async def test_increments_from_two_processes_add_up(make_engine, daily_category, session_factory):
    first = await make_engine([daily_category])
    await first.import_templates(distinct_targets("daily", 3, target_amount=10))
    second = await make_engine([daily_category])
    await second.reload_catalog()
    await first.login("alice")
    await second.login("alice")

    await asyncio.gather(
        first.report_progress("alice", "break", "minecraft:block_0", 2),
        second.report_progress("alice", "break", "minecraft:block_0", 3),
    )

    async with session_factory() as session:
        stored = await ActiveTaskRepository(session).get(task_for(first, "daily_0").identity)
    assert stored.progress == 5


@pytest.mark.asyncio
async def test_row_deleted_elsewhere_is_skipped(make_engine, daily_category):
    first = await make_engine([daily_category])
    await first.import_templates(distinct_targets("daily", 3))
    second = await make_engine([daily_category])
    await second.reload_catalog()
    await first.login("alice")
    await second.login("alice")

    await second.remove_task("alice", "daily", "daily_0")
    report = await first.report_progress("alice", "break", "minecraft:block_0", 1)

    assert report.matched == 1
    assert report.skipped == 1
    assert report.confirmed == 0
    assert task_for(first, "daily_0").progress == 0


@pytest.mark.asyncio
async def test_expired_cached_task_gets_no_progress(progress_engine, clock):
    engine = progress_engine
    clock.advance(days=1)

    report = await engine.report_progress("alice", "break", "minecraft:block_0")

    assert report.matched == 0


@pytest.mark.asyncio
async def test_report_from_event_thread(progress_engine):
    engine = progress_engine
    loop = asyncio.get_running_loop()

    future = await loop.run_in_executor(
        None,
        lambda: engine.report_progress_threadsafe("alice", "break", "minecraft:block_0", 2),
    )
    report = await asyncio.wrap_future(future)

    assert report.confirmed == 1
    assert task_for(engine, "daily_0").progress == 2


@pytest.mark.asyncio
async def test_progress_lands_on_copy_swapped_in_after_commit(
    progress_engine, session_factory, monkeypatch
):
    engine = progress_engine
    async with session_factory() as session:
        reloaded = await ActiveTaskRepository(session).list_for_category("alice", "daily")
    original = engine.queue.run

    async def run_then_swap(name, operation):
        result = await original(name, operation)
        if name.startswith("progress:"):
            engine.cache.replace_player("alice", {"daily": reloaded})
        return result

    monkeypatch.setattr(engine.queue, "run", run_then_swap)
    report = await engine.report_progress("alice", "break", "minecraft:block_0", 4)

    assert report.updates[0].just_completed
    assert task_for(engine, "daily_0") in reloaded
    assert task_for(engine, "daily_0").completed


@pytest.mark.asyncio
async def test_milestone_uses_stored_progress(make_engine, daily_category):
    first = await make_engine([daily_category])
    await first.import_templates(distinct_targets("daily", 3, target_amount=8))
    second = await make_engine([daily_category])
    await second.reload_catalog()
    await first.login("alice")
    await second.login("alice")

    await second.report_progress("alice", "break", "minecraft:block_0", 3)
    report = await first.report_progress("alice", "break", "minecraft:block_0", 1)

    assert report.updates[0].previous == 3
    assert report.updates[0].current == 4
    assert report.updates[0].milestone == 50
