"""
A player's full day against one engine, plus the background loops.
"""

import asyncio

import pytest

from questcycle.models import CategoryPolicy, NotificationKind, RerollMode, RerollPolicy
from questcycle.tasks.sweep import BackgroundLoops

from .conftest import distinct_targets


@pytest.fixture
async def game(make_engine):
    engine = await make_engine(
        [
            CategoryPolicy(id="daily", display_name="Daily", reroll=RerollPolicy(max_count=2)),
            CategoryPolicy(
                id="weekly",
                display_name="Weekly",
                max_concurrent=2,
                auto_claim=True,
                expire_policy="weekly",
            ),
        ]
    )
    await engine.import_templates(
        distinct_targets("daily", 6) + distinct_targets("weekly", 4, prefix="ore")
    )
    return engine


@pytest.mark.asyncio
async def test_player_day(game, clock, sink, rewards):
    engine = game

    login = await engine.login("alice")
    assert sorted(login.refreshed_categories) == ["daily", "weekly"]
    assert len(engine.cache.get("alice", "daily")) == 3
    assert len(engine.cache.get("alice", "weekly")) == 2

    daily_task = engine.cache.get("alice", "daily")[0]
    await engine.report_progress("alice", "break", daily_task.template.targets[0], 4)
    claim = await engine.claim_reward("alice", daily_task.task_key)
    assert claim.success

    weekly_task = engine.cache.get("alice", "weekly")[0]
    await engine.report_progress("alice", "break", weekly_task.template.targets[0], 4)
    assert weekly_task.claimed
    assert len(rewards.granted) == 2

    reroll = await engine.reroll("alice", "daily", RerollMode.PARTIAL)
    assert reroll.success
    assert reroll.data["kept"] == 1
    quota = await engine.get_quota("alice", "daily")
    assert (quota.used, quota.remaining) == (1, 1)

    # Next day: daily rolls over, weekly and its claimed task stay.
    clock.advance(days=1)
    await engine.login("alice")
    assert all(t.assigned_at == clock.now() for t in engine.cache.get("alice", "daily"))
    assert engine.cache.find("alice", weekly_task.task_key).claimed
    assert (await engine.get_quota("alice", "daily")).used == 0

    kinds = {n.kind for n in sink.sent}
    assert {
        NotificationKind.REFRESHED,
        NotificationKind.COMPLETED,
        NotificationKind.REWARD_CLAIMED,
        NotificationKind.AUTO_CLAIMED,
    } <= kinds


@pytest.mark.asyncio
async def test_manual_assign_and_remove(game, sink):
    engine = game
    await engine.login("alice")
    held = {t.task_key for t in engine.cache.get("alice", "daily")}
    free_key = next(f"daily_{i}" for i in range(6) if f"daily_{i}" not in held)

    full = await engine.assign_task("alice", "daily", free_key)
    assert full.code == "CATEGORY_FULL"

    removed = await engine.remove_task("alice", "daily", sorted(held)[0])
    assert removed.success
    assert len(engine.cache.get("alice", "daily")) == 2

    assigned = await engine.assign_task("alice", "daily", free_key)
    assert assigned.success
    assert free_key in {t.task_key for t in engine.cache.get("alice", "daily")}
    assert sink.of_kind(NotificationKind.TASK_ASSIGNED)[0].payload["task_key"] == free_key

    duplicate = await engine.assign_task("alice", "daily", free_key)
    unknown = await engine.assign_task("alice", "daily", "no_such_template")
    missing = await engine.remove_task("alice", "daily", "no_such_task")
    assert duplicate.code == "ALREADY_ACTIVE"
    assert unknown.code == "NOT_FOUND"
    assert "no_such_template" in unknown.message
    assert missing.code == "NOT_FOUND"


@pytest.mark.asyncio
async def test_metrics_snapshot(game):
    engine = game
    await engine.login("alice")

    snapshot = engine.metrics_snapshot()

    assert snapshot["counters"]["tasks.generated"] == 5
    assert snapshot["gauges"]["cache.players"] == 1
    assert snapshot["gauges"]["catalog.templates"] == 10
    assert snapshot["summaries"]["queue.operation_ms"]["count"] > 0


@pytest.mark.asyncio
async def test_background_loops_sweep_and_stop(game, clock, monkeypatch):
    engine = game
    await engine.login("alice")
    clock.advance(days=1)
    monkeypatch.setattr("questcycle.tasks.sweep.random.uniform", lambda a, b: 1.0)

    loops = BackgroundLoops(
        engine, task_check_interval=0.05, template_sync_interval=0, retention_interval=0
    )
    loops.start()
    assert loops.running == ["player-sweep"]
    try:
        for _ in range(100):
            if all(t.assigned_at == clock.now() for t in engine.cache.get("alice", "daily")):
                break
            await asyncio.sleep(0.02)
    finally:
        await loops.stop(timeout=1)

    assert all(t.assigned_at == clock.now() for t in engine.cache.get("alice", "daily"))
    assert loops.running == []
