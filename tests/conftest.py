"""
Pytest fixtures for questcycle tests.
"""

import os
import random
from datetime import datetime, timezone

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing questcycle modules.
os.environ.setdefault("QUESTCYCLE_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("QUESTCYCLE_ENV", "development")

from questcycle.config import Settings
from questcycle.db.base import close_db, create_engine, create_session_factory, init_db
from questcycle.engine import QuestEngine
from questcycle.models import CategoryPolicy, RerollPolicy

from .fakes import FakeEconomy, FrozenClock, RecordingNotificationSink, RecordingRewardGranter

# Friday, well past the default 04:00 reset.
START = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def template_records(category: str = "daily", count: int = 5, **overrides) -> list[dict]:
    """Import records ``<category>_0 .. <category>_<count-1>`` breaking stone."""
    records = []
    for i in range(count):
        record = {
            "key": f"{category}_{i}",
            "name": f"{category.title()} task {i}",
            "type": "break",
            "targets": ["minecraft:stone"],
            "target_amount": 4,
            "weight": 10,
            "category": category,
            "reward": {"money": 10},
        }
        record.update(overrides)
        records.append(record)
    return records


def distinct_targets(
    category: str = "daily", count: int = 5, prefix: str = "block", **overrides
) -> list[dict]:
    """Like template_records, but task ``i`` targets ``minecraft:<prefix>_<i>``."""
    records = template_records(category, count, **overrides)
    for i, record in enumerate(records):
        record["targets"] = [f"minecraft:{prefix}_{i}"]
    return records


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'questcycle.db'}"


@pytest.fixture
async def db_engine(database_url):
    """Create a fresh file-backed SQLite database per test."""
    engine = create_engine(database_url)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def rewards() -> RecordingRewardGranter:
    return RecordingRewardGranter()


@pytest.fixture
def economy() -> FakeEconomy:
    return FakeEconomy({"alice": 100.0, "bob": 100.0})


@pytest.fixture
def daily_category() -> CategoryPolicy:
    return CategoryPolicy(
        id="daily",
        display_name="Daily",
        max_concurrent=3,
        reroll=RerollPolicy(max_count=3),
    )


@pytest.fixture
async def make_engine(session_factory, clock, sink, rewards, economy):
    """Factory for started engines sharing one store; all are stopped at teardown."""
    started: list[QuestEngine] = []

    async def _make(categories, seed: int = 7, **kwargs) -> QuestEngine:
        options = dict(
            clock=clock,
            rewards=rewards,
            economy=economy,
            notifications=sink,
            rng=random.Random(seed),
        )
        options.update(kwargs)
        engine = QuestEngine(session_factory, categories, **options)
        await engine.start()
        started.append(engine)
        return engine

    yield _make

    for engine in started:
        await engine.stop()


@pytest.fixture
async def engine(make_engine, daily_category) -> QuestEngine:
    """Started engine with one daily category and five templates."""
    engine = await make_engine([daily_category])
    await engine.import_templates(template_records("daily", 5))
    return engine


@pytest.fixture
async def client(engine, database_url):
    """Async test client bound to the started engine."""
    from questcycle.main import create_app

    settings = Settings(
        database_url=database_url,
        allow_insecure_dev=True,
        task_check_interval_seconds=0,
    )
    app = create_app(settings)
    app.state.engine = engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
