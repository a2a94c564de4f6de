"""Database engine and session factory construction."""

import time
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from questcycle.observability.metrics import MetricsRegistry
from questcycle.utils.time import ensure_utc


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC on every backend.

    SQLite drops tzinfo, so values are normalized to UTC on the way in
    and re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        value = ensure_utc(value)
        if dialect.name != "postgresql":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        return ensure_utc(value)


def create_engine(database_url: str, echo: bool = False, metrics: MetricsRegistry | None = None) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    options: dict = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=10, max_overflow=5)
    engine = create_async_engine(database_url, **options)
    if metrics is not None:
        attach_query_metrics(engine, metrics)
    return engine


def attach_query_metrics(target_engine: AsyncEngine, metrics: MetricsRegistry) -> None:
    """Attach SQLAlchemy event listeners for query metrics."""
    sync_engine = target_engine.sync_engine
    if getattr(sync_engine, "_questcycle_metrics_attached", False):
        return

    @event.listens_for(sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        conn.info["query_start_time"] = time.perf_counter()

    @event.listens_for(sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start_time = conn.info.pop("query_start_time", None)
        if start_time is None:
            return
        metrics.inc_counter("db.query.count")
        metrics.observe("db.query.duration_ms", (time.perf_counter() - start_time) * 1000.0)

    sync_engine._questcycle_metrics_attached = True


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    import questcycle.db.tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
