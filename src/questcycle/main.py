"""questcycle main application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from questcycle import __version__
from questcycle.api import router
from questcycle.api.deps import validate_auth_config
from questcycle.config import Settings, get_settings
from questcycle.db.base import close_db, create_engine, create_session_factory, init_db
from questcycle.engine import QuestEngine
from questcycle.engine.clock import Clock
from questcycle.engine.messages import MessageCatalog
from questcycle.observability.metrics import MetricsRegistry
from questcycle.ports import LoggingNotificationSink, WebhookNotificationSink
from questcycle.tasks.sweep import BackgroundLoops

logger = logging.getLogger("questcycle")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_engine(settings: Settings, session_factory, metrics: MetricsRegistry) -> QuestEngine:
    """Construct the engine and its collaborators from settings."""
    if settings.notification_webhook_url:
        notifications = WebhookNotificationSink(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
            api_key=settings.api_key,
        )
    else:
        notifications = LoggingNotificationSink()

    return QuestEngine(
        session_factory,
        settings.resolved_categories(),
        clock=Clock(settings.timezone),
        notifications=notifications,
        messages=MessageCatalog.from_file(settings.messages_file),
        metrics=metrics,
        queue_max_size=settings.queue_max_size,
        queue_submit_timeout=settings.queue_submit_timeout_seconds,
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
        queue_shutdown_timeout=settings.queue_shutdown_timeout_seconds,
        data_retention_days=settings.data_retention_days,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info("Starting questcycle server...")
    logger.info(f"Environment: {settings.env.value}")

    # Fail fast on insecure auth configuration
    validate_auth_config(settings)

    metrics = MetricsRegistry()
    db_engine = create_engine(settings.database_url, echo=settings.debug, metrics=metrics)
    await init_db(db_engine)
    logger.info("Database initialized")

    engine = build_engine(settings, create_session_factory(db_engine), metrics)
    await engine.start()
    app.state.engine = engine

    loops = BackgroundLoops(
        engine,
        task_check_interval=settings.task_check_interval_seconds,
        template_sync_interval=settings.template_sync_interval_seconds,
        retention_interval=settings.retention_interval_seconds,
    )
    loops.start()
    logger.info(f"Background loops started: {', '.join(loops.running) or 'none'}")

    yield

    logger.info("Shutting down questcycle server...")
    await loops.stop()
    await engine.stop()
    app.state.engine = None
    if isinstance(engine.notifications, WebhookNotificationSink):
        await engine.notifications.aclose()
    await close_db(db_engine)
    logger.info("Shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="questcycle",
        description="Task lifecycle engine: periodic quests, progress, rewards and rerolls",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    app.include_router(router)
    return app


def main():
    """Entry point for the application."""
    settings = get_settings()
    uvicorn.run(
        "questcycle.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
