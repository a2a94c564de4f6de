"""Periodic background loops: player sweep, catalog sync, retention cleanup."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from questcycle.engine import QuestEngine

logger = logging.getLogger("questcycle.sweep")


class BackgroundLoops:
    """Runs the engine's periodic jobs until stopped.

    Each interval gets ±20% jitter so several server processes sharing one
    store do not sweep in lockstep. An interval of 0 disables that loop.
    """

    def __init__(
        self,
        engine: QuestEngine,
        task_check_interval: float,
        template_sync_interval: float,
        retention_interval: float,
    ):
        self._engine = engine
        self._intervals = {
            "player-sweep": (task_check_interval, self._sweep_players),
            "catalog-sync": (template_sync_interval, self._sync_catalog),
            "retention": (retention_interval, self._purge_stale),
        }
        self._shutdown_event: Optional[asyncio.Event] = None
        self._tasks: list[asyncio.Task] = []

    async def _sweep_players(self) -> None:
        refreshed = await self._engine.sweep_players()
        if refreshed:
            logger.info(f"Player sweep refreshed {refreshed} players")

    async def _sync_catalog(self) -> None:
        report = await self._engine.sync_catalog()
        if report.changed:
            logger.info(
                f"Catalog sync applied {len(report.added)} added, "
                f"{len(report.updated)} updated, {len(report.removed)} removed"
            )

    async def _purge_stale(self) -> None:
        await self._engine.purge_stale_tasks()

    async def _loop(self, name: str, base_interval: float, job: Callable[[], Awaitable[None]]) -> None:
        logger.info(f"{name} loop started (base interval: {base_interval}s with ±20% jitter)")

        while not self._shutdown_event.is_set():
            jittered_interval = base_interval * random.uniform(0.8, 1.2)
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=jittered_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await job()
            except Exception as e:
                logger.error(f"{name} loop error: {e}", exc_info=True)

        logger.info(f"{name} loop stopped")

    def start(self) -> None:
        self._shutdown_event = asyncio.Event()
        for name, (interval, job) in self._intervals.items():
            if interval and interval > 0:
                self._tasks.append(asyncio.create_task(self._loop(name, interval, job), name=name))

    async def stop(self, timeout: float = 10.0) -> None:
        if self._shutdown_event:
            self._shutdown_event.set()

        for task in self._tasks:
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{task.get_name()} loop did not stop gracefully, cancelling")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._tasks = []
        self._shutdown_event = None

    @property
    def running(self) -> list[str]:
        return [task.get_name() for task in self._tasks if not task.done()]
