"""Expiry detection and regeneration of players' active tasks."""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from questcycle.db.repositories import ActiveTaskRepository
from questcycle.engine.cache import PlayerTaskCache
from questcycle.engine.categories import CategoryRegistry
from questcycle.engine.clock import Clock
from questcycle.engine.generator import TaskGenerator
from questcycle.engine.notifier import Notifier
from questcycle.engine.queue import PersistenceQueue
from questcycle.models import (
    ActiveTask,
    CategoryPolicy,
    FixedPolicy,
    NotificationKind,
    PermanentPolicy,
    PlayerRefreshResult,
    RefreshResult,
)
from questcycle.observability.metrics import MetricsRegistry

logger = logging.getLogger("questcycle.lifecycle")


class LifecycleManager:
    """Expires, deletes and regenerates tasks up to each category's cap.

    Every category refresh is its own persistence operation, so a failure in
    one category never rolls back or blocks another.
    """

    def __init__(
        self,
        queue: PersistenceQueue,
        cache: PlayerTaskCache,
        categories: CategoryRegistry,
        generator: TaskGenerator,
        clock: Clock,
        notifier: Notifier,
        metrics: MetricsRegistry,
        reconcile_quotas: Optional[Callable[[str], Awaitable[object]]] = None,
    ):
        self._queue = queue
        self._cache = cache
        self._categories = categories
        self._generator = generator
        self._clock = clock
        self._notifier = notifier
        self._metrics = metrics
        self._reconcile_quotas = reconcile_quotas

    def generate(
        self, player_id: str, category: CategoryPolicy, count: int, held_keys, now: datetime
    ) -> list[ActiveTask]:
        """Build (unsaved) tasks for up to ``count`` templates not in ``held_keys``."""
        templates = self._generator.pick(category.id, count, held_keys)
        return [ActiveTask(player_id, template, category.id, now) for template in templates]

    async def refresh_category(
        self, player_id: str, category: CategoryPolicy, now: Optional[datetime] = None
    ) -> RefreshResult:
        now = now or self._clock.now()

        async def _refresh(session) -> RefreshResult:
            repo = ActiveTaskRepository(session)
            tasks = await repo.list_for_category(player_id, category.id)
            expired = [
                task for task in tasks
                if self._clock.is_expired(task.assigned_at, category.expire_policy, now)
            ]
            if expired:
                await repo.delete_identities(task.identity for task in expired)
            expired_ids = {task.identity for task in expired}
            remaining = [task for task in tasks if task.identity not in expired_ids]

            generated: list[ActiveTask] = []
            shortfall = category.max_concurrent - len(remaining)
            if shortfall > 0 and self._clock.in_fixed_window(category.expire_policy, now):
                held = {task.task_key for task in remaining}
                generated = self.generate(player_id, category, shortfall, held, now)
                await repo.insert_many(generated)

            return RefreshResult(
                category_id=category.id,
                tasks=remaining + generated,
                expired_count=len(expired),
                generated_count=len(generated),
            )

        result = await self._queue.run(f"refresh:{player_id}:{category.id}", _refresh)
        self._metrics.inc_counter("tasks.expired", result.expired_count)
        self._metrics.inc_counter("tasks.generated", result.generated_count)
        return result

    async def refresh_player(
        self, player_id: str, now: Optional[datetime] = None, notify: bool = True
    ) -> PlayerRefreshResult:
        """Refresh every enabled category and swap the player's cache in one step."""
        now = now or self._clock.now()
        if self._reconcile_quotas is not None:
            try:
                await self._reconcile_quotas(player_id)
            except Exception as exc:
                logger.error(f"Quota reconcile failed for {player_id}: {exc}", exc_info=True)

        outcome = PlayerRefreshResult(player_id=player_id)
        previous = self._cache.categories(player_id)
        snapshot: dict[str, list[ActiveTask]] = {}

        for category in self._categories.enabled():
            try:
                result = await self.refresh_category(player_id, category, now)
            except Exception as exc:
                logger.error(
                    f"Refresh of {category.id} failed for {player_id}: {exc}", exc_info=True
                )
                outcome.failed_categories.append(category.id)
                if category.id in previous:
                    snapshot[category.id] = previous[category.id]
                continue
            outcome.results[category.id] = result
            snapshot[category.id] = result.tasks

        self._cache.replace_player(player_id, self._carry_forward(player_id, snapshot))

        changed = outcome.refreshed_categories
        if changed:
            logger.info(
                f"Refreshed {player_id}: {outcome.expired_count} expired, "
                f"{outcome.generated_count} generated in {', '.join(changed)}"
            )
            if notify:
                names = [self._categories.display_name(category_id) for category_id in changed]
                await self._notifier.send(
                    player_id,
                    NotificationKind.REFRESHED,
                    categories=", ".join(names),
                    category_ids=changed,
                )
        return outcome

    def _carry_forward(
        self, player_id: str, snapshot: dict[str, list[ActiveTask]]
    ) -> dict[str, list[ActiveTask]]:
        """Keep confirmed progress that reached the cache after a category was read."""
        cached = {task.identity: task for task in self._cache.get(player_id)}
        for tasks in snapshot.values():
            for task in tasks:
                current = cached.get(task.identity)
                if current is not None and current is not task:
                    task.catch_up(current)
        return snapshot

    async def login(self, player_id: str) -> PlayerRefreshResult:
        return await self.refresh_player(player_id)

    def logout(self, player_id: str) -> None:
        self._cache.drop_player(player_id)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Refresh every cached player; returns how many had changes."""
        refreshed = 0
        for player_id in self._cache.players():
            try:
                result = await self.refresh_player(player_id, now)
            except Exception as exc:
                logger.error(f"Sweep failed for {player_id}: {exc}", exc_info=True)
                continue
            if result.refreshed_categories:
                refreshed += 1
        return refreshed

    async def purge_stale(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Delete expired rows older than the retention window, for every player."""
        if retention_days <= 0:
            return 0
        now = now or self._clock.now()
        cutoff = now - timedelta(days=retention_days)
        purged = 0

        for category in self._categories.all():
            policy = category.expire_policy
            if isinstance(policy, PermanentPolicy) or (
                isinstance(policy, FixedPolicy) and policy.end is None
            ):
                continue

            async def _purge(session, category=category) -> int:
                repo = ActiveTaskRepository(session)
                stale = [
                    task for task in await repo.list_assigned_before(category.id, cutoff)
                    if self._clock.is_expired(task.assigned_at, category.expire_policy, now)
                ]
                return await repo.delete_identities(task.identity for task in stale)

            purged += await self._queue.run(f"purge:{category.id}", _purge)

        if purged:
            logger.info(f"Purged {purged} stale task rows older than {retention_days} days")
        self._metrics.inc_counter("tasks.purged", purged)
        return purged
