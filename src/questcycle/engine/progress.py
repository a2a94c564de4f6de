"""Progress matching, completion and reward claiming."""

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

from questcycle.db.repositories import ActiveTaskRepository
from questcycle.engine.cache import PlayerTaskCache
from questcycle.engine.categories import CategoryRegistry
from questcycle.engine.clock import Clock
from questcycle.engine.errors import ConcurrencyConflict, NotFoundError, ValidationError
from questcycle.engine.matching import template_accepts
from questcycle.engine.notifier import Notifier
from questcycle.engine.queue import PersistenceQueue
from questcycle.models import (
    ActiveTask,
    NotificationKind,
    ProgressReport,
    ProgressUpdate,
    TaskType,
)
from questcycle.observability.metrics import MetricsRegistry
from questcycle.ports import RewardGranter

logger = logging.getLogger("questcycle.progress")

MILESTONES = (25, 50, 75)


def crossed_milestone(previous_percent: int, current_percent: int) -> Optional[int]:
    """First milestone passed moving from ``previous_percent`` to ``current_percent``."""
    for milestone in MILESTONES:
        if previous_percent < milestone <= current_percent:
            return milestone
    return None


class ProgressTracker:
    """Turns progress events into confirmed task updates.

    Matching reads the cache; the store applies each increment with a guarded
    statement, and only rows it confirms are reflected back into the cache.
    """

    def __init__(
        self,
        queue: PersistenceQueue,
        cache: PlayerTaskCache,
        categories: CategoryRegistry,
        clock: Clock,
        rewards: RewardGranter,
        notifier: Notifier,
        metrics: MetricsRegistry,
    ):
        self._queue = queue
        self._cache = cache
        self._categories = categories
        self._clock = clock
        self._rewards = rewards
        self._notifier = notifier
        self._metrics = metrics

    def match(
        self,
        player_id: str,
        task_type: TaskType,
        selector: str,
        attributes: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> list[ActiveTask]:
        """Cached tasks this event applies to: same type, incomplete, unexpired, accepted."""
        now = now or self._clock.now()
        matched = []
        for category_id, tasks in self._cache.categories(player_id).items():
            category = self._categories.get(category_id)
            if category is None or not category.enabled:
                continue
            for task in tasks:
                if task.completed:
                    continue
                if not template_accepts(task.template, task_type, selector, attributes):
                    continue
                if self._clock.is_expired(task.assigned_at, category.expire_policy, now):
                    continue
                matched.append(task)
        return matched

    async def report_progress(
        self,
        player_id: str,
        task_type: TaskType | str,
        selector: str,
        amount: int = 1,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> ProgressReport:
        task_type = TaskType.parse(task_type)
        report = ProgressReport()
        if amount <= 0:
            return report

        matched = [
            task for task in self.match(player_id, task_type, selector, attributes)
            if task.planned_progress(amount) > task.progress
        ]
        report.matched = len(matched)
        if not matched:
            return report

        async def _persist(session) -> list[Optional[tuple[int, int, bool]]]:
            repo = ActiveTaskRepository(session)
            return [await repo.add_progress(task.identity, amount, task.target) for task in matched]

        stored = await self._queue.run(f"progress:{player_id}:{task_type.value}", _persist)

        for task, row in zip(matched, stored):
            if row is None:
                # Deleted, expired or completed elsewhere.
                report.skipped += 1
                continue
            previous, new_progress, completed = row
            # A refresh may have swapped in a reloaded copy since matching.
            task = self._cache.find(player_id, task.task_key, task.assigned_at) or task
            task.apply_progress(new_progress)
            update = ProgressUpdate(task=task, previous=previous, current=new_progress)
            if completed:
                task.mark_completed()
                update.just_completed = True
            else:
                update.milestone = crossed_milestone(
                    task.percent(previous), task.percent(new_progress)
                )
            report.updates.append(update)

        self._metrics.inc_counter("progress.confirmed", len(report.updates))
        self._metrics.inc_counter("progress.skipped", report.skipped)

        await self._after_commit(player_id, report)
        return report

    async def _after_commit(self, player_id: str, report: ProgressReport) -> None:
        for update in report.updates:
            task = update.task
            if update.just_completed:
                category = self._categories.get(task.category)
                if category is not None and category.auto_claim:
                    update.auto_claimed = await self._auto_claim(task)
                else:
                    await self._notifier.send(
                        player_id,
                        NotificationKind.COMPLETED,
                        task=task.template.display_name,
                        task_key=task.task_key,
                        category=task.category,
                    )
            elif update.milestone is not None:
                await self._notifier.send(
                    player_id,
                    NotificationKind.MILESTONE,
                    task=task.template.display_name,
                    task_key=task.task_key,
                    percent=update.milestone,
                    progress=update.current,
                    target=task.target,
                )

        finished = {u.task.category for u in report.updates if u.just_completed}
        for category_id in sorted(finished):
            tasks = self._cache.get(player_id, category_id)
            if tasks and all(t.completed for t in tasks):
                if self._cache.mark_category_notified(player_id, category_id):
                    report.completed_categories.append(category_id)
                    await self._notifier.send(
                        player_id,
                        NotificationKind.CATEGORY_COMPLETE,
                        category=self._categories.display_name(category_id),
                        category_id=category_id,
                    )

    async def _auto_claim(self, task: ActiveTask) -> bool:
        claimed = await self._queue.run(
            f"auto_claim:{task.player_id}:{task.task_key}",
            lambda session: ActiveTaskRepository(session).mark_claimed(task.identity),
        )
        if not claimed:
            logger.warning(f"Auto-claim of {task.task_key} for {task.player_id} affected no row")
            return False
        task.mark_claimed()
        await self._grant(task)
        await self._notifier.send(
            task.player_id,
            NotificationKind.AUTO_CLAIMED,
            task=task.template.display_name,
            task_key=task.task_key,
            category=task.category,
        )
        return True

    async def _grant(self, task: ActiveTask) -> None:
        try:
            await self._rewards.grant(task.player_id, task.template.reward)
        except Exception as exc:
            logger.error(
                f"Reward grant for {task.player_id}/{task.task_key} failed after claim: {exc}",
                exc_info=True,
            )
        self._metrics.inc_counter("rewards.granted")

    async def claim_reward(
        self, player_id: str, task_key: str, assigned_at: Optional[datetime] = None
    ) -> ActiveTask:
        task = self._cache.find(player_id, task_key, assigned_at)
        if task is None:
            raise NotFoundError("Active task", task_key)
        if not task.completed:
            raise ValidationError(f"{task_key} is not completed", "NOT_COMPLETED")
        if task.claimed:
            raise ValidationError(f"{task_key} was already claimed", "ALREADY_CLAIMED")

        claimed = await self._queue.run(
            f"claim:{player_id}:{task_key}",
            lambda session: ActiveTaskRepository(session).mark_claimed(task.identity),
        )
        if not claimed:
            raise ConcurrencyConflict(f"Claim of {task_key} for {player_id} affected no row")

        task.mark_claimed()
        await self._grant(task)
        await self._notifier.send(
            player_id,
            NotificationKind.REWARD_CLAIMED,
            task=task.template.display_name,
            task_key=task_key,
        )
        return task
