"""Reroll quota arbitration and reroll strategies."""

import logging
from datetime import datetime
from typing import Optional

from questcycle.db.repositories import ActiveTaskRepository, RerollQuotaRepository
from questcycle.engine.cache import PlayerTaskCache
from questcycle.engine.categories import CategoryRegistry
from questcycle.engine.clock import Clock
from questcycle.engine.errors import QuotaExceeded, ValidationError
from questcycle.engine.lifecycle import LifecycleManager
from questcycle.engine.queue import PersistenceQueue
from questcycle.models import CategoryPolicy, QuotaStatus, RerollMode, RerollResult
from questcycle.observability.metrics import MetricsRegistry
from questcycle.ports import Economy
from questcycle.utils.time import truncate_to_seconds

logger = logging.getLogger("questcycle.reroll")


class RerollQuotaManager:
    """Claims reroll credits through the store and runs the reroll strategies.

    The quota is enforced only by a conditional ``UPDATE ... WHERE
    reroll_count < max``; in-process state never decides whether a credit is
    granted, so the limit holds across server processes sharing one store.
    """

    def __init__(
        self,
        queue: PersistenceQueue,
        cache: PlayerTaskCache,
        categories: CategoryRegistry,
        lifecycle: LifecycleManager,
        clock: Clock,
        economy: Economy,
        metrics: MetricsRegistry,
    ):
        self._queue = queue
        self._cache = cache
        self._categories = categories
        self._lifecycle = lifecycle
        self._clock = clock
        self._economy = economy
        self._metrics = metrics

    async def _current_quota(
        self, repo: RerollQuotaRepository, player_id: str, category: CategoryPolicy, now: datetime
    ) -> tuple[int, datetime]:
        """Ensure the row exists and reset it if its reset boundary has passed."""
        await repo.ensure(player_id, category.id, now)
        count, last_reset = await repo.get(player_id, category.id)
        if self._clock.is_expired(last_reset, category.reroll.reset, now):
            if await repo.reset_if_unchanged(player_id, category.id, last_reset, now):
                logger.debug(f"Reroll quota reset for {player_id}/{category.id}")
                return 0, truncate_to_seconds(now)
            count, last_reset = await repo.get(player_id, category.id)
        return count, last_reset

    async def _claim(
        self, repo: RerollQuotaRepository, player_id: str, category: CategoryPolicy, now: datetime
    ) -> None:
        await self._current_quota(repo, player_id, category, now)
        if not await repo.try_claim(player_id, category.id, category.reroll.max_count):
            self._metrics.inc_counter("reroll.denied")
            raise QuotaExceeded(player_id, category.id, category.reroll.max_count)
        self._metrics.inc_counter("reroll.granted")

    async def claim_credit(self, player_id: str, category_id: str) -> None:
        """Consume one reroll credit on its own; raises QuotaExceeded when exhausted."""
        category = self._categories.require(category_id)
        now = self._clock.now()
        await self._queue.run(
            f"quota.claim:{player_id}:{category_id}",
            lambda session: self._claim(RerollQuotaRepository(session), player_id, category, now),
        )

    async def reroll(
        self, player_id: str, category_id: str, mode: RerollMode = RerollMode.PARTIAL
    ) -> RerollResult:
        administrative = mode.is_administrative()
        category = (
            self._categories.require(category_id)
            if administrative
            else self._categories.require_enabled(category_id)
        )
        policy = category.reroll

        cost = 0.0
        if not administrative:
            if not policy.enabled:
                raise ValidationError(f"Reroll disabled for {category_id}", "REROLL_DISABLED")
            if policy.cost > 0 and self._economy.enabled:
                # Checked, not charged: the withdraw happens after commit.
                balance = await self._economy.get_balance(player_id)
                if balance < policy.cost:
                    raise ValidationError(
                        f"{player_id} has {balance}, reroll costs {policy.cost}",
                        "INSUFFICIENT_FUNDS",
                    )
                cost = policy.cost

        keep_done = mode is RerollMode.PARTIAL and policy.keep_completed
        now = self._clock.now()

        async def _reroll(session) -> RerollResult:
            tasks = ActiveTaskRepository(session)
            current = await tasks.list_for_category(player_id, category.id)

            if keep_done:
                kept = [task for task in current if task.is_done()]
                if len(kept) == len(current) and len(kept) >= category.max_concurrent:
                    raise ValidationError(
                        f"Nothing to reroll for {player_id}/{category.id}", "NOTHING_TO_REROLL"
                    )
                exclude = {task.task_key for task in current}
            else:
                kept = []
                exclude = set()

            wanted = category.max_concurrent - len(kept)
            generated = self._lifecycle.generate(player_id, category, wanted, exclude, now)
            if wanted > 0 and not generated:
                raise ValidationError(f"No templates for {category.id}", "NO_TEMPLATES")

            if not administrative:
                await self._claim(RerollQuotaRepository(session), player_id, category, now)

            if keep_done:
                removed = await tasks.delete_incomplete(player_id, category.id)
            else:
                removed = await tasks.delete_category(player_id, category.id)
            await tasks.insert_many(generated)

            return RerollResult(
                category_id=category.id,
                mode=mode.value,
                tasks=kept + generated,
                kept_count=len(kept),
                removed_count=removed,
                generated_count=len(generated),
            )

        result = await self._queue.run(f"reroll:{player_id}:{category.id}:{mode.value}", _reroll)

        if cost > 0:
            if await self._economy.withdraw(player_id, cost):
                result.cost_charged = cost
            else:
                logger.error(
                    f"Reroll for {player_id}/{category.id} committed but withdrawing {cost} failed"
                )

        if self._cache.is_loaded(player_id):
            self._cache.replace_category(player_id, category.id, result.tasks)
        logger.info(
            f"Reroll ({mode.value}) for {player_id}/{category.id}: kept {result.kept_count}, "
            f"removed {result.removed_count}, generated {result.generated_count}"
        )
        return result

    async def get_quota(self, player_id: str, category_id: str) -> QuotaStatus:
        category = self._categories.require(category_id)
        now = self._clock.now()
        count, last_reset = await self._queue.run(
            f"quota.get:{player_id}:{category_id}",
            lambda session: self._current_quota(
                RerollQuotaRepository(session), player_id, category, now
            ),
        )
        max_count = category.reroll.max_count
        return QuotaStatus(
            player_id=player_id,
            category_id=category_id,
            used=count,
            max_count=max_count,
            remaining=max(0, max_count - count),
            last_reset_time=last_reset,
            next_reset=self._clock.next_reset(last_reset, category.reroll.reset),
        )

    async def reset_quota(self, player_id: str, category_id: str) -> bool:
        self._categories.require(category_id)
        now = self._clock.now()
        reset = await self._queue.run(
            f"quota.reset:{player_id}:{category_id}",
            lambda session: RerollQuotaRepository(session).reset(player_id, category_id, now),
        )
        logger.info(f"Admin reset of reroll quota {player_id}/{category_id}: {reset}")
        return reset

    async def reset_category_quotas(self, category_id: str) -> int:
        self._categories.require(category_id)
        now = self._clock.now()
        count = await self._queue.run(
            f"quota.reset_category:{category_id}",
            lambda session: RerollQuotaRepository(session).reset_category(category_id, now),
        )
        logger.info(f"Admin reset of {count} reroll quotas in {category_id}")
        return count

    async def reconcile(self, player_id: str, now: Optional[datetime] = None) -> list[str]:
        """Reset every stored quota of the player whose reset boundary has passed."""
        now = now or self._clock.now()

        async def _reconcile(session) -> list[str]:
            repo = RerollQuotaRepository(session)
            reset: list[str] = []
            for category_id, (count, last_reset) in (await repo.list_for_player(player_id)).items():
                category = self._categories.get(category_id)
                if category is None or count == 0:
                    continue
                if self._clock.is_expired(last_reset, category.reroll.reset, now):
                    if await repo.reset_if_unchanged(player_id, category_id, last_reset, now):
                        reset.append(category_id)
            return reset

        return await self._queue.run(f"quota.reconcile:{player_id}", _reconcile)
