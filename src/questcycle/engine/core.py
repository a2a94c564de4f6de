"""questcycle engine facade.

Wires the components together and exposes the operations used by the event
source, the catalog admin and the UI/command layer. Player-facing operations
return an ``OperationResult`` carrying a localized message; the detailed cause
of a failure only goes to the log.
"""

import asyncio
import concurrent.futures
import logging
import random
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from questcycle.db.repositories import ActiveTaskRepository
from questcycle.engine.cache import PlayerTaskCache
from questcycle.engine.catalog import TaskCatalog, TemplateInput
from questcycle.engine.categories import CategoryRegistry
from questcycle.engine.clock import Clock
from questcycle.engine.errors import NotFoundError, QuestCycleError, QuotaExceeded, ValidationError
from questcycle.engine.generator import TaskGenerator
from questcycle.engine.lifecycle import LifecycleManager
from questcycle.engine.messages import MessageCatalog
from questcycle.engine.notifier import Notifier
from questcycle.engine.progress import ProgressTracker
from questcycle.engine.queue import PersistenceQueue
from questcycle.engine.reroll import RerollQuotaManager
from questcycle.models import (
    ActiveTask,
    CatalogSyncReport,
    CategoryPolicy,
    NotificationKind,
    OperationResult,
    PlayerRefreshResult,
    ProgressReport,
    QuotaStatus,
    RerollMode,
    TaskTemplate,
    TaskType,
)
from questcycle.observability.metrics import MetricsRegistry
from questcycle.ports import (
    DisabledEconomy,
    Economy,
    LoggingNotificationSink,
    LoggingRewardGranter,
    NotificationSink,
    RewardGranter,
)

logger = logging.getLogger("questcycle.engine")

# Error code -> player-facing message key
_FAILURE_MESSAGES = {
    "QUOTA_EXCEEDED": "reroll.quota_exceeded",
    "REROLL_DISABLED": "reroll.disabled",
    "INSUFFICIENT_FUNDS": "reroll.insufficient_funds",
    "NOTHING_TO_REROLL": "reroll.nothing_to_reroll",
    "NO_TEMPLATES": "reroll.no_templates",
    "UNKNOWN_CATEGORY": "error.unknown_category",
    "CATEGORY_DISABLED": "error.category_disabled",
    "NOT_FOUND": "error.not_found",
    "CONCURRENCY_CONFLICT": "error.conflict",
    "NOT_COMPLETED": "claim.not_completed",
    "ALREADY_CLAIMED": "claim.already_claimed",
    "ALREADY_ACTIVE": "assign.already_active",
    "CATEGORY_FULL": "assign.category_full",
    "PERSISTENCE_ERROR": "error.persistence",
}


class QuestEngine:
    """Task lifecycle engine for one server process."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        categories: Iterable[CategoryPolicy],
        *,
        clock: Optional[Clock] = None,
        rewards: Optional[RewardGranter] = None,
        economy: Optional[Economy] = None,
        notifications: Optional[NotificationSink] = None,
        messages: Optional[MessageCatalog] = None,
        metrics: Optional[MetricsRegistry] = None,
        rng: Optional[random.Random] = None,
        queue_max_size: int = 1000,
        queue_submit_timeout: float = 5.0,
        slow_query_threshold_ms: float = 1000.0,
        queue_shutdown_timeout: float = 10.0,
        data_retention_days: int = 7,
    ):
        self.metrics = metrics or MetricsRegistry()
        self.clock = clock or Clock()
        self.messages = messages or MessageCatalog()
        self.categories = CategoryRegistry(categories)
        self.economy = economy or DisabledEconomy()
        self.rewards = rewards or LoggingRewardGranter()
        self.notifications = notifications or LoggingNotificationSink()
        self.data_retention_days = data_retention_days

        self.queue = PersistenceQueue(
            session_factory,
            metrics=self.metrics,
            max_size=queue_max_size,
            submit_timeout=queue_submit_timeout,
            slow_threshold_ms=slow_query_threshold_ms,
            shutdown_timeout=queue_shutdown_timeout,
        )
        self.cache = PlayerTaskCache()
        self.notifier = Notifier(self.notifications, self.messages, self.cache, self.metrics)
        self.catalog = TaskCatalog(self.queue, self.clock, self.categories)
        self.generator = TaskGenerator(self.catalog, rng)
        self.lifecycle = LifecycleManager(
            self.queue,
            self.cache,
            self.categories,
            self.generator,
            self.clock,
            self.notifier,
            self.metrics,
            reconcile_quotas=self._reconcile_quotas,
        )
        self.rerolls = RerollQuotaManager(
            self.queue,
            self.cache,
            self.categories,
            self.lifecycle,
            self.clock,
            self.economy,
            self.metrics,
        )
        self.progress = ProgressTracker(
            self.queue,
            self.cache,
            self.categories,
            self.clock,
            self.rewards,
            self.notifier,
            self.metrics,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def _reconcile_quotas(self, player_id: str) -> list[str]:
        return await self.rerolls.reconcile(player_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        await self.queue.start()
        await self.catalog.load()
        logger.info(
            f"Engine started with {len(self.categories)} categories and "
            f"{len(self.catalog)} templates"
        )

    async def stop(self) -> None:
        await self.queue.shutdown()
        logger.info("Engine stopped")

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    async def login(self, player_id: str) -> PlayerRefreshResult:
        return await self.lifecycle.login(player_id)

    def logout(self, player_id: str) -> None:
        self.lifecycle.logout(player_id)

    async def ensure_loaded(self, player_id: str) -> None:
        if not self.cache.is_loaded(player_id):
            await self.lifecycle.refresh_player(player_id)

    async def get_active_tasks(
        self, player_id: str, category_id: Optional[str] = None
    ) -> list[ActiveTask]:
        if category_id is not None:
            self.categories.require(category_id)
        await self.ensure_loaded(player_id)
        return self.cache.get(player_id, category_id)

    async def sweep_players(self) -> int:
        return await self.lifecycle.sweep()

    async def purge_stale_tasks(self) -> int:
        return await self.lifecycle.purge_stale(self.data_retention_days)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def report_progress(
        self,
        player_id: str,
        task_type: TaskType | str,
        selector: str,
        amount: int = 1,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> ProgressReport:
        return await self.progress.report_progress(
            player_id, task_type, selector, amount, attributes
        )

    def report_progress_threadsafe(
        self,
        player_id: str,
        task_type: TaskType | str,
        selector: str,
        amount: int = 1,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> concurrent.futures.Future:
        """Entry point for event threads that do not run the engine loop."""
        if self._loop is None:
            raise RuntimeError("Engine not started")
        return asyncio.run_coroutine_threadsafe(
            self.report_progress(player_id, task_type, selector, amount, attributes),
            self._loop,
        )

    # ------------------------------------------------------------------
    # Player-facing operations
    # ------------------------------------------------------------------

    def _success(self, key: str, data: Optional[dict[str, Any]] = None, **values: Any) -> OperationResult:
        return OperationResult(
            success=True, code="OK", message=self.messages.format(key, **values), data=data or {}
        )

    def _failure(self, operation: str, exc: QuestCycleError, **values: Any) -> OperationResult:
        logger.info(f"{operation} failed: {exc.code} {exc.message}")
        if isinstance(exc, QuotaExceeded):
            values.setdefault("limit", exc.limit)
        key = _FAILURE_MESSAGES.get(exc.code, "error.generic")
        return OperationResult(
            success=False, code=exc.code, message=self.messages.format(key, **values)
        )

    async def reroll(
        self, player_id: str, category_id: str, mode: RerollMode | str = RerollMode.PARTIAL
    ) -> OperationResult:
        mode = RerollMode(mode)
        category = self.categories.get(category_id)
        names = {
            "category": category.display_name if category else category_id,
            "cost": category.reroll.cost if category else 0,
        }
        try:
            await self.ensure_loaded(player_id)
            result = await self.rerolls.reroll(player_id, category_id, mode)
        except QuestCycleError as exc:
            return self._failure(f"Reroll {player_id}/{category_id}", exc, **names)
        return self._success(
            "reroll.success",
            data={
                "tasks": [task.to_view().model_dump(mode="json") for task in result.tasks],
                "kept": result.kept_count,
                "removed": result.removed_count,
                "generated": result.generated_count,
                "cost_charged": result.cost_charged,
            },
            generated=result.generated_count,
            **names,
        )

    async def claim_reward(
        self, player_id: str, task_key: str, assigned_at: Optional[datetime] = None
    ) -> OperationResult:
        task_name = task_key
        try:
            await self.ensure_loaded(player_id)
            cached = self.cache.find(player_id, task_key, assigned_at)
            if cached is not None:
                task_name = cached.template.display_name
            task = await self.progress.claim_reward(player_id, task_key, assigned_at)
        except QuestCycleError as exc:
            return self._failure(f"Claim {player_id}/{task_key}", exc, task=task_name)
        return self._success(
            "claim.success",
            data={"task": task.to_view().model_dump(mode="json")},
            task=task.template.display_name,
        )

    async def assign_task(self, player_id: str, category_id: str, template_key: str) -> OperationResult:
        """Manually assign a template to a player's category."""
        try:
            category = self.categories.require_enabled(category_id)
            template = self.catalog.require(template_key)
            task = await self._assign(player_id, category, template)
        except NotFoundError as exc:
            logger.info(f"Assign {player_id}/{category_id}: {exc.message}")
            return OperationResult(
                success=False,
                code=exc.code,
                message=self.messages.format("error.template_not_found", task=template_key),
            )
        except QuestCycleError as exc:
            return self._failure(
                f"Assign {player_id}/{category_id}",
                exc,
                task=template_key,
                category=self.categories.display_name(category_id),
            )
        await self.notifier.send(
            player_id,
            NotificationKind.TASK_ASSIGNED,
            task=template.display_name,
            task_key=template.key,
            category=category.display_name,
        )
        return self._success(
            "assign.success",
            data={"task": task.to_view().model_dump(mode="json")},
            task=template.display_name,
            category=category.display_name,
        )

    async def _assign(self, player_id: str, category: CategoryPolicy, template: TaskTemplate) -> ActiveTask:
        now = self.clock.now()
        task = ActiveTask(player_id, template, category.id, now)

        async def _insert(session) -> None:
            repo = ActiveTaskRepository(session)
            current = await repo.list_for_category(player_id, category.id)
            if any(t.task_key == template.key for t in current):
                raise ValidationError(f"{template.key} already active", "ALREADY_ACTIVE")
            if len(current) >= category.max_concurrent:
                raise ValidationError(f"{category.id} is full", "CATEGORY_FULL")
            await repo.insert_many([task])

        await self.queue.run(f"assign:{player_id}:{template.key}", _insert)
        if self.cache.is_loaded(player_id):
            self.cache.add(task)
        logger.info(f"Assigned {template.key} to {player_id} in {category.id}")
        return task

    async def remove_task(self, player_id: str, category_id: str, task_key: str) -> OperationResult:
        try:
            category = self.categories.require(category_id)
            removed = await self.queue.run(
                f"remove:{player_id}:{task_key}",
                lambda session: ActiveTaskRepository(session).delete_task(
                    player_id, category_id, task_key
                ),
            )
            if not removed:
                raise NotFoundError("Active task", task_key)
        except QuestCycleError as exc:
            return self._failure(f"Remove {player_id}/{task_key}", exc, task=task_key)
        self.cache.remove(player_id, category_id, task_key)
        logger.info(f"Removed {task_key} from {player_id} in {category_id}")
        return self._success(
            "remove.success", data={"removed": removed}, task=task_key, category=category.display_name
        )

    # ------------------------------------------------------------------
    # Reroll quota
    # ------------------------------------------------------------------

    async def get_quota(self, player_id: str, category_id: str) -> QuotaStatus:
        return await self.rerolls.get_quota(player_id, category_id)

    async def reset_quota(self, player_id: str, category_id: str) -> bool:
        return await self.rerolls.reset_quota(player_id, category_id)

    async def reset_category_quotas(self, category_id: str) -> int:
        return await self.rerolls.reset_category_quotas(category_id)

    # ------------------------------------------------------------------
    # Catalog admin
    # ------------------------------------------------------------------

    async def import_templates(self, records: Iterable[TemplateInput]) -> list[TaskTemplate]:
        return await self.catalog.import_templates(records)

    async def delete_template(self, key: str) -> None:
        await self.catalog.delete_template(key)

    async def list_templates(self, include_disabled: bool = False) -> list[TaskTemplate]:
        return await self.catalog.list_templates(include_disabled)

    async def reload_catalog(self) -> int:
        return await self.catalog.reload()

    async def sync_catalog(self) -> CatalogSyncReport:
        return await self.catalog.sync()

    def metrics_snapshot(self) -> dict[str, Any]:
        self.metrics.set_gauge("cache.players", len(self.cache))
        self.metrics.set_gauge("catalog.templates", len(self.catalog))
        return self.metrics.snapshot()
