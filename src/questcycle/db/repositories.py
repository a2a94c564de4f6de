"""Database repositories for questcycle entities.

Every repository works inside the session handed to it by the persistence
queue; none of them commit. Conditional updates report whether exactly one
row was affected, which is the only cross-process source of truth.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, case, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from questcycle.db.tables import ActiveTaskTable, RerollQuotaTable, TaskTemplateTable
from questcycle.models import ActiveTask, TaskIdentity, TaskTemplate
from questcycle.utils.time import truncate_to_seconds


def _dialect_insert(session: AsyncSession, table):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"Unsupported database dialect: {dialect}")


def _identity_clause(identity: TaskIdentity):
    return and_(
        ActiveTaskTable.player_id == identity.player_id,
        ActiveTaskTable.task_key == identity.task_key,
        ActiveTaskTable.assigned_at == identity.assigned_at,
    )


class TemplateRepository:
    """Repository for task template operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_enabled(self) -> list[TaskTemplate]:
        result = await self.session.execute(
            select(TaskTemplateTable).where(TaskTemplateTable.enabled.is_(True))
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def list_all(self) -> list[TaskTemplate]:
        result = await self.session.execute(
            select(TaskTemplateTable).order_by(TaskTemplateTable.task_key)
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def list_versions(self) -> dict[str, int]:
        """Only (key, version) pairs of enabled templates, for delta sync."""
        result = await self.session.execute(
            select(TaskTemplateTable.task_key, TaskTemplateTable.version).where(
                TaskTemplateTable.enabled.is_(True)
            )
        )
        return {key: version for key, version in result.all()}

    async def get_many(self, keys: Iterable[str]) -> list[TaskTemplate]:
        keys = list(keys)
        if not keys:
            return []
        result = await self.session.execute(
            select(TaskTemplateTable).where(
                TaskTemplateTable.task_key.in_(keys),
                TaskTemplateTable.enabled.is_(True),
            )
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def upsert(self, template: TaskTemplate, now: datetime) -> int:
        """Store a template; an existing key gets ``version + 1``. Returns the stored version."""
        result = await self.session.execute(
            update(TaskTemplateTable)
            .where(TaskTemplateTable.task_key == template.key)
            .values(
                version=TaskTemplateTable.version + 1,
                task_data=template.to_snapshot(),
                enabled=True,
                updated_at=now,
            )
            .returning(TaskTemplateTable.version)
            .execution_options(synchronize_session=False)
        )
        bumped = result.scalar_one_or_none()
        if bumped is not None:
            return bumped

        self.session.add(
            TaskTemplateTable(
                task_key=template.key,
                version=template.version,
                task_data=template.to_snapshot(),
                enabled=True,
                updated_at=now,
            )
        )
        await self.session.flush()
        return template.version

    async def disable(self, key: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(TaskTemplateTable)
            .where(TaskTemplateTable.task_key == key, TaskTemplateTable.enabled.is_(True))
            .values(enabled=False, updated_at=now)
        )
        return result.rowcount == 1

    def _row_to_model(self, row: TaskTemplateTable) -> TaskTemplate:
        # The column version is authoritative over the one inside the blob.
        template = TaskTemplate.from_snapshot(row.task_data)
        return template.model_copy(update={"version": row.version, "enabled": row.enabled})


class ActiveTaskRepository:
    """Repository for active task rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_category(self, player_id: str, category: str) -> list[ActiveTask]:
        result = await self.session.execute(
            select(ActiveTaskTable)
            .where(
                ActiveTaskTable.player_id == player_id,
                ActiveTaskTable.category == category,
            )
            .order_by(ActiveTaskTable.assigned_at, ActiveTaskTable.task_key)
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def list_for_player(self, player_id: str) -> list[ActiveTask]:
        result = await self.session.execute(
            select(ActiveTaskTable)
            .where(ActiveTaskTable.player_id == player_id)
            .order_by(ActiveTaskTable.assigned_at, ActiveTaskTable.task_key)
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    async def get(self, identity: TaskIdentity) -> Optional[ActiveTask]:
        result = await self.session.execute(
            select(ActiveTaskTable).where(_identity_clause(identity))
        )
        row = result.scalar_one_or_none()
        return self._row_to_model(row) if row else None

    async def insert_many(self, tasks: Iterable[ActiveTask]) -> int:
        rows = [
            {
                "player_id": task.player_id,
                "task_key": task.task_key,
                "assigned_at": task.assigned_at,
                "category": task.category,
                "task_version": task.template_version,
                "current_progress": task.progress,
                "completed": task.completed,
                "claimed": task.claimed,
                "task_data": task.template.to_snapshot(),
            }
            for task in tasks
        ]
        if not rows:
            return 0
        await self.session.execute(insert(ActiveTaskTable), rows)
        return len(rows)

    async def delete_identities(self, identities: Iterable[TaskIdentity]) -> int:
        deleted = 0
        for identity in identities:
            result = await self.session.execute(
                delete(ActiveTaskTable).where(_identity_clause(identity))
            )
            deleted += result.rowcount
        return deleted

    async def delete_category(self, player_id: str, category: str) -> int:
        result = await self.session.execute(
            delete(ActiveTaskTable).where(
                ActiveTaskTable.player_id == player_id,
                ActiveTaskTable.category == category,
            )
        )
        return result.rowcount

    async def delete_incomplete(self, player_id: str, category: str) -> int:
        result = await self.session.execute(
            delete(ActiveTaskTable).where(
                ActiveTaskTable.player_id == player_id,
                ActiveTaskTable.category == category,
                ActiveTaskTable.completed.is_(False),
                ActiveTaskTable.claimed.is_(False),
            )
        )
        return result.rowcount

    async def delete_task(self, player_id: str, category: str, task_key: str) -> int:
        result = await self.session.execute(
            delete(ActiveTaskTable).where(
                ActiveTaskTable.player_id == player_id,
                ActiveTaskTable.category == category,
                ActiveTaskTable.task_key == task_key,
            )
        )
        return result.rowcount

    async def add_progress(
        self, identity: TaskIdentity, amount: int, target: int
    ) -> Optional[tuple[int, int, bool]]:
        """Increment progress in the store, clamped to ``target``.

        The row is locked before the increment, and the increment itself is
        computed by the database so concurrent writers never lose updates.
        Returns the stored (previous, progress, completed), or None when the
        row is gone or already completed.
        """
        locked = await self.session.execute(
            select(ActiveTaskTable.current_progress)
            .where(
                _identity_clause(identity),
                ActiveTaskTable.completed.is_(False),
            )
            .with_for_update()
        )
        previous = locked.scalar_one_or_none()
        if previous is None:
            return None

        raised = ActiveTaskTable.current_progress + amount
        result = await self.session.execute(
            update(ActiveTaskTable)
            .where(
                _identity_clause(identity),
                ActiveTaskTable.completed.is_(False),
                ActiveTaskTable.current_progress < target,
            )
            .values(
                current_progress=case((raised >= target, target), else_=raised),
                completed=case((raised >= target, True), else_=False),
            )
            .returning(ActiveTaskTable.current_progress, ActiveTaskTable.completed)
            .execution_options(synchronize_session=False)
        )
        row = result.one_or_none()
        return (previous, row[0], bool(row[1])) if row else None

    async def mark_claimed(self, identity: TaskIdentity) -> bool:
        result = await self.session.execute(
            update(ActiveTaskTable)
            .where(
                _identity_clause(identity),
                ActiveTaskTable.completed.is_(True),
                ActiveTaskTable.claimed.is_(False),
            )
            .values(claimed=True)
        )
        return result.rowcount == 1

    async def list_assigned_before(self, category: str, cutoff: datetime) -> list[ActiveTask]:
        """Rows of every player in ``category`` assigned before ``cutoff``."""
        result = await self.session.execute(
            select(ActiveTaskTable).where(
                ActiveTaskTable.category == category,
                ActiveTaskTable.assigned_at < cutoff,
            )
        )
        return [self._row_to_model(row) for row in result.scalars().all()]

    def _row_to_model(self, row: ActiveTaskTable) -> ActiveTask:
        return ActiveTask(
            player_id=row.player_id,
            template=TaskTemplate.from_snapshot(row.task_data),
            category=row.category,
            assigned_at=row.assigned_at,
            progress=row.current_progress,
            completed=row.completed,
            claimed=row.claimed,
            template_version=row.task_version,
        )


class RerollQuotaRepository:
    """Repository for reroll quota rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def ensure(self, player_id: str, category_id: str, now: datetime) -> None:
        """Create the quota row if missing; idempotent across processes."""
        stmt = (
            _dialect_insert(self.session, RerollQuotaTable)
            .values(
                player_id=player_id,
                category_id=category_id,
                reroll_count=0,
                last_reset_time=truncate_to_seconds(now),
            )
            .on_conflict_do_nothing(index_elements=["player_id", "category_id"])
        )
        await self.session.execute(stmt)

    async def get(self, player_id: str, category_id: str) -> Optional[tuple[int, datetime]]:
        result = await self.session.execute(
            select(RerollQuotaTable.reroll_count, RerollQuotaTable.last_reset_time).where(
                RerollQuotaTable.player_id == player_id,
                RerollQuotaTable.category_id == category_id,
            )
        )
        row = result.one_or_none()
        return (row[0], row[1]) if row else None

    async def try_claim(self, player_id: str, category_id: str, max_count: int) -> bool:
        """Increment the count only while it is below ``max_count``."""
        result = await self.session.execute(
            update(RerollQuotaTable)
            .where(
                RerollQuotaTable.player_id == player_id,
                RerollQuotaTable.category_id == category_id,
                RerollQuotaTable.reroll_count < max_count,
            )
            .values(reroll_count=RerollQuotaTable.reroll_count + 1)
        )
        return result.rowcount == 1

    async def reset_if_unchanged(
        self, player_id: str, category_id: str, observed_reset: datetime, now: datetime
    ) -> bool:
        """Reset to zero unless another writer reset first."""
        result = await self.session.execute(
            update(RerollQuotaTable)
            .where(
                RerollQuotaTable.player_id == player_id,
                RerollQuotaTable.category_id == category_id,
                RerollQuotaTable.last_reset_time == observed_reset,
            )
            .values(reroll_count=0, last_reset_time=truncate_to_seconds(now))
        )
        return result.rowcount == 1

    async def reset(self, player_id: str, category_id: str, now: datetime) -> bool:
        result = await self.session.execute(
            update(RerollQuotaTable)
            .where(
                RerollQuotaTable.player_id == player_id,
                RerollQuotaTable.category_id == category_id,
            )
            .values(reroll_count=0, last_reset_time=truncate_to_seconds(now))
        )
        return result.rowcount == 1

    async def reset_category(self, category_id: str, now: datetime) -> int:
        result = await self.session.execute(
            update(RerollQuotaTable)
            .where(RerollQuotaTable.category_id == category_id)
            .values(reroll_count=0, last_reset_time=truncate_to_seconds(now))
        )
        return result.rowcount

    async def list_for_player(self, player_id: str) -> dict[str, tuple[int, datetime]]:
        result = await self.session.execute(
            select(
                RerollQuotaTable.category_id,
                RerollQuotaTable.reroll_count,
                RerollQuotaTable.last_reset_time,
            ).where(RerollQuotaTable.player_id == player_id)
        )
        return {category: (count, reset) for category, count, reset in result.all()}

