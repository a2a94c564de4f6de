"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from questcycle.db.base import Base, UTCDateTime

# JSONB on PostgreSQL, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class TaskTemplateTable(Base):
    """Task template catalog - source of truth for the in-memory catalog."""

    __tablename__ = "task_templates"

    task_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    task_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (Index("idx_task_templates_enabled", "enabled"),)


class ActiveTaskTable(Base):
    """Active tasks - one row per player task instance."""

    __tablename__ = "active_tasks"

    # Composite identity, reproducible across processes
    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    task_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), primary_key=True)

    category: Mapped[str] = mapped_column(String(64), nullable=False)
    task_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Template snapshot frozen at assignment
    task_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    __table_args__ = (
        Index("idx_active_tasks_player_category", "player_id", "category"),
        Index("idx_active_tasks_assigned_at", "assigned_at"),
    )


class RerollQuotaTable(Base):
    """Reroll credits used per (player, category) in the current reset cycle."""

    __tablename__ = "reroll_quota"

    player_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    reroll_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reset_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
