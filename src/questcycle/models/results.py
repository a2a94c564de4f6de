"""Result shapes returned by engine operations."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from questcycle.models.active_task import ActiveTask


@dataclass
class RefreshResult:
    """Outcome of refreshing one (player, category)."""

    category_id: str
    tasks: list[ActiveTask] = field(default_factory=list)
    expired_count: int = 0
    generated_count: int = 0

    @property
    def changed(self) -> bool:
        return self.expired_count > 0 or self.generated_count > 0


@dataclass
class PlayerRefreshResult:
    """Merged outcome of refreshing every enabled category for a player."""

    player_id: str
    results: dict[str, RefreshResult] = field(default_factory=dict)
    failed_categories: list[str] = field(default_factory=list)

    @property
    def refreshed_categories(self) -> list[str]:
        return [category for category, result in self.results.items() if result.changed]

    @property
    def expired_count(self) -> int:
        return sum(result.expired_count for result in self.results.values())

    @property
    def generated_count(self) -> int:
        return sum(result.generated_count for result in self.results.values())


@dataclass
class RerollResult:
    category_id: str
    mode: str
    tasks: list[ActiveTask] = field(default_factory=list)
    kept_count: int = 0
    removed_count: int = 0
    generated_count: int = 0
    cost_charged: float = 0.0


@dataclass
class ProgressUpdate:
    """One confirmed progress change for a task."""

    task: ActiveTask
    previous: int
    current: int
    just_completed: bool = False
    auto_claimed: bool = False
    milestone: Optional[int] = None


@dataclass
class ProgressReport:
    matched: int = 0
    updates: list[ProgressUpdate] = field(default_factory=list)
    skipped: int = 0
    completed_categories: list[str] = field(default_factory=list)

    @property
    def confirmed(self) -> int:
        return len(self.updates)


@dataclass
class CatalogSyncReport:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class QuotaStatus(BaseModel):
    """Reroll quota state for one (player, category)."""

    player_id: str
    category_id: str
    used: int
    max_count: int
    remaining: int
    last_reset_time: Optional[datetime] = None
    next_reset: Optional[datetime] = None


class OperationResult(BaseModel):
    """Player-facing outcome: success flag, stable code and a localized message."""

    success: bool
    code: str = "OK"
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
