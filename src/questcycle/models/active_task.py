"""A player's live instance of a task template."""

import threading
from datetime import datetime
from typing import NamedTuple

from pydantic import BaseModel, Field

from questcycle.models.template import TaskTemplate
from questcycle.utils.time import truncate_to_seconds


class TaskIdentity(NamedTuple):
    """Composite key of an active task."""

    player_id: str
    task_key: str
    assigned_at: datetime


class ActiveTask:
    """Active task with lock-guarded progress state.

    ``progress`` never decreases and never exceeds the target, ``completed``
    only moves from False to True, and ``claimed`` requires ``completed``.
    All mutation goes through the compare-and-set style methods below so
    concurrent event threads cannot lose increments.
    """

    def __init__(
        self,
        player_id: str,
        template: TaskTemplate,
        category: str,
        assigned_at: datetime,
        progress: int = 0,
        completed: bool = False,
        claimed: bool = False,
        template_version: int | None = None,
    ):
        self.player_id = player_id
        self.template = template
        self.category = category
        self.assigned_at = truncate_to_seconds(assigned_at)
        self.template_version = template_version or template.version
        self._lock = threading.Lock()
        self._progress = max(0, min(progress, template.target_amount))
        self._completed = completed
        self._claimed = claimed and completed

    @property
    def task_key(self) -> str:
        return self.template.key

    @property
    def target(self) -> int:
        return self.template.target_amount

    @property
    def identity(self) -> TaskIdentity:
        return TaskIdentity(self.player_id, self.task_key, self.assigned_at)

    @property
    def progress(self) -> int:
        with self._lock:
            return self._progress

    @property
    def completed(self) -> bool:
        with self._lock:
            return self._completed

    @property
    def claimed(self) -> bool:
        with self._lock:
            return self._claimed

    def percent(self, progress: int | None = None) -> int:
        value = self.progress if progress is None else progress
        if self.target <= 0:
            return 100
        return value * 100 // self.target

    def planned_progress(self, amount: int) -> int:
        """Progress this task would reach after ``amount`` more, clamped to target."""
        with self._lock:
            return min(self._progress + max(amount, 0), self.target)

    def apply_progress(self, new_progress: int) -> int | None:
        """Raise progress to a value the store confirmed.

        Returns the previous progress, or None if the value would not move
        this task forward.
        """
        new_progress = min(new_progress, self.target)
        with self._lock:
            if self._completed or new_progress <= self._progress:
                return None
            previous = self._progress
            self._progress = new_progress
            return previous

    def add_progress(self, amount: int) -> int:
        """Add ``amount`` (clamped to target) and return the resulting progress."""
        with self._lock:
            if not self._completed and amount > 0:
                self._progress = min(self._progress + amount, self.target)
            return self._progress

    def mark_completed(self) -> bool:
        """Return True only for the single False to True transition."""
        with self._lock:
            if self._completed or self._progress < self.target:
                return False
            self._completed = True
            return True

    def mark_claimed(self) -> bool:
        with self._lock:
            if not self._completed or self._claimed:
                return False
            self._claimed = True
            return True

    def catch_up(self, other: "ActiveTask") -> None:
        """Take on ``other``'s state where it is further along; never moves back."""
        with other._lock:
            progress, completed, claimed = other._progress, other._completed, other._claimed
        with self._lock:
            self._progress = max(self._progress, min(progress, self.target))
            self._completed = self._completed or completed
            self._claimed = self._claimed or (claimed and self._completed)

    def is_done(self) -> bool:
        """Completed or claimed; kept across a keep-completed reroll."""
        with self._lock:
            return self._completed or self._claimed

    def to_view(self) -> "ActiveTaskView":
        with self._lock:
            progress, completed, claimed = self._progress, self._completed, self._claimed
        return ActiveTaskView(
            player_id=self.player_id,
            task_key=self.task_key,
            assigned_at=self.assigned_at,
            category=self.category,
            name=self.template.display_name,
            type=self.template.type.value,
            progress=progress,
            target=self.target,
            completed=completed,
            claimed=claimed,
            template_version=self.template_version,
            description=list(self.template.description),
        )

    def __repr__(self) -> str:
        return (
            f"ActiveTask(player_id={self.player_id!r}, task_key={self.task_key!r}, "
            f"progress={self.progress}/{self.target}, completed={self.completed})"
        )


class ActiveTaskView(BaseModel):
    """Read-only projection of an active task for callers outside the engine."""

    player_id: str
    task_key: str
    assigned_at: datetime
    category: str
    name: str
    type: str
    progress: int
    target: int
    completed: bool
    claimed: bool
    template_version: int
    description: list[str] = Field(default_factory=list)
