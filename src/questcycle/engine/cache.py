"""In-memory mirror of each player's active tasks."""

import threading
from typing import Iterable, Optional

from questcycle.models import ActiveTask


class PlayerTaskCache:
    """``player -> category -> [ActiveTask]`` with copy-on-write replacement.

    Bulk updates build a fresh inner map and swap it in under the lock, so a
    reader never observes a cleared or half-filled player. Per-task progress
    changes mutate the cached ``ActiveTask`` in place through its own lock.
    The cache is advisory; the store decides what actually happened.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._players: dict[str, dict[str, tuple[ActiveTask, ...]]] = {}
        self._category_notified: set[tuple[str, str]] = set()

    def is_loaded(self, player_id: str) -> bool:
        with self._lock:
            return player_id in self._players

    def players(self) -> list[str]:
        with self._lock:
            return list(self._players)

    def get(self, player_id: str, category: Optional[str] = None) -> list[ActiveTask]:
        with self._lock:
            categories = self._players.get(player_id, {})
            if category is not None:
                return list(categories.get(category, ()))
            return [task for tasks in categories.values() for task in tasks]

    def categories(self, player_id: str) -> dict[str, list[ActiveTask]]:
        with self._lock:
            return {cat: list(tasks) for cat, tasks in self._players.get(player_id, {}).items()}

    def replace_player(self, player_id: str, categories: dict[str, Iterable[ActiveTask]]) -> None:
        """Swap in a player's whole task map; clears category-complete flags."""
        fresh = {category: tuple(tasks) for category, tasks in categories.items()}
        with self._lock:
            self._players[player_id] = fresh
            self._category_notified = {
                key for key in self._category_notified if key[0] != player_id
            }

    def replace_category(
        self, player_id: str, category: str, tasks: Iterable[ActiveTask]
    ) -> None:
        """Swap one category; the category-complete flag is cleared with it."""
        tasks = tuple(tasks)
        with self._lock:
            updated = dict(self._players.get(player_id, {}))
            updated[category] = tasks
            self._players[player_id] = updated
            self._category_notified.discard((player_id, category))

    def add(self, task: ActiveTask) -> None:
        with self._lock:
            updated = dict(self._players.get(task.player_id, {}))
            updated[task.category] = updated.get(task.category, ()) + (task,)
            self._players[task.player_id] = updated

    def remove(self, player_id: str, category: str, task_key: str) -> list[ActiveTask]:
        with self._lock:
            current = self._players.get(player_id)
            if not current or category not in current:
                return []
            removed = [t for t in current[category] if t.task_key == task_key]
            if removed:
                updated = dict(current)
                updated[category] = tuple(t for t in current[category] if t.task_key != task_key)
                self._players[player_id] = updated
            return removed

    def find(self, player_id: str, task_key: str, assigned_at=None) -> Optional[ActiveTask]:
        for task in self.get(player_id):
            if task.task_key == task_key and (assigned_at is None or task.assigned_at == assigned_at):
                return task
        return None

    def drop_player(self, player_id: str) -> None:
        with self._lock:
            self._players.pop(player_id, None)
            self._category_notified = {
                key for key in self._category_notified if key[0] != player_id
            }

    def mark_category_notified(self, player_id: str, category: str) -> bool:
        """Set the category-complete flag; True only for the caller that set it."""
        key = (player_id, category)
        with self._lock:
            if key in self._category_notified:
                return False
            self._category_notified.add(key)
            return True

    def clear_category_notified(self, player_id: str, category: str) -> None:
        with self._lock:
            self._category_notified.discard((player_id, category))

    def __len__(self) -> int:
        with self._lock:
            return len(self._players)
