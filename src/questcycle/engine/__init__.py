"""questcycle engine."""

from questcycle.engine.core import QuestEngine
from questcycle.engine.errors import (
    ConcurrencyConflict,
    NotFoundError,
    PersistenceError,
    QuestCycleError,
    QuotaExceeded,
    ValidationError,
)

__all__ = [
    "ConcurrencyConflict",
    "NotFoundError",
    "PersistenceError",
    "QuestCycleError",
    "QuestEngine",
    "QuotaExceeded",
    "ValidationError",
]
