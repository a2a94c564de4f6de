"""questcycle engine errors."""


class QuestCycleError(Exception):
    """Base error for questcycle operations."""

    def __init__(self, message: str, code: str = "QUESTCYCLE_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(QuestCycleError):
    """Unknown category, template or target, or a request that cannot apply."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code)


class NotFoundError(QuestCycleError):
    """No such active task or template."""

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}", "NOT_FOUND")
        self.kind = kind
        self.key = key


class ConcurrencyConflict(QuestCycleError):
    """An update affected zero rows; the cache is stale against the store."""

    def __init__(self, message: str):
        super().__init__(message, "CONCURRENCY_CONFLICT")


class PersistenceError(QuestCycleError):
    """Connectivity or SQL failure inside a persistence operation."""

    def __init__(self, operation: str, detail: str = ""):
        message = f"Persistence operation '{operation}' failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, "PERSISTENCE_ERROR")
        self.operation = operation


class QuotaExceeded(QuestCycleError):
    """Reroll claim denied for this cycle."""

    def __init__(self, player_id: str, category_id: str, limit: int):
        super().__init__(
            f"Reroll quota exceeded for {player_id}/{category_id} (limit: {limit})",
            "QUOTA_EXCEEDED",
        )
        self.player_id = player_id
        self.category_id = category_id
        self.limit = limit
