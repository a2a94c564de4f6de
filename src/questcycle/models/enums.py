"""questcycle enumerations."""

from enum import Enum


class TaskType(str, Enum):
    """Kind of player action a task counts."""

    CHAT = "chat"
    CRAFT = "craft"
    FISH = "fish"
    CONSUME = "consume"
    BREAK = "break"
    HARVEST = "harvest"
    SUBMIT = "submit"
    KILL = "kill"
    BREED = "breed"
    COMMAND = "command"

    @classmethod
    def parse(cls, value: "str | TaskType") -> "TaskType":
        if isinstance(value, TaskType):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown task type: {value}") from None


class RerollMode(str, Enum):
    """Reroll strategy selected by caller intent."""

    PARTIAL = "partial"
    FORCE = "force"
    FULL = "full"

    def is_administrative(self) -> bool:
        """Administrative rerolls skip the enabled, cost and quota checks."""
        return self is RerollMode.FULL


class NotificationKind(str, Enum):
    """Events pushed to the notification sink."""

    COMPLETED = "completed"
    AUTO_CLAIMED = "auto_claimed"
    MILESTONE = "milestone"
    REFRESHED = "refreshed"
    CATEGORY_COMPLETE = "category_complete"
    REWARD_CLAIMED = "reward_claimed"
    TASK_ASSIGNED = "task_assigned"


class PolicyKind(str, Enum):
    """Expiration policy variants."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    RELATIVE = "relative"
    FIXED = "fixed"
    PERMANENT = "permanent"

    def is_cyclic(self) -> bool:
        return self in (PolicyKind.DAILY, PolicyKind.WEEKLY, PolicyKind.MONTHLY)
