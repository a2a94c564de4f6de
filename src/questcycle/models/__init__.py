"""questcycle data models."""

from questcycle.models.enums import NotificationKind, PolicyKind, RerollMode, TaskType
from questcycle.models.policy import (
    CategoryPolicy,
    DailyPolicy,
    ExpirePolicy,
    FixedPolicy,
    MonthlyPolicy,
    PermanentPolicy,
    RelativePolicy,
    RerollPolicy,
    WeeklyPolicy,
    Weekday,
)
from questcycle.models.template import Reward, RewardItem, TaskTemplate
from questcycle.models.active_task import ActiveTask, ActiveTaskView, TaskIdentity
from questcycle.models.results import (
    CatalogSyncReport,
    OperationResult,
    PlayerRefreshResult,
    ProgressReport,
    ProgressUpdate,
    QuotaStatus,
    RefreshResult,
    RerollResult,
)

__all__ = [
    "ActiveTask",
    "ActiveTaskView",
    "CatalogSyncReport",
    "CategoryPolicy",
    "DailyPolicy",
    "ExpirePolicy",
    "FixedPolicy",
    "MonthlyPolicy",
    "NotificationKind",
    "OperationResult",
    "PermanentPolicy",
    "PlayerRefreshResult",
    "PolicyKind",
    "ProgressReport",
    "ProgressUpdate",
    "QuotaStatus",
    "RefreshResult",
    "RelativePolicy",
    "RerollMode",
    "RerollPolicy",
    "RerollResult",
    "Reward",
    "RewardItem",
    "TaskIdentity",
    "TaskTemplate",
    "TaskType",
    "WeeklyPolicy",
    "Weekday",
]
