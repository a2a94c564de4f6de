"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from questcycle.models import ActiveTaskView, RerollMode, TaskType


# ============================================================================
# Shared
# ============================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    templates: int = Field(..., description="Templates currently in the catalog")
    players: int = Field(..., description="Players currently cached")


class OperationResponse(BaseModel):
    """Player-facing outcome with a localized message."""

    success: bool
    code: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Players
# ============================================================================


class LoginResponse(BaseModel):
    player_id: str
    refreshed_categories: list[str]
    failed_categories: list[str]
    expired_count: int
    generated_count: int
    tasks: list[ActiveTaskView]


class ActiveTasksResponse(BaseModel):
    player_id: str
    category: Optional[str] = None
    tasks: list[ActiveTaskView]


class ReportProgressRequest(BaseModel):
    """A progress event from the game server."""

    type: TaskType = Field(..., description="Task type the event counts toward")
    selector: str = Field(..., description="Item, entity, keyword or command the event carries")
    amount: int = Field(default=1, ge=1)
    attributes: Optional[dict[str, Any]] = Field(
        None, description="Extra event attributes checked by template match conditions"
    )


class ProgressUpdateSchema(BaseModel):
    task_key: str
    category: str
    previous: int
    current: int
    target: int
    completed: bool
    auto_claimed: bool
    milestone: Optional[int] = None


class ReportProgressResponse(BaseModel):
    matched: int
    confirmed: int
    skipped: int
    updates: list[ProgressUpdateSchema]
    completed_categories: list[str]


class RerollRequest(BaseModel):
    mode: RerollMode = Field(default=RerollMode.PARTIAL, description="partial, force or full")


class AssignTaskRequest(BaseModel):
    template_key: str


class ClaimRequest(BaseModel):
    assigned_at: Optional[datetime] = Field(
        None, description="Disambiguates when the same key was assigned more than once"
    )


class QuotaResponse(BaseModel):
    player_id: str
    category_id: str
    used: int
    max_count: int
    remaining: int
    last_reset_time: Optional[datetime] = None
    next_reset: Optional[datetime] = None


# ============================================================================
# Admin
# ============================================================================


class ImportTemplatesRequest(BaseModel):
    templates: list[dict[str, Any]] = Field(..., min_length=1)


class TemplateSchema(BaseModel):
    key: str
    name: str
    type: str
    category: str
    targets: list[str]
    target_amount: int
    weight: int
    version: int
    enabled: bool


class ListTemplatesResponse(BaseModel):
    templates: list[TemplateSchema]


class ReloadResponse(BaseModel):
    templates: int


class QuotaResetResponse(BaseModel):
    category_id: str
    reset: int
