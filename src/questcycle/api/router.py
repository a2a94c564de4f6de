"""REST API router."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from questcycle import __version__
from questcycle.api.deps import get_engine, verify_api_key
from questcycle.api.schemas import (
    ActiveTasksResponse,
    AssignTaskRequest,
    ClaimRequest,
    HealthResponse,
    ImportTemplatesRequest,
    ListTemplatesResponse,
    LoginResponse,
    OperationResponse,
    ProgressUpdateSchema,
    QuotaResetResponse,
    QuotaResponse,
    ReloadResponse,
    ReportProgressRequest,
    ReportProgressResponse,
    RerollRequest,
    TemplateSchema,
)
from questcycle.engine import (
    ConcurrencyConflict,
    NotFoundError,
    PersistenceError,
    QuestCycleError,
    QuestEngine,
    QuotaExceeded,
    ValidationError,
)
from questcycle.models import TaskTemplate

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])


def _http_error(exc: QuestCycleError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, (ConcurrencyConflict, QuotaExceeded)):
        status = 409
    elif isinstance(exc, PersistenceError):
        status = 503
    elif isinstance(exc, ValidationError):
        status = 400
    else:
        status = 500
    return HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})


def _template_schema(template: TaskTemplate) -> TemplateSchema:
    return TemplateSchema(
        key=template.key,
        name=template.display_name,
        type=template.type.value,
        category=template.category,
        targets=list(template.targets),
        target_amount=template.target_amount,
        weight=template.weight,
        version=template.version,
        enabled=template.enabled,
    )


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(engine: QuestEngine = Depends(get_engine)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy" if engine.queue.running else "degraded",
        version=__version__,
        templates=len(engine.catalog),
        players=len(engine.cache),
    )


@router.get("/metrics")
async def get_metrics(engine: QuestEngine = Depends(get_engine)):
    """Snapshot of engine counters, gauges and timing summaries."""
    return engine.metrics_snapshot()


# ============================================================================
# Players
# ============================================================================


@router.post("/players/{player_id}/login", response_model=LoginResponse)
async def login(player_id: str, engine: QuestEngine = Depends(get_engine)):
    """Load, expire and regenerate a player's tasks in every enabled category."""
    try:
        result = await engine.login(player_id)
    except QuestCycleError as e:
        raise _http_error(e)
    return LoginResponse(
        player_id=player_id,
        refreshed_categories=result.refreshed_categories,
        failed_categories=result.failed_categories,
        expired_count=result.expired_count,
        generated_count=result.generated_count,
        tasks=[task.to_view() for task in engine.cache.get(player_id)],
    )


@router.post("/players/{player_id}/logout", status_code=204)
async def logout(player_id: str, engine: QuestEngine = Depends(get_engine)):
    engine.logout(player_id)


@router.get("/players/{player_id}/tasks", response_model=ActiveTasksResponse)
async def list_player_tasks(
    player_id: str,
    category: Optional[str] = Query(None),
    engine: QuestEngine = Depends(get_engine),
):
    try:
        tasks = await engine.get_active_tasks(player_id, category)
    except QuestCycleError as e:
        raise _http_error(e)
    return ActiveTasksResponse(
        player_id=player_id, category=category, tasks=[t.to_view() for t in tasks]
    )


@router.get(
    "/players/{player_id}/categories/{category_id}/tasks", response_model=ActiveTasksResponse
)
async def list_category_tasks(
    player_id: str, category_id: str, engine: QuestEngine = Depends(get_engine)
):
    try:
        tasks = await engine.get_active_tasks(player_id, category_id)
    except QuestCycleError as e:
        raise _http_error(e)
    return ActiveTasksResponse(
        player_id=player_id, category=category_id, tasks=[t.to_view() for t in tasks]
    )


@router.post("/players/{player_id}/progress", response_model=ReportProgressResponse)
async def report_progress(
    player_id: str,
    request: ReportProgressRequest,
    engine: QuestEngine = Depends(get_engine),
):
    """Apply a progress event to every matching active task."""
    try:
        report = await engine.report_progress(
            player_id, request.type, request.selector, request.amount, request.attributes
        )
    except QuestCycleError as e:
        raise _http_error(e)
    return ReportProgressResponse(
        matched=report.matched,
        confirmed=report.confirmed,
        skipped=report.skipped,
        updates=[
            ProgressUpdateSchema(
                task_key=u.task.task_key,
                category=u.task.category,
                previous=u.previous,
                current=u.current,
                target=u.task.target,
                completed=u.task.completed,
                auto_claimed=u.auto_claimed,
                milestone=u.milestone,
            )
            for u in report.updates
        ],
        completed_categories=report.completed_categories,
    )


@router.post(
    "/players/{player_id}/categories/{category_id}/reroll", response_model=OperationResponse
)
async def reroll(
    player_id: str,
    category_id: str,
    request: RerollRequest,
    engine: QuestEngine = Depends(get_engine),
):
    result = await engine.reroll(player_id, category_id, request.mode)
    return OperationResponse(**result.model_dump())


@router.post(
    "/players/{player_id}/categories/{category_id}/tasks", response_model=OperationResponse
)
async def assign_task(
    player_id: str,
    category_id: str,
    request: AssignTaskRequest,
    engine: QuestEngine = Depends(get_engine),
):
    result = await engine.assign_task(player_id, category_id, request.template_key)
    return OperationResponse(**result.model_dump())


@router.delete(
    "/players/{player_id}/categories/{category_id}/tasks/{task_key}",
    response_model=OperationResponse,
)
async def remove_task(
    player_id: str, category_id: str, task_key: str, engine: QuestEngine = Depends(get_engine)
):
    result = await engine.remove_task(player_id, category_id, task_key)
    return OperationResponse(**result.model_dump())


@router.post("/players/{player_id}/tasks/{task_key}/claim", response_model=OperationResponse)
async def claim_reward(
    player_id: str,
    task_key: str,
    request: Optional[ClaimRequest] = None,
    engine: QuestEngine = Depends(get_engine),
):
    assigned_at = request.assigned_at if request else None
    result = await engine.claim_reward(player_id, task_key, assigned_at)
    return OperationResponse(**result.model_dump())


@router.get(
    "/players/{player_id}/categories/{category_id}/quota", response_model=QuotaResponse
)
async def get_quota(player_id: str, category_id: str, engine: QuestEngine = Depends(get_engine)):
    try:
        status = await engine.get_quota(player_id, category_id)
    except QuestCycleError as e:
        raise _http_error(e)
    return QuotaResponse(**status.model_dump())


# ============================================================================
# Admin
# ============================================================================


@router.get("/templates", response_model=ListTemplatesResponse)
async def list_templates(
    include_disabled: bool = Query(False),
    engine: QuestEngine = Depends(get_engine),
):
    try:
        templates = await engine.list_templates(include_disabled)
    except QuestCycleError as e:
        raise _http_error(e)
    return ListTemplatesResponse(templates=[_template_schema(t) for t in templates])


@router.post("/templates", response_model=ListTemplatesResponse, status_code=201)
async def import_templates(
    request: ImportTemplatesRequest, engine: QuestEngine = Depends(get_engine)
):
    """Create or update templates; existing keys get their version bumped."""
    try:
        stored = await engine.import_templates(request.templates)
    except QuestCycleError as e:
        raise _http_error(e)
    return ListTemplatesResponse(templates=[_template_schema(t) for t in stored])


@router.post("/templates/reload", response_model=ReloadResponse)
async def reload_templates(engine: QuestEngine = Depends(get_engine)):
    try:
        count = await engine.reload_catalog()
    except QuestCycleError as e:
        raise _http_error(e)
    return ReloadResponse(templates=count)


@router.delete("/templates/{task_key}", status_code=204)
async def delete_template(task_key: str, engine: QuestEngine = Depends(get_engine)):
    try:
        await engine.delete_template(task_key)
    except QuestCycleError as e:
        raise _http_error(e)


@router.post("/admin/categories/{category_id}/quota/reset", response_model=QuotaResetResponse)
async def reset_quota(
    category_id: str,
    player_id: Optional[str] = Query(None, description="Reset only this player's quota"),
    engine: QuestEngine = Depends(get_engine),
):
    """Reset reroll quotas for a whole category, or for one player in it."""
    try:
        if player_id is not None:
            reset = int(await engine.reset_quota(player_id, category_id))
        else:
            reset = await engine.reset_category_quotas(category_id)
    except QuestCycleError as e:
        raise _http_error(e)
    return QuotaResetResponse(category_id=category_id, reset=reset)
