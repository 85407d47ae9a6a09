"""Operator endpoints for running and inspecting catalog syncs."""

from datetime import timedelta
from enum import Enum
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from catalog_sync.exceptions import RemoteUnavailable, SyncAlreadyRunning, ValidationFailure
from catalog_sync.infrastructure.database.models import LogAction, LogType, utcnow
from catalog_sync.services.container import SyncServices

router = APIRouter()


def get_services(request: Request) -> SyncServices:
    """Service graph built by the application lifespan."""
    return request.app.state.services


# =============================================================================
# Models
# =============================================================================


class SyncMethod(str, Enum):
    STEP = "step"
    BACKGROUND = "background"


class StartRequest(BaseModel):
    method: SyncMethod | None = Field(None, description="Defaults to the configured sync method")


class StartResponse(BaseModel):
    success: bool
    method: SyncMethod
    batch_id: str
    total: int
    message: str
    categories: dict[str, Any]
    orphans: dict[str, Any]
    dispatched: bool | None = None


class StepResponse(BaseModel):
    success: bool
    complete: bool
    slug: str | None = None
    name: str | None = None
    outcome: str | None = None
    message: str
    current: int
    total: int
    statistics: dict[str, int]


class ProgressResponse(BaseModel):
    stage: str
    current: int
    total: int
    percentage: float
    synced: int
    failed: int
    skipped: int
    pending: int
    is_running: bool
    batch_id: str | None = None
    never_run: bool = False
    last_completed_at: str | None = None
    updated_at: str | None = None


class MessageResponse(BaseModel):
    success: bool
    message: str


class FailedItem(BaseModel):
    slug: str
    category_slug: str | None
    attempts: int
    message: str | None


def _remote_error(e: RemoteUnavailable) -> HTTPException:
    return HTTPException(status_code=502, detail=f"Remote catalog unavailable: {e}")


# =============================================================================
# Batch lifecycle
# =============================================================================


@router.post("/start", response_model=StartResponse)
async def start_sync(
    body: StartRequest | None = None,
    services: SyncServices = Depends(get_services),
) -> StartResponse:
    """
    Start a new sync batch.

    - `step`: the batch is advanced by repeated calls to `POST /step`
    - `background`: the batch is drained by the background worker
    """
    method = (body.method if body else None) or SyncMethod(services.settings.sync_method)
    try:
        if method is SyncMethod.BACKGROUND:
            result = await services.worker.start_background()
        else:
            result = (await services.coordinator.start_batch()).as_dict()
    except SyncAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValidationFailure as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except RemoteUnavailable as e:
        raise _remote_error(e) from e

    return StartResponse(success=True, method=method, **result)


@router.post("/step", response_model=StepResponse)
async def step_sync(services: SyncServices = Depends(get_services)) -> StepResponse:
    """Process the next pending product of the current batch."""
    wait = await services.coordinator.seconds_until_next_step()
    if wait > 0:
        raise HTTPException(
            status_code=429,
            detail=f"Please wait {wait:.0f} seconds before the next step",
            headers={"Retry-After": str(int(wait) + 1)},
        )
    result = await services.coordinator.step()
    return StepResponse(**result.as_dict())


@router.get("/progress", response_model=ProgressResponse)
async def get_progress(services: SyncServices = Depends(get_services)) -> ProgressResponse:
    snapshot = await services.progress.get_progress()
    return ProgressResponse(**snapshot.as_dict())


@router.post("/retry-failed")
async def retry_failed(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    """Reset failed products of the latest batch to pending."""
    if services.settings.sync_method == SyncMethod.BACKGROUND.value:
        count = await services.worker.retry_failed()
    else:
        count = await services.coordinator.retry_failed()
    return {"success": True, "count": count, "message": f"Reset {count} failed products to pending"}


@router.get("/failed", response_model=list[FailedItem])
async def list_failed(services: SyncServices = Depends(get_services)) -> list[FailedItem]:
    batch = await services.coordinator.latest_batch()
    if batch is None:
        return []
    items = await services.queue.failed_items(batch)
    return [
        FailedItem(
            slug=item.product_slug,
            category_slug=item.category_slug,
            attempts=item.attempts,
            message=item.result_message,
        )
        for item in items
    ]


# =============================================================================
# Background worker
# =============================================================================


@router.post("/background/pause", response_model=MessageResponse)
async def pause_background(services: SyncServices = Depends(get_services)) -> MessageResponse:
    await services.worker.pause()
    return MessageResponse(success=True, message="Background sync paused")


@router.post("/background/resume", response_model=MessageResponse)
async def resume_background(services: SyncServices = Depends(get_services)) -> MessageResponse:
    await services.worker.resume()
    return MessageResponse(success=True, message="Background sync resumed")


@router.post("/background/cancel", response_model=MessageResponse)
async def cancel_background(services: SyncServices = Depends(get_services)) -> MessageResponse:
    await services.worker.cancel()
    return MessageResponse(success=True, message="Background sync cancelled")


@router.post("/background/trigger")
async def trigger_background(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    """Run background processing in this request."""
    return await services.worker.trigger_processing()


@router.post("/background/healthcheck")
async def trigger_healthcheck(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.worker.trigger_healthcheck()


@router.get("/background/status")
async def background_status(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.worker.get_status()


@router.get("/background/debug")
async def background_debug(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.worker.debug_info()


# =============================================================================
# Activity log
# =============================================================================


@router.get("/logs")
async def list_logs(
    limit: int = Query(100, ge=1, le=1000),
    log_type: LogType | None = None,
    action: LogAction | None = None,
    search: str | None = Query(None, min_length=1),
    services: SyncServices = Depends(get_services),
) -> list[dict[str, Any]]:
    if search:
        return await services.activity_log.search(search, limit=limit)
    return await services.activity_log.recent(limit=limit, log_type=log_type, action=action)


@router.delete("/logs")
async def clear_logs(
    older_than_days: int | None = Query(None, ge=0),
    services: SyncServices = Depends(get_services),
) -> dict[str, Any]:
    before = utcnow() - timedelta(days=older_than_days) if older_than_days is not None else None
    deleted = await services.activity_log.clear(before)
    return {"success": True, "deleted": deleted}


@router.get("/logs/stats")
async def log_stats(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.activity_log.sync_stats()


# =============================================================================
# Categories and remote API
# =============================================================================


@router.get("/categories/compare")
async def compare_categories(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    try:
        return await services.categories.compare_categories()
    except RemoteUnavailable as e:
        raise _remote_error(e) from e


@router.post("/categories/create-missing")
async def create_missing_categories(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.categories.create_missing_categories()


@router.post("/test-connection")
async def test_connection(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    return await services.client.test_connection()


@router.post("/cache/clear")
async def clear_cache(services: SyncServices = Depends(get_services)) -> dict[str, Any]:
    deleted = await services.client.clear_cache()
    await services.progress.invalidate()
    return {"success": True, "deleted": deleted}
