"""Scheduler control endpoints: status, toggle, manual runs and sources."""

import logging

from fastapi import APIRouter, HTTPException, Query

from ..dependencies import SchedulerHolderDep
from ..errors import (
    SchedulerBusyError,
    SchedulerError,
    SourceNotFoundError,
    StoreError,
    ValidationError,
)
from ..models.responses import (
    DeleteResponse,
    ErrorResponse,
    SourceCreateRequest,
    SourceResponse,
    SourceUpdateRequest,
    StatusResponse,
    ToggleRequest,
    ToggleResponse,
    TriggerResponse,
)
from ..scheduler import ImportScheduler, SchedulerHolder
from ..validation import validate_source

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduler")


def error_to_http(e: SchedulerError) -> HTTPException:
    """Map a scheduler error to an HTTP error with an ErrorResponse body."""
    if isinstance(e, ValidationError):
        status_code, error_type = 400, "validation_error"
    elif isinstance(e, SourceNotFoundError):
        status_code, error_type = 404, "not_found"
    elif isinstance(e, SchedulerBusyError):
        status_code, error_type = 409, "scheduler_busy"
    elif isinstance(e, StoreError):
        status_code, error_type = 503, "storage_unavailable"
    else:
        status_code, error_type = 500, "scheduler_error"
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(error=str(e), error_type=error_type).model_dump(),
    )


async def _load_scheduler(holder: SchedulerHolder) -> ImportScheduler:
    """Get the initialized scheduler or raise 503 if its state cannot be loaded."""
    try:
        return await holder.get()
    except StoreError as e:
        logger.error(f"Scheduler state unavailable: {e}")
        raise error_to_http(e) from e


@router.get("/status", response_model=StatusResponse)
async def get_status(holder: SchedulerHolderDep) -> StatusResponse:
    """Current scheduler status, sources and recent log entries.

    Falls back to a default state when the stored state cannot be loaded.
    """
    try:
        scheduler = await holder.get()
    except StoreError as e:
        logger.warning(f"Serving default scheduler status, state unavailable: {e}")
        scheduler = holder.peek()

    return StatusResponse(**scheduler.status())


@router.post("/toggle", response_model=ToggleResponse)
async def toggle_scheduler(request: ToggleRequest, holder: SchedulerHolderDep) -> ToggleResponse:
    """Enable or pause automatic runs."""
    scheduler = await _load_scheduler(holder)

    try:
        result = await scheduler.toggle_active(request.active)
        return ToggleResponse(**result)
    except SchedulerError as e:
        raise error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to toggle scheduler: {e}")
        raise HTTPException(
            status_code=500,
            detail=ErrorResponse(
                error="Failed to toggle scheduler",
                error_type="scheduler_error",
            ).model_dump(),
        ) from e


@router.post("/run", response_model=TriggerResponse, status_code=202)
async def run_scheduler(holder: SchedulerHolderDep) -> TriggerResponse:
    """Start a manual run in the background.

    Manual runs do not move the next scheduled run time.
    """
    scheduler = await _load_scheduler(holder)

    if scheduler.is_running:
        raise error_to_http(SchedulerBusyError("A scheduler run is already in progress"))

    holder.spawn("manual-run", scheduler.run_now())
    logger.info("Manual scheduler run started")
    return TriggerResponse(success=True, message="Scheduler run started")


@router.post("/sources", response_model=SourceResponse)
async def add_source(request: SourceCreateRequest, holder: SchedulerHolderDep) -> SourceResponse:
    """Add a channel or playlist to poll."""
    try:
        url, source_type = validate_source(request.source or request.url, request.type)
    except ValidationError as e:
        raise error_to_http(e) from e

    scheduler = await _load_scheduler(holder)

    try:
        source = await scheduler.add_source(url, source_type)
        return SourceResponse(source=source)
    except SchedulerError as e:
        raise error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to add source: {e}")
        raise HTTPException(
            status_code=500,
            detail=ErrorResponse(
                error="Failed to add source",
                error_type="source_creation_error",
            ).model_dump(),
        ) from e


@router.patch("/sources", response_model=SourceResponse)
async def update_source(request: SourceUpdateRequest, holder: SchedulerHolderDep) -> SourceResponse:
    """Update a source; currently only its ``active`` flag."""
    if not request.id:
        raise error_to_http(ValidationError("Source ID is required"))

    scheduler = await _load_scheduler(holder)

    updates = {}
    if request.active is not None:
        updates["active"] = request.active

    try:
        source = await scheduler.update_source(request.id, **updates)
        return SourceResponse(source=source)
    except SchedulerError as e:
        raise error_to_http(e) from e
    except Exception as e:
        logger.exception(f"Failed to update source {request.id}: {e}")
        raise HTTPException(
            status_code=500,
            detail=ErrorResponse(
                error="Failed to update source",
                error_type="source_update_error",
            ).model_dump(),
        ) from e


@router.delete("/sources", response_model=DeleteResponse)
async def delete_source(
    holder: SchedulerHolderDep,
    id: str | None = Query(None, description="Source identifier"),
) -> DeleteResponse:
    """Remove a source. History records of the source are kept."""
    if not id:
        raise error_to_http(ValidationError("Source ID is required"))

    scheduler = await _load_scheduler(holder)

    try:
        deleted = await scheduler.delete_source(id)
    except SchedulerError as e:
        raise error_to_http(e) from e

    if not deleted:
        raise error_to_http(SourceNotFoundError(id))
    return DeleteResponse(success=True)
