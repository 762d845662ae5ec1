"""Request and response models for API endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from .scheduler import CamelModel, HistoryRecord, HistorySource, LogEntry, Source


class ErrorResponse(BaseModel):
    """Response model for errors."""
    success: bool = False
    error: str
    error_type: str


# Request models. Field checks that must answer 400 are done in the routes.
class ToggleRequest(BaseModel):
    """Request body for enabling or pausing automatic runs."""
    active: bool = Field(..., description="Whether automatic runs are enabled")


class SourceCreateRequest(BaseModel):
    """Request body for adding a source. ``url`` is accepted as an alias of ``source``."""
    source: str | None = Field(None, description="Channel or playlist URL")
    url: str | None = Field(None, description="Legacy spelling of source")
    type: str | None = Field(None, description="Source type: channel or playlist")


class SourceUpdateRequest(BaseModel):
    """Request body for updating a source."""
    id: str | None = Field(None, description="Source identifier")
    active: bool | None = Field(None, description="Whether the source participates in runs")


# Response models
class StatusResponse(CamelModel):
    """Scheduler status as shown on the admin dashboard."""
    active: bool
    next_run: datetime | None
    interval: str = Field(..., description="Human-readable run interval")
    interval_hours: float
    running: bool
    sources: list[Source]
    logs: list[LogEntry]
    last_save_error: str | None = None


class ToggleResponse(CamelModel):
    """Result of toggling the scheduler."""
    active: bool
    next_run: datetime | None


class SourceResponse(BaseModel):
    """Wrapper around a single source."""
    source: Source


class DeleteResponse(BaseModel):
    """Result of deleting a source."""
    success: bool


class TriggerResponse(BaseModel):
    """Acknowledgement returned by endpoints that start background work."""
    success: bool
    message: str


class HistoryResponse(CamelModel):
    """Paginated ledger query result."""
    items: list[HistoryRecord]
    total: int
    total_pages: int
    current_page: int


class HistorySourcesResponse(BaseModel):
    """Distinct sources present in the ledger."""
    sources: list[HistorySource]
