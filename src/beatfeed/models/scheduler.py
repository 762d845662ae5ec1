"""Pydantic models for the scheduler state document and the history ledger.

Persisted documents use camelCase keys; Python attributes are snake_case.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SourceType = Literal["channel", "playlist"]
FetchKind = Literal["single", "channel", "playlist"]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with ``utcnow()``."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model serializing to camelCase and accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LogType(str, Enum):
    """Severity of a scheduler log entry."""

    INFO = "info"
    ERROR = "error"
    SUCCESS = "success"


class HistoryStatus(str, Enum):
    """Outcome recorded for a single download attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    DUPLICATE = "duplicate"


class SchedulerPhase(str, Enum):
    """Derived state of the scheduler state machine."""

    INACTIVE = "inactive"
    ACTIVE_IDLE = "active-idle"
    ACTIVE_DUE = "active-due"
    RUNNING = "running"


class RunTrigger(str, Enum):
    """What started a run."""

    SCHEDULED = "scheduled"
    MANUAL = "manual"


class Source(CamelModel):
    """A channel or playlist polled by the scheduler."""

    id: str = Field(default_factory=new_id, description="Stable source identifier")
    source: str = Field(..., min_length=1, description="Channel or playlist URL")
    type: SourceType = Field(..., description="Kind of collection")
    active: bool = Field(True, description="Whether the source participates in runs")
    last_checked: datetime | None = Field(None, description="Completion time of the last run that processed it")

    @field_validator("last_checked")
    @classmethod
    def _last_checked_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class LogEntry(CamelModel):
    """One line of the scheduler's persisted log tail."""

    timestamp: datetime = Field(default_factory=utcnow)
    message: str
    type: LogType = LogType.INFO
    source_id: str | None = None


class SchedulerState(CamelModel):
    """The single persisted scheduler document.

    Unknown keys from older documents (such as a legacy downloaded-id list)
    are ignored on load.
    """

    active: bool = False
    next_run: datetime | None = None
    interval_hours: float = Field(24.0, gt=0)
    sources: list[Source] = Field(default_factory=list)
    logs: list[LogEntry] = Field(default_factory=list)

    @field_validator("next_run")
    @classmethod
    def _next_run_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @model_validator(mode="after")
    def _normalize(self) -> "SchedulerState":
        if not self.active:
            self.next_run = None
        # Source ids are unique; later copies of an id are dropped
        unique: dict[str, Source] = {}
        for source in self.sources:
            unique.setdefault(source.id, source)
        if len(unique) != len(self.sources):
            self.sources = list(unique.values())
        return self

    def find_source(self, source_id: str) -> Source | None:
        for source in self.sources:
            if source.id == source_id:
                return source
        return None

    def to_document(self) -> dict:
        """Serialize to the JSON-compatible document written to the store."""
        return self.model_dump(mode="json", by_alias=True)


class HistoryRecord(CamelModel):
    """Immutable ledger entry for a single download attempt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    source_id: str
    title: str = ""
    artist: str = ""
    downloaded_at: datetime = Field(default_factory=utcnow)
    status: HistoryStatus
    error_detail: str | None = None
    external_id: str | None = None
    source_url: str | None = None
    source_type: str | None = None


class HistoryPage(CamelModel):
    """One page of a ledger query."""

    items: list[HistoryRecord]
    total: int
    total_pages: int
    current_page: int


class HistorySource(BaseModel):
    """A source id seen in the ledger, with a display name."""

    id: str
    name: str


class RunSummary(CamelModel):
    """Counters describing one completed run."""

    trigger: RunTrigger
    started_at: datetime
    completed_at: datetime | None = None
    sources_processed: int = 0
    downloaded: int = 0
    duplicates: int = 0
    failed: int = 0
    persisted: bool = False


@dataclass(frozen=True)
class ItemMetadata:
    """Metadata of a downloaded item as reported by the executor."""

    title: str
    artist: str
    track_id: str | None = None
    duration: float | None = None
    thumbnail: str | None = None
    tags: tuple[str, ...] = ()
    upload_date: str | None = None
    audio_path: str | None = None


@dataclass(frozen=True)
class Downloaded:
    """The item was new and has been downloaded."""

    external_id: str
    metadata: ItemMetadata


@dataclass(frozen=True)
class Duplicate:
    """The item had already been downloaded earlier."""

    external_id: str
    existing_id: str
    title: str = ""


@dataclass(frozen=True)
class Failed:
    """The item (or, with no external id, the whole source) could not be fetched."""

    reason: str
    external_id: str | None = None


Outcome = Downloaded | Duplicate | Failed
