"""Import scheduler: the acquisition state machine.

The scheduler owns the persisted :class:`SchedulerState` (sources, the
active toggle, the next run time and the log tail) and orchestrates runs:
iterate active sources, ask the download executor for new items, record every
outcome in the history ledger and persist the state once at the end.

States:
- inactive: automatic runs disabled, ``next_run`` is None
- active-idle: enabled, ``next_run`` in the future
- active-due: enabled, ``next_run`` reached
- running: a run is in flight (process-local, never persisted)
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from ..config import SchedulerConfig
from ..errors import SourceNotFoundError, StoreError
from ..logging_config import log_with_context
from ..models.scheduler import (
    Downloaded,
    Duplicate,
    Failed,
    HistoryRecord,
    HistoryStatus,
    LogEntry,
    LogType,
    Outcome,
    RunSummary,
    RunTrigger,
    SchedulerPhase,
    SchedulerState,
    Source,
    SourceType,
    utcnow,
)
from .executor import DownloadExecutor
from .history import HistoryLedger
from .storage import StateStore

logger = logging.getLogger(__name__)

# Fields a caller may change on an existing source
UPDATABLE_SOURCE_FIELDS = frozenset({"source", "type", "active", "last_checked"})


class ImportScheduler:
    """State machine and run orchestrator for content acquisition.

    A process holds one instance (see :class:`SchedulerHolder`). Every
    mutating operation rewrites the whole state document. Runs are
    sequential over sources and at most one run is in flight per process.

    Attributes:
        store: Document store holding the scheduler state.
        ledger: History ledger receiving one record per download attempt.
        executor: Download executor used for each source.
        config: Scheduler configuration settings.
        last_save_error: Message of the last failed save, None after a successful one.
    """

    def __init__(
        self,
        store: StateStore,
        ledger: HistoryLedger,
        executor: DownloadExecutor,
        config: SchedulerConfig,
        state: SchedulerState | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.executor = executor
        self.config = config
        self._clock = clock
        self._state = state or SchedulerState(interval_hours=config.interval_hours)
        self._running = False
        self._save_lock = asyncio.Lock()
        self.last_save_error: str | None = None

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self._state.interval_hours)

    @property
    def is_running(self) -> bool:
        return self._running

    def phase(self, now: datetime | None = None) -> SchedulerPhase:
        """Current state machine phase."""
        if self._running:
            return SchedulerPhase.RUNNING
        if not self._state.active:
            return SchedulerPhase.INACTIVE
        if self.should_run(now):
            return SchedulerPhase.ACTIVE_DUE
        return SchedulerPhase.ACTIVE_IDLE

    def should_run(self, now: datetime | None = None) -> bool:
        """True when automatic runs are enabled and the next run time has been reached."""
        now = now or self._clock()
        next_run = self._state.next_run
        return bool(self._state.active and next_run is not None and now >= next_run)

    def status(self) -> dict[str, Any]:
        """Snapshot for the status endpoint."""
        return {
            "active": self._state.active,
            "next_run": self._state.next_run,
            "interval": f"{self._state.interval_hours:g} hours",
            "interval_hours": self._state.interval_hours,
            "running": self._running,
            "sources": [source.model_copy() for source in self._state.sources],
            "logs": list(self._state.logs),
            "last_save_error": self.last_save_error,
        }

    def active_sources(self) -> list[Source]:
        return [source for source in self._state.sources if source.active]

    def add_log(self, message: str, type: LogType = LogType.INFO, source_id: str | None = None) -> None:
        """Append to the persisted log tail, evicting the oldest entries over capacity."""
        self._state.logs.append(
            LogEntry(timestamp=self._clock(), message=message, type=type, source_id=source_id)
        )
        overflow = len(self._state.logs) - self.config.max_log_entries
        if overflow > 0:
            del self._state.logs[:overflow]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load state from the store and bring it in line with the configuration.

        Raises:
            StoreError: If the store cannot be read, or a required save fails.
        """
        default = SchedulerState(interval_hours=self.config.interval_hours).to_document()
        document = await self.store.load(self.config.state_key, default)

        dirty = False
        try:
            self._state = SchedulerState.model_validate(document)
        except ValidationError as e:
            logger.error(f"Stored scheduler state is invalid, starting from defaults: {e}")
            self._state = SchedulerState(interval_hours=self.config.interval_hours)
            self.add_log(f"Error loading state: {e.error_count()} invalid field(s)", LogType.ERROR)
            dirty = True

        self._state.interval_hours = self.config.interval_hours
        overflow = len(self._state.logs) - self.config.max_log_entries
        if overflow > 0:
            del self._state.logs[:overflow]

        if not self._state.sources and self.config.default_sources:
            for url in self.config.default_sources:
                self._state.sources.append(Source(source=url, type="playlist"))
                self.add_log(f"Added default playlist: {url}", LogType.SUCCESS)
            dirty = True

        if self._state.active and self._state.next_run is None:
            self._state.next_run = self._clock() + self.interval
            logger.info("Set next run time for active scheduler")
            dirty = True

        if dirty:
            await self.save_state()

        logger.info(
            f"Scheduler initialized (active={self._state.active}, "
            f"sources={len(self._state.sources)}, next_run={self._state.next_run})"
        )

    async def save_state(self) -> None:
        """Persist the complete current state.

        Raises:
            StoreError: If the write fails. In-memory state is kept as-is.
        """
        async with self._save_lock:
            document = self._state.to_document()
            try:
                await self.store.save(self.config.state_key, document)
            except StoreError as e:
                self.last_save_error = str(e)
                logger.error(f"Failed to save scheduler state: {e}")
                raise
            self.last_save_error = None

    # ------------------------------------------------------------------
    # Toggle and source management
    # ------------------------------------------------------------------

    async def toggle_active(self, active: bool) -> dict[str, Any]:
        """Enable or pause automatic runs.

        Enabling schedules the next run one interval from now; pausing clears it.
        """
        self._state.active = active
        self._state.next_run = self._clock() + self.interval if active else None
        self.add_log(f"Scheduler {'activated' if active else 'paused'}")
        logger.info(f"Scheduler {'activated' if active else 'paused'} (next_run={self._state.next_run})")

        await self.save_state()
        return {"active": self._state.active, "next_run": self._state.next_run}

    async def add_source(self, source: str, type: SourceType) -> Source:
        """Append a new active source with a generated id."""
        new_source = Source(source=source, type=type)
        while self._state.find_source(new_source.id) is not None:
            new_source = Source(source=source, type=type)

        self._state.sources.append(new_source)
        self.add_log(f"Added new {type}: {source}", LogType.SUCCESS, new_source.id)
        logger.info(f"Added source {new_source.id}: {type} {source}")

        await self.save_state()
        return new_source.model_copy()

    async def update_source(self, source_id: str, **updates: Any) -> Source:
        """Merge ``updates`` into an existing source.

        Raises:
            SourceNotFoundError: If no source has ``source_id``.
            ValueError: If a field is not updatable.
        """
        unknown = set(updates) - UPDATABLE_SOURCE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update source field(s): {', '.join(sorted(unknown))}")

        for index, current in enumerate(self._state.sources):
            if current.id == source_id:
                break
        else:
            raise SourceNotFoundError(source_id)

        updated = Source.model_validate({**current.model_dump(), **updates, "id": current.id})
        self._state.sources[index] = updated
        self.add_log(f"Updated source: {updated.source}", LogType.INFO, source_id)

        await self.save_state()
        return updated.model_copy()

    async def delete_source(self, source_id: str) -> bool:
        """Remove a source. Returns False when the id is unknown."""
        current = self._state.find_source(source_id)
        if current is None:
            return False

        self._state.sources = [s for s in self._state.sources if s.id != source_id]
        self.add_log(f"Deleted source: {current.source}")
        logger.info(f"Deleted source {source_id}")

        await self.save_state()
        return True

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def check_and_run(self) -> RunSummary | None:
        """Run if automatic runs are due. Returns None when nothing ran."""
        if self._running:
            logger.debug("Scheduler check: run already in progress")
            return None
        if not self.should_run():
            logger.debug("Scheduler check: not scheduled to run yet")
            return None

        self._running = True
        try:
            return await self._run(RunTrigger.SCHEDULED)
        finally:
            self._running = False

    async def run_now(self) -> RunSummary | None:
        """Run immediately without touching the schedule. Returns None if a run is in flight."""
        if self._running:
            logger.info("Manual run ignored: run already in progress")
            return None

        self._running = True
        try:
            return await self._run(RunTrigger.MANUAL)
        finally:
            self._running = False

    async def _run(self, trigger: RunTrigger) -> RunSummary:
        summary = RunSummary(trigger=trigger, started_at=self._clock())
        sources = [source.model_copy() for source in self.active_sources()]

        label = "scheduled" if trigger == RunTrigger.SCHEDULED else "manual"
        logger.info(f"Starting {label} run for {len(sources)} active sources")
        self.add_log(f"Running {label} check", LogType.INFO)
        if not sources:
            self.add_log("No active sources to check", LogType.INFO)

        processed: list[str] = []
        for source in sources:
            await self._process_source(source, summary)
            processed.append(source.id)

        completed_at = self._clock()
        for source_id in processed:
            # Sources deleted while the run was in flight stay deleted
            current = self._state.find_source(source_id)
            if current is not None:
                current.last_checked = completed_at

        if trigger == RunTrigger.SCHEDULED and self._state.active:
            self._state.next_run = completed_at + self.interval

        summary.completed_at = completed_at
        summary.sources_processed = len(processed)
        self.add_log(
            f"Scheduler run completed: {summary.downloaded} downloaded, "
            f"{summary.duplicates} duplicates, {summary.failed} failed",
            LogType.INFO,
        )

        try:
            await self.save_state()
            summary.persisted = True
        except StoreError:
            logger.error("Run finished but scheduler state could not be saved; keeping in-memory state")

        log_with_context(
            logger,
            logging.INFO,
            f"Finished {label} run",
            trigger=trigger.value,
            sources=summary.sources_processed,
            downloaded=summary.downloaded,
            duplicates=summary.duplicates,
            failed=summary.failed,
            persisted=summary.persisted,
        )
        return summary

    async def _process_source(self, source: Source, summary: RunSummary) -> None:
        tag = f"[SOURCE-{source.id}]"
        logger.info(f"{tag} Checking {source.type}: {source.source}")

        try:
            outcomes: list[Outcome] = await self.executor.fetch(source.source, source.type)
        except Exception as e:
            logger.exception(f"{tag} Executor crashed: {e}")
            outcomes = [Failed(f"{type(e).__name__}: {e}")]

        downloaded = duplicates = failed = 0
        for outcome in outcomes:
            if isinstance(outcome, Downloaded):
                downloaded += 1
                await self._record(
                    source,
                    HistoryStatus.SUCCESS,
                    title=outcome.metadata.title,
                    artist=outcome.metadata.artist,
                    external_id=outcome.external_id,
                )
                self.add_log(f"Downloaded track: {outcome.metadata.title}", LogType.SUCCESS, source.id)
            elif isinstance(outcome, Duplicate):
                duplicates += 1
                await self._record(
                    source,
                    HistoryStatus.DUPLICATE,
                    title=outcome.title,
                    external_id=outcome.external_id,
                )
            else:
                failed += 1
                await self._record(
                    source,
                    HistoryStatus.FAILED,
                    title=outcome.external_id or source.source,
                    external_id=outcome.external_id,
                    error_detail=outcome.reason,
                )
                if outcome.external_id:
                    message = f"Failed to download track: {outcome.external_id} - {outcome.reason}"
                else:
                    message = f"Failed to process {source.type}: {outcome.reason}"
                self.add_log(message, LogType.ERROR, source.id)
                logger.warning(f"{tag} {message}")

        summary.downloaded += downloaded
        summary.duplicates += duplicates
        summary.failed += failed
        self.add_log(
            f"Completed {source.type}. Downloaded: {downloaded}, Duplicates: {duplicates}, Failed: {failed}",
            LogType.INFO,
            source.id,
        )
        logger.info(f"{tag} Downloaded={downloaded} duplicates={duplicates} failed={failed}")

    async def _record(
        self,
        source: Source,
        status: HistoryStatus,
        title: str,
        artist: str = "",
        external_id: str | None = None,
        error_detail: str | None = None,
    ) -> None:
        record = HistoryRecord(
            source_id=source.id,
            title=title,
            artist=artist,
            downloaded_at=self._clock(),
            status=status,
            error_detail=error_detail,
            external_id=external_id,
            source_url=source.source,
            source_type=source.type,
        )
        try:
            await self.ledger.record(record)
        except Exception as e:
            logger.error(f"[SOURCE-{source.id}] Failed to write history record: {e}")
            self.add_log(f"Failed to write history record: {e}", LogType.ERROR, source.id)
