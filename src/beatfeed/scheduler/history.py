"""History ledger of download attempts.

Every attempt made during a run (downloaded, duplicate or failed) becomes one
immutable :class:`HistoryRecord`. The ledger is append-only: its contract
offers no update or delete operation.
"""

from __future__ import annotations

import csv
import io
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from ..errors import StoreError
from ..models.scheduler import HistoryPage, HistoryRecord, HistorySource

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "ID",
    "Source ID",
    "External ID",
    "Title",
    "Artist",
    "Status",
    "Downloaded At",
    "Error",
    "Source URL",
    "Source Type",
]

# Records fetched per MGET when scanning the whole ledger
_SCAN_BATCH = 500


def matches_search(record: HistoryRecord, search: str | None) -> bool:
    """Case-insensitive substring match on title, artist and source URL."""
    if not search:
        return True
    needle = search.lower()
    return (
        needle in record.title.lower()
        or needle in record.artist.lower()
        or needle in (record.source_url or "").lower()
    )


def source_display_name(source_id: str, source_type: str | None) -> str:
    """Readable label for a source id in filter dropdowns."""
    if source_type == "channel":
        return f"Channel: {source_id}"
    if source_type == "playlist":
        return f"Playlist: {source_id}"
    return source_id


def build_page(records: list[HistoryRecord], total: int, page: int, page_size: int) -> HistoryPage:
    return HistoryPage(
        items=records,
        total=total,
        total_pages=math.ceil(total / page_size) if total else 0,
        current_page=page,
    )


def csv_chunks(records: Iterable[HistoryRecord], include_header: bool = False) -> bytes:
    """Render records as CSV bytes."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    if include_header:
        writer.writerow(CSV_HEADER)
    for record in records:
        writer.writerow(
            [
                record.id,
                record.source_id,
                record.external_id or "",
                record.title,
                record.artist,
                record.status.value,
                record.downloaded_at.isoformat(),
                record.error_detail or "",
                record.source_url or "",
                record.source_type or "",
            ]
        )
    return buffer.getvalue().encode("utf-8")


class HistoryLedger(ABC):
    """Append-only store of :class:`HistoryRecord` entries."""

    @abstractmethod
    async def record(self, record: HistoryRecord) -> None:
        """Append a record."""

    @abstractmethod
    async def query(
        self,
        page: int = 1,
        page_size: int = 20,
        source_id: str | None = None,
        search: str | None = None,
    ) -> HistoryPage:
        """Return one page of records, newest first.

        Args:
            page: 1-based page number.
            page_size: Maximum records per page.
            source_id: Restrict to one source ("all" or None disables the filter).
            search: Case-insensitive substring matched against title, artist and source URL.
        """

    @abstractmethod
    async def list_sources(self) -> list[HistorySource]:
        """Distinct source ids present in the ledger."""

    @abstractmethod
    def export_csv(self) -> AsyncIterator[bytes]:
        """Stream the whole ledger as CSV, newest first."""


class RedisHistoryLedger(HistoryLedger):
    """Redis-backed ledger.

    Key patterns:
    - {prefix}history:record:{record_id} - Serialized record
    - {prefix}history:index - Sorted set of all record ids by timestamp
    - {prefix}history:source:{source_id} - Sorted set of a source's record ids
    - {prefix}history:sources - Hash of source id -> source type
    """

    def __init__(self, redis_client: redis.Redis, prefix: str = "") -> None:
        self.redis = redis_client
        self.prefix = prefix

    def _get_record_key(self, record_id: str) -> str:
        return f"{self.prefix}history:record:{record_id}"

    def _get_index_key(self, source_id: str | None = None) -> str:
        if source_id:
            return f"{self.prefix}history:source:{source_id}"
        return f"{self.prefix}history:index"

    def _get_sources_key(self) -> str:
        return f"{self.prefix}history:sources"

    async def record(self, record: HistoryRecord) -> None:
        score = record.downloaded_at.timestamp()
        try:
            # Record and indexes are written together or not at all
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._get_record_key(record.id), record.model_dump_json(by_alias=True))
                pipe.zadd(self._get_index_key(), {record.id: score})
                pipe.zadd(self._get_index_key(record.source_id), {record.id: score})
                pipe.hsetnx(self._get_sources_key(), record.source_id, record.source_type or "")
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise StoreError(f"Failed to record history entry {record.id}: {e}") from e

        logger.debug(f"Recorded {record.status.value} history entry {record.id} for source {record.source_id}")

    async def _fetch(self, record_ids: list[str | bytes]) -> list[HistoryRecord]:
        if not record_ids:
            return []
        keys = []
        for record_id in record_ids:
            # Handle both bytes and string from Redis
            if isinstance(record_id, bytes):
                record_id = record_id.decode("utf-8")
            keys.append(self._get_record_key(record_id))
        payloads = await self.redis.mget(keys)
        return [HistoryRecord.model_validate_json(data) for data in payloads if data]

    async def query(
        self,
        page: int = 1,
        page_size: int = 20,
        source_id: str | None = None,
        search: str | None = None,
    ) -> HistoryPage:
        if source_id == "all":
            source_id = None
        index_key = self._get_index_key(source_id)
        start = (page - 1) * page_size

        try:
            if not search:
                total = await self.redis.zcard(index_key) or 0
                record_ids = await self.redis.zrevrange(index_key, start, start + page_size - 1)
                return build_page(await self._fetch(record_ids), total, page, page_size)

            # Text search has to look at every candidate record
            record_ids = await self.redis.zrevrange(index_key, 0, -1)
            matching: list[HistoryRecord] = []
            for offset in range(0, len(record_ids), _SCAN_BATCH):
                batch = await self._fetch(record_ids[offset : offset + _SCAN_BATCH])
                matching.extend(r for r in batch if matches_search(r, search))
        except (RedisError, OSError) as e:
            raise StoreError(f"Failed to query history: {e}") from e

        return build_page(matching[start : start + page_size], len(matching), page, page_size)

    async def list_sources(self) -> list[HistorySource]:
        try:
            entries = await self.redis.hgetall(self._get_sources_key())
        except (RedisError, OSError) as e:
            raise StoreError(f"Failed to list history sources: {e}") from e

        sources = []
        for source_id, source_type in (entries or {}).items():
            if isinstance(source_id, bytes):
                source_id = source_id.decode("utf-8")
            if isinstance(source_type, bytes):
                source_type = source_type.decode("utf-8")
            sources.append(HistorySource(id=source_id, name=source_display_name(source_id, source_type)))
        return sorted(sources, key=lambda s: s.id)

    async def export_csv(self) -> AsyncIterator[bytes]:
        yield csv_chunks([], include_header=True)
        index_key = self._get_index_key()
        offset = 0
        while True:
            try:
                record_ids = await self.redis.zrevrange(index_key, offset, offset + _SCAN_BATCH - 1)
                records = await self._fetch(record_ids)
            except (RedisError, OSError) as e:
                raise StoreError(f"Failed to export history: {e}") from e
            if not record_ids:
                break
            yield csv_chunks(records)
            offset += _SCAN_BATCH


class MemoryHistoryLedger(HistoryLedger):
    """Process-local ledger used without Redis and in tests."""

    def __init__(self) -> None:
        self._records: list[HistoryRecord] = []

    def _newest_first(self) -> list[HistoryRecord]:
        # Later insertions win ties on equal timestamps
        indexed = list(enumerate(self._records))
        indexed.sort(key=lambda item: (item[1].downloaded_at, item[0]), reverse=True)
        return [record for _, record in indexed]

    async def record(self, record: HistoryRecord) -> None:
        self._records.append(record)

    async def query(
        self,
        page: int = 1,
        page_size: int = 20,
        source_id: str | None = None,
        search: str | None = None,
    ) -> HistoryPage:
        records = self._newest_first()
        if source_id and source_id != "all":
            records = [r for r in records if r.source_id == source_id]
        records = [r for r in records if matches_search(r, search)]

        start = (page - 1) * page_size
        return build_page(records[start : start + page_size], len(records), page, page_size)

    async def list_sources(self) -> list[HistorySource]:
        seen: dict[str, str | None] = {}
        for record in self._records:
            seen.setdefault(record.source_id, record.source_type)
        return [
            HistorySource(id=source_id, name=source_display_name(source_id, source_type))
            for source_id, source_type in sorted(seen.items())
        ]

    async def export_csv(self) -> AsyncIterator[bytes]:
        yield csv_chunks([], include_header=True)
        yield csv_chunks(self._newest_first())
