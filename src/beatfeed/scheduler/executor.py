"""Download executor wrapping yt-dlp.

Given a source reference and its kind, the executor enumerates the member
items, downloads the ones it has not seen before and reports one
:data:`Outcome` per item. Identity of an item is its platform video id, kept
in a :class:`SeenIndex`; titles are never used to detect duplicates, so a
renamed upload is still recognized.

The executor does not raise for per-item problems. A source that cannot be
enumerated at all (unreachable, invalid, timed out) yields a single
:class:`Failed` outcome without an external id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import urllib.parse
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError
from yt_dlp import YoutubeDL

from ..errors import ExecutorError, StoreError
from ..models.scheduler import Downloaded, Duplicate, Failed, FetchKind, ItemMetadata, Outcome

if TYPE_CHECKING:
    import redis.asyncio as redis

    from ..config import ExecutorConfig

logger = logging.getLogger(__name__)

_CHANNEL_TABS = ("/videos", "/streams", "/shorts", "/releases", "/playlists")


def extract_video_id(url: str | None) -> str | None:
    """Extract a YouTube video id from watch, short-link, embed and shorts URLs."""
    if not url:
        return None
    parsed = urllib.parse.urlparse(url if "://" in url else f"https://{url}")
    host = (parsed.hostname or "").lower()

    if host == "youtu.be":
        video_id = parsed.path.lstrip("/").split("/")[0]
        return video_id or None

    if host.endswith("youtube.com"):
        query_id = urllib.parse.parse_qs(parsed.query).get("v")
        if query_id and query_id[0]:
            return query_id[0]
        match = re.match(r"^/(?:embed|shorts|live)/([A-Za-z0-9_-]+)", parsed.path)
        if match:
            return match.group(1)
    return None


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def channel_listing_url(url: str) -> str:
    """Point a bare channel URL at its uploads tab."""
    parsed = urllib.parse.urlparse(url)
    if parsed.hostname not in ("youtube.com", "www.youtube.com", "m.youtube.com"):
        return url
    path = parsed.path.rstrip("/")
    if path.endswith(_CHANNEL_TABS):
        return url
    return urllib.parse.urlunparse(parsed._replace(path=f"{path}/videos"))


def _collect_ids(entries: list[dict[str, Any]] | None, into: list[str]) -> None:
    for entry in entries or []:
        if not entry:
            continue
        if entry.get("entries") is not None:
            _collect_ids(entry.get("entries"), into)
            continue
        if entry.get("_type") == "playlist":
            continue
        video_id = entry.get("id") or extract_video_id(entry.get("url"))
        if video_id and video_id not in into:
            into.append(video_id)


class SeenIndex(ABC):
    """Index of platform ids that were already downloaded.

    Each id maps to the track id assigned when it was first downloaded and
    the title it had at that time.
    """

    @abstractmethod
    async def get(self, external_id: str) -> dict[str, str] | None:
        """Return ``{"trackId", "title"}`` for a seen id, None otherwise."""

    @abstractmethod
    async def add(self, external_id: str, track_id: str, title: str) -> None:
        """Mark an id as downloaded."""


class RedisSeenIndex(SeenIndex):
    """Seen-item index stored in a Redis hash ({prefix}seen)."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "") -> None:
        self.redis = redis_client
        self.key = f"{prefix}seen"

    async def get(self, external_id: str) -> dict[str, str] | None:
        try:
            data = await self.redis.hget(self.key, external_id)
        except (RedisError, OSError) as e:
            raise StoreError(f"Failed to read seen index: {e}", key=self.key) from e
        if data is None:
            return None
        return json.loads(data)

    async def add(self, external_id: str, track_id: str, title: str) -> None:
        try:
            await self.redis.hset(self.key, external_id, json.dumps({"trackId": track_id, "title": title}))
        except (RedisError, OSError) as e:
            raise StoreError(f"Failed to update seen index: {e}", key=self.key) from e


class MemorySeenIndex(SeenIndex):
    """Process-local seen-item index."""

    def __init__(self) -> None:
        self._seen: dict[str, dict[str, str]] = {}

    async def get(self, external_id: str) -> dict[str, str] | None:
        return self._seen.get(external_id)

    async def add(self, external_id: str, track_id: str, title: str) -> None:
        self._seen[external_id] = {"trackId": track_id, "title": title}


class DownloadExecutor(ABC):
    """Fetches new items from a source reference."""

    @abstractmethod
    async def fetch(self, source_ref: str, kind: FetchKind) -> list[Outcome]:
        """Download new members of ``source_ref`` and report one outcome per item."""


class YtDlpDownloadExecutor(DownloadExecutor):
    """Executor backed by the yt-dlp library.

    yt-dlp is blocking, so enumeration and downloads run in worker threads.
    Items are processed one at a time. Once ``source_timeout_seconds`` has
    passed no further item is started; the item in progress always finishes
    and is marked seen, and the rest of the source is reported as one
    :class:`Failed` outcome and picked up by the next run.

    Attributes:
        config: Executor settings.
        seen_index: Index of already downloaded platform ids.
    """

    def __init__(
        self,
        config: ExecutorConfig,
        seen_index: SeenIndex,
        ydl_factory: Callable[[dict[str, Any]], Any] = YoutubeDL,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Executor settings (media directory, audio format, limits).
            seen_index: Index used for duplicate detection.
            ydl_factory: Callable building a YoutubeDL-compatible context manager.
        """
        self.config = config
        self.seen_index = seen_index
        self._ydl_factory = ydl_factory

    async def fetch(self, source_ref: str, kind: FetchKind) -> list[Outcome]:
        timeout = self.config.source_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        if kind == "single":
            video_id = extract_video_id(source_ref)
            if not video_id:
                return [Failed("Invalid YouTube URL")]
            return [await self._fetch_item(video_id, watch_url(video_id))]

        try:
            # Listing is side-effect free, so it may be abandoned at the deadline
            video_ids = await asyncio.wait_for(
                asyncio.to_thread(self._enumerate, source_ref, kind),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out listing {kind} {source_ref}")
            return [Failed(f"Timed out after {timeout:g}s")]
        except Exception as e:
            logger.warning(f"Failed to enumerate {kind} {source_ref}: {type(e).__name__}: {e}")
            return [Failed(f"Failed to list {kind} items: {e}")]

        logger.info(f"Found {len(video_ids)} items in {kind} {source_ref}")
        outcomes: list[Outcome] = []
        for position, video_id in enumerate(video_ids):
            # The deadline is only checked between items; a started download always completes
            if loop.time() >= deadline:
                remaining = len(video_ids) - position
                logger.warning(f"Timed out processing {kind} {source_ref}, {remaining} item(s) left for next run")
                outcomes.append(Failed(f"Timed out after {timeout:g}s; {remaining} item(s) not checked"))
                break
            outcomes.append(await self._fetch_item(video_id, watch_url(video_id)))
        return outcomes

    async def _fetch_item(self, video_id: str, url: str) -> Outcome:
        try:
            seen = await self.seen_index.get(video_id)
        except StoreError as e:
            return Failed(str(e), external_id=video_id)
        if seen is not None:
            logger.debug(f"Skipping already downloaded item {video_id}")
            return Duplicate(video_id, seen.get("trackId", ""), seen.get("title", ""))

        track_id = f"track_{uuid.uuid4().hex[:16]}"
        try:
            metadata = await asyncio.to_thread(self._download, url, track_id)
        except Exception as e:
            logger.warning(f"Download of {video_id} failed: {type(e).__name__}: {e}")
            return Failed(str(e), external_id=video_id)

        try:
            await self.seen_index.add(video_id, track_id, metadata.title)
        except StoreError as e:
            # The file exists but will be fetched again next run
            logger.error(f"Downloaded {video_id} but could not mark it as seen: {e}")
        return Downloaded(video_id, metadata)

    def _base_options(self) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "logger": logging.getLogger("yt_dlp"),
        }
        if self.config.cookie_file:
            opts["cookiefile"] = self.config.cookie_file
        return opts

    def _enumerate(self, source_ref: str, kind: FetchKind) -> list[str]:
        url = channel_listing_url(source_ref) if kind == "channel" else source_ref
        opts = self._base_options()
        opts.update({"skip_download": True, "extract_flat": True})
        if self.config.max_items_per_source:
            opts["playlistend"] = self.config.max_items_per_source

        with self._ydl_factory(opts) as ydl:
            info = ydl.extract_info(url, download=False)

        if not info:
            raise ExecutorError(f"No information returned for {url}")
        video_ids: list[str] = []
        _collect_ids(info.get("entries"), video_ids)
        if self.config.max_items_per_source:
            video_ids = video_ids[: self.config.max_items_per_source]
        return video_ids

    def _download(self, url: str, track_id: str) -> ItemMetadata:
        media_dir = Path(self.config.media_dir)
        media_dir.mkdir(parents=True, exist_ok=True)

        opts = self._base_options()
        opts.update(
            {
                "format": "bestaudio/best",
                "noplaylist": True,
                "outtmpl": str(media_dir / f"{track_id}.%(ext)s"),
                "writethumbnail": True,
                "postprocessors": [
                    {
                        "key": "FFmpegExtractAudio",
                        "preferredcodec": self.config.audio_format,
                        "preferredquality": self.config.audio_quality,
                    },
                    {"key": "FFmpegThumbnailsConvertor", "format": "jpg"},
                ],
            }
        )

        with self._ydl_factory(opts) as ydl:
            info = ydl.extract_info(url, download=False)
            if not info:
                raise ExecutorError(f"No metadata returned for {url}")

            title = (info.get("title") or "").strip()
            if not title:
                raise ExecutorError("Track title is required")
            duration = info.get("duration")
            if not duration or duration < self.config.min_duration_seconds:
                raise ExecutorError(
                    f"Track too short (less than {self.config.min_duration_seconds} seconds)"
                    " - likely not a full track"
                )

            ydl.process_ie_result(info, download=True)

        return ItemMetadata(
            title=title,
            artist=info.get("artist") or self.config.default_artist,
            track_id=track_id,
            duration=float(duration),
            thumbnail=info.get("thumbnail"),
            tags=tuple(info.get("tags") or ()),
            upload_date=info.get("upload_date"),
            audio_path=str(media_dir / f"{track_id}.{self.config.audio_format}"),
        )
