"""Persistent storage for the scheduler state document.

The whole scheduler state lives in one JSON document. Redis is used as the
object store in production: a single ``SET`` replaces the document
atomically, so a reader never observes a partial write. An in-memory backend
with the same contract is used when no Redis URI is configured and in tests.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from redis.exceptions import RedisError

from ..errors import StoreError

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Key/value store for JSON documents.

    Contract:
    - ``load`` returns a copy of ``default`` when the key does not exist.
    - ``save`` replaces the document atomically.
    - Backend failures surface as :class:`StoreError`.
    """

    backend: str = "unknown"

    @abstractmethod
    async def load(self, key: str, default: dict[str, Any]) -> dict[str, Any]:
        """Load the document stored under ``key``."""

    @abstractmethod
    async def save(self, key: str, document: dict[str, Any]) -> None:
        """Replace the document stored under ``key``."""

    @staticmethod
    def _decode(key: str, data: str | bytes) -> dict[str, Any]:
        try:
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            document = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StoreError(f"Stored document is not valid JSON: {key}", key=key) from e
        if not isinstance(document, dict):
            raise StoreError(f"Stored document is not a JSON object: {key}", key=key)
        return document


class RedisStateStore(StateStore):
    """Redis-backed document store.

    Key pattern:
    - {prefix}doc:{key} - Serialized JSON document
    """

    backend = "redis"

    def __init__(self, redis_client: redis.Redis, prefix: str = "") -> None:
        """Initialize the store.

        Args:
            redis_client: Async Redis client instance.
            prefix: Namespace prepended to every key.
        """
        self.redis = redis_client
        self.prefix = prefix

    def _get_document_key(self, key: str) -> str:
        """Get Redis key for a document."""
        return f"{self.prefix}doc:{key}"

    async def load(self, key: str, default: dict[str, Any]) -> dict[str, Any]:
        redis_key = self._get_document_key(key)
        try:
            data = await self.redis.get(redis_key)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to load {key} from Redis: {e}")
            raise StoreError(f"Failed to load {key}: {e}", key=key) from e

        if data is None:
            logger.info(f"No stored document for {key}, using default")
            return copy.deepcopy(default)

        return self._decode(key, data)

    async def save(self, key: str, document: dict[str, Any]) -> None:
        redis_key = self._get_document_key(key)
        payload = json.dumps(document)
        try:
            await self.redis.set(redis_key, payload)
        except (RedisError, OSError) as e:
            logger.error(f"Failed to save {key} to Redis: {e}")
            raise StoreError(f"Failed to save {key}: {e}", key=key) from e

        logger.debug(f"Saved {key} ({len(payload)} bytes)")


class MemoryStateStore(StateStore):
    """Process-local document store.

    Documents are kept serialized so that load/save round trips behave like
    the Redis backend.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._documents: dict[str, str] = {}

    async def load(self, key: str, default: dict[str, Any]) -> dict[str, Any]:
        data = self._documents.get(key)
        if data is None:
            return copy.deepcopy(default)
        return self._decode(key, data)

    async def save(self, key: str, document: dict[str, Any]) -> None:
        self._documents[key] = json.dumps(document)
