"""Key/value backends for the availability cache.

Backends raise CacheBackendError on failure; the availability cache treats
that as a miss.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis
from redis.exceptions import RedisError

from ..core.exceptions import CacheBackendError

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None: ...

    def delete(self, *keys: str) -> None: ...


class InMemoryCacheBackend:
    """Process-local TTL store keyed by monotonic time."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[bytes, float]] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCacheBackend:
    """Redis-backed store using SETEX; all Redis errors become CacheBackendError."""

    def __init__(self, client: "redis.Redis[bytes]") -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "RedisCacheBackend":
        client = redis.Redis(
            host=config["host"],
            port=config["port"],
            db=config.get("db", 0),
            password=config.get("password") or None,
            ssl=config.get("ssl", False),
            socket_timeout=config.get("socket_timeout", 0.5),
            socket_connect_timeout=config.get("socket_timeout", 0.5),
        )
        return cls(client)

    def get(self, key: str) -> bytes | None:
        try:
            value = self._client.get(key)
        except RedisError as e:
            raise CacheBackendError(f"Redis GET {key} failed: {e}") from e
        if value is None:
            return None
        return value if isinstance(value, bytes) else str(value).encode()

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        # SETEX takes whole seconds; truncate so entries never outlive the TTL
        ttl = max(1, int(ttl_seconds))
        try:
            self._client.setex(key, ttl, value)
        except RedisError as e:
            raise CacheBackendError(f"Redis SETEX {key} failed: {e}") from e

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*keys)
        except RedisError as e:
            raise CacheBackendError(f"Redis DEL failed: {e}") from e

    def close(self) -> None:
        self._client.close()
