"""Read-through cache of available-driver sets and device tokens."""

import itertools
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from ..cache.backends import CacheBackend
from ..core.exceptions import CacheBackendError
from ..geo import Position
from ..metrics import record_cache_lookup, record_error
from ..models import DriverChange, Region
from .driver_geospatial_index import DriverGeospatialIndex
from .driver_registry import DriverRegistry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


@dataclass
class _Entry:
    """Local bookkeeping for one cached value.

    The epoch is part of the backend key. Invalidation drops the entry, so
    the next read uses a new epoch and never sees the old value, even if
    deleting it from the backend failed.
    """

    epoch: int
    region: Region | None = None
    members: frozenset[str] = frozenset()
    expires_at: float | None = None


class AvailabilityCache:
    """Read-through cache in front of the spatial index and the registry.

    Backend failures degrade to misses. A read that started before an
    invalidation may return the old value once; it cannot store it, because
    its entry (and epoch) is gone by the time it finishes.
    """

    def __init__(
        self,
        registry: DriverRegistry,
        index: DriverGeospatialIndex,
        backend: CacheBackend,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        key_prefix: str = "ridematch",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._index = index
        self._backend = backend
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        # Keys are namespaced per instance: epochs are only meaningful locally
        self._prefix = f"{key_prefix}:{uuid.uuid4().hex[:12]}"
        self._epochs = itertools.count(1)
        self._lock = threading.Lock()
        self._regions: dict[str, _Entry] = {}
        self._tokens: dict[str, _Entry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get_available_set(self, region: Region) -> set[str]:
        """Available driver ids in the region, served from cache when fresh."""
        logical = region.cache_key
        with self._lock:
            entry = self._regions.get(logical)
            if entry is None:
                entry = self._regions[logical] = _Entry(epoch=next(self._epochs), region=region)
        key = self._backend_key("avail", logical, entry.epoch)

        raw = self._backend_get(key)
        if raw is not None:
            try:
                members = set(json.loads(raw))
            except (ValueError, TypeError):
                logger.warning(f"Discarding undecodable availability entry {key}")
            else:
                record_cache_lookup("availability", hit=True)
                return members

        record_cache_lookup("availability", hit=False)
        members = set(self._index.query(region.center, region.radius_km))

        with self._lock:
            current = self._regions.get(logical)
            still_valid = current is not None and current.epoch == entry.epoch
            if still_valid:
                current.members = frozenset(members)
                current.expires_at = self._clock() + self._ttl_seconds
        if still_valid:
            self._backend_set(key, json.dumps(sorted(members)).encode())
        return members

    def get_device_token(self, driver_id: str) -> str | None:
        """Device token for the driver; raises NotFoundError for unknown drivers."""
        with self._lock:
            entry = self._tokens.get(driver_id)
            if entry is None:
                entry = self._tokens[driver_id] = _Entry(epoch=next(self._epochs))
        key = self._backend_key("token", driver_id, entry.epoch)

        raw = self._backend_get(key)
        if raw is not None:
            try:
                token = json.loads(raw)["token"]
            except (ValueError, TypeError, KeyError):
                logger.warning(f"Discarding undecodable token entry {key}")
            else:
                record_cache_lookup("device_token", hit=True)
                return token

        record_cache_lookup("device_token", hit=False)
        try:
            token = self._registry.get(driver_id).device_token
        except Exception:
            with self._lock:
                current = self._tokens.get(driver_id)
                if current is not None and current.epoch == entry.epoch:
                    del self._tokens[driver_id]
            raise

        with self._lock:
            current = self._tokens.get(driver_id)
            still_valid = current is not None and current.epoch == entry.epoch
            if still_valid:
                current.expires_at = self._clock() + self._ttl_seconds
        if still_valid:
            self._backend_set(key, json.dumps({"token": token}).encode())
        return token

    def invalidate(self, driver_id: str) -> None:
        """Drop every cached value the driver may affect. Idempotent, never raises."""
        positions: list[Position] = []
        driver = self._registry.peek(driver_id)
        if driver is not None and driver.position is not None:
            positions.append(driver.position)
        self._invalidate(driver_id, positions)

    def on_driver_change(self, change: DriverChange) -> None:
        """Registry listener: invalidates the driver's old and new surroundings."""
        self._invalidate(change.driver_id, change.positions)

    def _invalidate(self, driver_id: str, positions: list[Position]) -> None:
        now = self._clock()
        stale_keys: list[str] = []
        with self._lock:
            for logical, entry in list(self._regions.items()):
                expired = entry.expires_at is not None and entry.expires_at <= now
                affected = driver_id in entry.members or (
                    entry.region is not None
                    and any(entry.region.contains(position) for position in positions)
                )
                if expired or affected:
                    del self._regions[logical]
                    if affected:
                        stale_keys.append(self._backend_key("avail", logical, entry.epoch))

            token_entry = self._tokens.pop(driver_id, None)
            if token_entry is not None:
                stale_keys.append(self._backend_key("token", driver_id, token_entry.epoch))

        if stale_keys:
            logger.debug(f"Invalidated {len(stale_keys)} cache entries for driver {driver_id}")
            self._backend_delete(stale_keys)

    def _backend_key(self, kind: str, logical: str, epoch: int) -> str:
        return f"{self._prefix}:{kind}:{logical}:{epoch}"

    def _backend_get(self, key: str) -> bytes | None:
        try:
            return self._backend.get(key)
        except (CacheBackendError, OSError) as e:
            record_error("cache", "get")
            logger.warning(f"Cache backend get failed, treating as miss: {e}")
            return None

    def _backend_set(self, key: str, value: bytes) -> None:
        try:
            self._backend.set(key, value, self._ttl_seconds)
        except (CacheBackendError, OSError) as e:
            record_error("cache", "set")
            logger.warning(f"Cache backend set failed, value not cached: {e}")

    def _backend_delete(self, keys: list[str]) -> None:
        try:
            self._backend.delete(*keys)
        except (CacheBackendError, OSError) as e:
            # Entries are unreachable already; the backend TTL collects them
            record_error("cache", "delete")
            logger.warning(f"Cache backend delete failed: {e}")
