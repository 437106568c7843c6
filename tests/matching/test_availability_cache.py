"""Tests for the availability cache."""

from unittest.mock import Mock, patch

import pytest

from ridematch.cache.backends import InMemoryCacheBackend
from ridematch.core.exceptions import CacheBackendError, NotFoundError, StoreUnavailableError
from ridematch.core.retry import RetryConfig
from ridematch.db.driver_store import InMemoryDriverStore
from ridematch.geo import Position
from ridematch.matching.availability_cache import AvailabilityCache
from ridematch.matching.driver_registry import DriverRegistry
from ridematch.models import Region
from tests.helpers import MARKET_ST, NEAR_MARKET_ST, OAKLAND

DOWNTOWN = Region(Position(*MARKET_ST), 1.0)


@pytest.mark.unit
class TestAvailableSet:
    def test_read_through_then_hit(self, registry, index, cache, backend):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)

        with patch.object(index, "query", wraps=index.query) as query:
            assert cache.get_available_set(DOWNTOWN) == {"d1"}
            assert cache.get_available_set(DOWNTOWN) == {"d1"}

        assert query.call_count == 1
        assert len(backend) == 1

    def test_entry_expires_after_ttl(self, registry, index, cache, clock):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)

        with patch.object(index, "query", wraps=index.query) as query:
            cache.get_available_set(DOWNTOWN)
            clock.advance(cache.ttl_seconds + 1)
            cache.get_available_set(DOWNTOWN)

        assert query.call_count == 2

    @pytest.mark.critical
    def test_availability_change_is_visible_immediately(self, registry, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        assert cache.get_available_set(DOWNTOWN) == {"d1"}

        registry.set_availability("d1", False)

        assert cache.get_available_set(DOWNTOWN) == set()

    def test_driver_entering_region_invalidates(self, registry, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        registry.register("d2", "Bea", OAKLAND, available=True)
        assert cache.get_available_set(DOWNTOWN) == {"d1"}

        registry.upsert_location("d2", MARKET_ST)

        assert cache.get_available_set(DOWNTOWN) == {"d1", "d2"}

    def test_driver_leaving_region_invalidates(self, registry, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        assert cache.get_available_set(DOWNTOWN) == {"d1"}

        registry.upsert_location("d1", OAKLAND)

        assert cache.get_available_set(DOWNTOWN) == set()

    def test_unrelated_change_keeps_entry(self, registry, index, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        registry.register("d2", "Bea", OAKLAND, available=True)
        cache.get_available_set(DOWNTOWN)

        with patch.object(index, "query", wraps=index.query) as query:
            registry.set_availability("d2", False)
            cache.get_available_set(DOWNTOWN)

        assert query.call_count == 0

    @pytest.mark.critical
    def test_read_racing_invalidation_is_not_stored(self, registry, index, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        real_query = index.query

        def query_then_change(center, radius_km):
            result = real_query(center, radius_km)
            registry.set_availability("d1", False)
            return result

        with patch.object(index, "query", side_effect=query_then_change):
            stale = cache.get_available_set(DOWNTOWN)

        assert stale == {"d1"}
        assert cache.get_available_set(DOWNTOWN) == set()


@pytest.mark.unit
class TestDeviceToken:
    def test_token_read_through(self, registry, cache):
        registry.register("d1", "Ana", device_token="tok-1")

        with patch.object(registry, "get", wraps=registry.get) as get:
            assert cache.get_device_token("d1") == "tok-1"
            assert cache.get_device_token("d1") == "tok-1"

        assert get.call_count == 1

    def test_token_change_invalidates(self, registry, cache):
        registry.register("d1", "Ana", device_token="tok-1")
        cache.get_device_token("d1")

        registry.set_device_token("d1", "tok-2")

        assert cache.get_device_token("d1") == "tok-2"

    def test_driver_without_token(self, registry, cache):
        registry.register("d1", "Ana")
        assert cache.get_device_token("d1") is None

    def test_unknown_driver_raises(self, cache):
        with pytest.raises(NotFoundError):
            cache.get_device_token("ghost")

    def test_failed_lookup_leaves_no_token_entry(self, cache):
        with pytest.raises(NotFoundError):
            cache.get_device_token("ghost")

        assert "ghost" not in cache._tokens


@pytest.mark.unit
class TestInvalidate:
    def test_invalidate_is_idempotent(self, registry, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True, device_token="t")
        cache.get_available_set(DOWNTOWN)
        cache.get_device_token("d1")

        cache.invalidate("d1")
        cache.invalidate("d1")
        cache.invalidate("ghost")

        assert cache.get_available_set(DOWNTOWN) == {"d1"}

    def test_explicit_invalidate_forces_reload(self, registry, index, cache):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)
        cache.get_available_set(DOWNTOWN)

        with patch.object(index, "query", wraps=index.query) as query:
            cache.invalidate("d1")
            cache.get_available_set(DOWNTOWN)

        assert query.call_count == 1

    def test_invalidated_keys_deleted_from_backend(self, registry, cache, backend):
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True, device_token="t")
        cache.get_available_set(DOWNTOWN)
        cache.get_device_token("d1")
        assert len(backend) == 2

        cache.invalidate("d1")

        assert len(backend) == 0

    def test_invalidate_does_not_touch_store(self, index, backend, clock):
        store = Mock(wraps=InMemoryDriverStore())
        store.load_driver.side_effect = StoreUnavailableError("database down")
        registry = DriverRegistry(store, RetryConfig(max_attempts=2, base_delay=0.0))
        cache = AvailabilityCache(registry, index, backend, clock=clock)

        cache.invalidate("unknown")

        assert store.load_driver.call_count == 0


@pytest.mark.unit
class TestBackendFailure:
    @pytest.fixture
    def broken_backend(self) -> Mock:
        backend = Mock(spec=InMemoryCacheBackend)
        backend.get.side_effect = CacheBackendError("redis down")
        backend.set.side_effect = CacheBackendError("redis down")
        backend.delete.side_effect = CacheBackendError("redis down")
        return backend

    def test_failures_degrade_to_misses(self, registry, index, broken_backend, clock):
        cache = AvailabilityCache(registry, index, broken_backend, clock=clock)
        registry.subscribe(cache.on_driver_change)
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True, device_token="t")

        assert cache.get_available_set(DOWNTOWN) == {"d1"}
        assert cache.get_device_token("d1") == "t"

        registry.set_availability("d1", False)
        assert cache.get_available_set(DOWNTOWN) == set()

    def test_undecodable_entry_is_recomputed(self, registry, index, clock):
        backend = Mock(spec=InMemoryCacheBackend)
        backend.get.return_value = b"not json"
        cache = AvailabilityCache(registry, index, backend, clock=clock)
        registry.register("d1", "Ana", NEAR_MARKET_ST, available=True)

        assert cache.get_available_set(DOWNTOWN) == {"d1"}
        backend.set.assert_called_once()
