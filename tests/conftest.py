import pytest

from ridematch.cache.backends import InMemoryCacheBackend
from ridematch.core.exceptions import StoreUnavailableError
from ridematch.core.retry import RetryConfig
from ridematch.db.driver_store import InMemoryDriverStore
from ridematch.matching.availability_cache import AvailabilityCache
from ridematch.matching.driver_geospatial_index import DriverGeospatialIndex
from ridematch.matching.driver_registry import DriverRegistry
from tests.helpers import FakeClock


@pytest.fixture
def fast_store_retry() -> RetryConfig:
    return RetryConfig(
        max_attempts=3, base_delay=0.0, retryable_exceptions=(StoreUnavailableError,)
    )


@pytest.fixture
def store() -> InMemoryDriverStore:
    return InMemoryDriverStore()


@pytest.fixture
def registry(store, fast_store_retry) -> DriverRegistry:
    return DriverRegistry(store, fast_store_retry)


@pytest.fixture
def index(registry) -> DriverGeospatialIndex:
    index = DriverGeospatialIndex(h3_resolution=9, availability_check=registry.is_available)
    registry.subscribe(index.apply, required=True)
    return index


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock) -> InMemoryCacheBackend:
    return InMemoryCacheBackend(clock=clock)


@pytest.fixture
def cache(registry, index, backend, clock) -> AvailabilityCache:
    cache = AvailabilityCache(registry, index, backend, ttl_seconds=300, clock=clock)
    registry.subscribe(cache.on_driver_change)
    return cache
