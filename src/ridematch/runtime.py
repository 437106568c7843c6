"""Owns and wires the matching components for one service instance."""

import asyncio
import logging
from types import TracebackType

from .cache.backends import CacheBackend, InMemoryCacheBackend, RedisCacheBackend
from .core.exceptions import ConfigurationError, StoreUnavailableError
from .core.retry import RetryConfig
from .core.scheduler import PeriodicTask
from .db.database import init_database
from .db.driver_store import DriverStore, InMemoryDriverStore, SqlDriverStore
from .delivery.providers import DeliveryProvider, HttpDeliveryProvider, LoggingDeliveryProvider
from .matching.availability_cache import AvailabilityCache
from .matching.driver_geospatial_index import DriverGeospatialIndex
from .matching.driver_registry import DriverRegistry
from .matching.matching_service import MatchingService
from .matching.notification_dispatch import DeadLetterReporter, NotificationDispatcher
from .settings import Settings

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> DriverStore:
    if settings.store.backend == "sql":
        if not settings.store.url:
            raise ConfigurationError("STORE_URL is required when STORE_BACKEND=sql")
        return SqlDriverStore(init_database(settings.store.url))
    return InMemoryDriverStore()


def create_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache.backend == "redis":
        return RedisCacheBackend.from_config(settings.redis.model_dump())
    return InMemoryCacheBackend()


def create_provider(settings: Settings) -> DeliveryProvider:
    if settings.dispatcher.provider == "http":
        return HttpDeliveryProvider(
            settings.dispatcher.gateway_url, timeout=settings.dispatcher.send_timeout_seconds
        )
    return LoggingDeliveryProvider()


class MatchingRuntime:
    """Constructed at service startup, torn down at shutdown.

    Usage:
        async with MatchingRuntime(get_settings()) as runtime:
            runtime.registry.register("d1", "Ana", (37.77, -122.41), available=True)
            await runtime.matching.offer_ride(request)

    Collaborators can be injected; otherwise they are built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        store: DriverStore | None = None,
        cache_backend: CacheBackend | None = None,
        provider: DeliveryProvider | None = None,
        reporter: DeadLetterReporter | None = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else create_store(settings)
        self.cache_backend = (
            cache_backend if cache_backend is not None else create_cache_backend(settings)
        )
        self.provider = provider if provider is not None else create_provider(settings)

        self.registry = DriverRegistry(
            self.store,
            RetryConfig(
                max_attempts=settings.store.max_retries,
                base_delay=settings.store.retry_base_delay,
                multiplier=settings.store.retry_multiplier,
                retryable_exceptions=(StoreUnavailableError,),
            ),
        )
        self.index = DriverGeospatialIndex(
            h3_resolution=settings.index.h3_resolution,
            availability_check=self.registry.is_available,
        )
        self.cache = AvailabilityCache(
            self.registry,
            self.index,
            self.cache_backend,
            ttl_seconds=settings.cache.ttl_seconds,
            key_prefix=settings.cache.key_prefix,
        )
        # Index before cache: a cache refill after invalidation must see the new index state
        self.registry.subscribe(self.index.apply, required=True)
        self.registry.subscribe(self.cache.on_driver_change)

        dispatch = settings.dispatcher
        self.dispatcher = NotificationDispatcher(
            self.cache,
            self.provider,
            retry_config=RetryConfig(
                max_attempts=dispatch.max_attempts,
                base_delay=dispatch.base_delay,
                multiplier=dispatch.multiplier,
                max_delay=dispatch.max_delay,
            ),
            workers=dispatch.workers,
            send_timeout_seconds=dispatch.send_timeout_seconds,
            reporter=reporter,
        )
        self.matching = MatchingService(self.index, self.cache, self.dispatcher)

        self.tasks: list[PeriodicTask] = []
        if settings.scheduler.refresh_enabled:
            self.tasks.append(
                PeriodicTask(
                    "registry-refresh",
                    settings.scheduler.refresh_interval_seconds,
                    lambda: asyncio.to_thread(self.registry.refresh),
                )
            )
        if isinstance(self.cache_backend, InMemoryCacheBackend):
            self.tasks.append(
                PeriodicTask(
                    "cache-purge",
                    float(settings.cache.ttl_seconds),
                    self.cache_backend.purge_expired,
                )
            )
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        loaded = await asyncio.to_thread(self.registry.refresh)
        logger.info(f"Loaded {loaded} drivers from the store, {len(self.index)} available")
        await self.dispatcher.start()
        for task in self.tasks:
            task.start()
        self._started = True

    async def stop(self, drain: bool = True) -> None:
        if not self._started:
            return
        self._started = False
        for task in self.tasks:
            await task.stop()
        await self.dispatcher.stop(
            drain=drain, timeout=self.settings.dispatcher.send_timeout_seconds
        )
        if isinstance(self.provider, HttpDeliveryProvider):
            await self.provider.aclose()
        if isinstance(self.cache_backend, RedisCacheBackend):
            self.cache_backend.close()
        logger.info("Matching runtime stopped")

    async def __aenter__(self) -> "MatchingRuntime":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
