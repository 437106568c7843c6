import logging
import threading
from collections.abc import Callable
from typing import Any

from ..core.exceptions import NotFoundError, StoreUnavailableError, ValidationError
from ..core.retry import RetryConfig, with_retry_sync
from ..db.driver_store import DriverStore
from ..geo import Position
from ..models import ChangeKind, Driver, DriverChange

logger = logging.getLogger(__name__)

ChangeListener = Callable[[DriverChange], None]

_LOCK_STRIPES = 64


class DriverRegistry:
    """Current location and availability of every driver, backed by a DriverStore.

    Thread-safe: mutations on one driver id are serialised by a striped lock,
    mutations on ids in different stripes run concurrently. Every acknowledged
    mutation is saved to the store and then published to the listeners
    (spatial index, availability cache) before the call returns, so a query
    started afterwards observes it. Records loaded from the store on a memory
    miss are published as REFRESHED changes.
    """

    def __init__(self, store: DriverStore, retry_config: RetryConfig | None = None) -> None:
        self._store = store
        self._retry = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=0.2,
            retryable_exceptions=(StoreUnavailableError,),
        )
        self._lock = threading.Lock()
        self._driver_locks = [threading.RLock() for _ in range(_LOCK_STRIPES)]
        self._drivers: dict[str, Driver] = {}
        self._listeners: list[tuple[ChangeListener, bool]] = []

    def subscribe(self, listener: ChangeListener, required: bool = False) -> None:
        """Add a change listener and replay the drivers already held in memory to it.

        Exceptions from a required listener propagate to the mutating caller
        (after the store write); others are logged.
        """
        with self._lock:
            self._listeners.append((listener, required))
            known_ids = list(self._drivers)

        for driver_id in known_ids:
            with self._driver_lock(driver_id):
                with self._lock:
                    record = self._drivers.get(driver_id)
                if record is not None:
                    self._publish(
                        DriverChange(ChangeKind.REFRESHED, driver_id, None, record),
                        [(listener, required)],
                    )

    def register(
        self,
        driver_id: str,
        name: str,
        position: Position | tuple[float, float] | None = None,
        available: bool = False,
        device_token: str | None = None,
    ) -> Driver:
        """Onboard a new driver. Raises ValidationError if the id is taken."""
        if not driver_id:
            raise ValidationError("driver_id must be a non-empty string")
        driver = Driver(
            driver_id=driver_id,
            name=name,
            position=Position.from_tuple(position) if position is not None else None,
            available=available,
            device_token=device_token,
            version=1,
        )
        with self._driver_lock(driver_id):
            if driver_id in self._drivers or self._store_call(
                "load_driver", self._store.load_driver, driver_id
            ):
                raise ValidationError(
                    f"Driver {driver_id} is already registered", {"driver_id": driver_id}
                )
            self._store_call("save_driver", self._store.save_driver, driver)
            with self._lock:
                self._drivers[driver_id] = driver
            logger.info(f"Registered driver {driver_id} (available={available})")
            self._publish(DriverChange(ChangeKind.REGISTERED, driver_id, None, driver))
        return driver

    def upsert_location(self, driver_id: str, position: Position | tuple[float, float]) -> Driver:
        return self._mutate(driver_id, ChangeKind.LOCATION, position=Position.from_tuple(position))

    def set_availability(self, driver_id: str, available: bool) -> Driver:
        return self._mutate(driver_id, ChangeKind.AVAILABILITY, available=bool(available))

    def set_device_token(self, driver_id: str, device_token: str | None) -> Driver:
        return self._mutate(driver_id, ChangeKind.DEVICE_TOKEN, device_token=device_token)

    def get(self, driver_id: str) -> Driver:
        """Current snapshot of the driver. Raises NotFoundError for unknown ids."""
        with self._lock:
            record = self._drivers.get(driver_id)
        if record is not None:
            return record
        with self._driver_lock(driver_id):
            return self._load(driver_id)

    def peek(self, driver_id: str) -> Driver | None:
        """In-memory snapshot only; never touches the store."""
        with self._lock:
            return self._drivers.get(driver_id)

    def is_available(self, driver_id: str) -> bool:
        """In-memory availability check for the query path; unknown ids are unavailable."""
        with self._lock:
            record = self._drivers.get(driver_id)
        return record is not None and record.available

    def deregister(self, driver_id: str) -> None:
        with self._driver_lock(driver_id):
            before = self._load(driver_id)
            self._store_call("delete_driver", self._store.delete_driver, driver_id)
            with self._lock:
                self._drivers.pop(driver_id, None)
            logger.info(f"Deregistered driver {driver_id}")
            self._publish(DriverChange(ChangeKind.DEREGISTERED, driver_id, before, None))

    def refresh(self) -> int:
        """Reload drivers from the store and publish records whose version moved.

        Picks up writes made by other registry instances sharing the store.
        Returns the number of drivers that changed.
        """
        stored_ids = set(self._store_call("list_driver_ids", self._store.list_driver_ids))
        with self._lock:
            known_ids = set(self._drivers)

        changed = 0
        for driver_id in sorted(stored_ids | known_ids):
            with self._driver_lock(driver_id):
                fresh = self._store_call("load_driver", self._store.load_driver, driver_id)
                with self._lock:
                    current = self._drivers.get(driver_id)
                    if fresh is None:
                        self._drivers.pop(driver_id, None)
                    elif current is None or fresh.version != current.version:
                        self._drivers[driver_id] = fresh

                if fresh is None and current is not None:
                    self._publish(
                        DriverChange(ChangeKind.DEREGISTERED, driver_id, current, None)
                    )
                    changed += 1
                elif fresh is not None and (current is None or fresh.version != current.version):
                    self._publish(DriverChange(ChangeKind.REFRESHED, driver_id, current, fresh))
                    changed += 1

        if changed:
            logger.info(f"Registry refresh applied {changed} driver changes")
        return changed

    def status_counts(self) -> dict[str, int]:
        with self._lock:
            available = sum(1 for record in self._drivers.values() if record.available)
            return {"available": available, "unavailable": len(self._drivers) - available}

    def __len__(self) -> int:
        with self._lock:
            return len(self._drivers)

    def _mutate(self, driver_id: str, kind: ChangeKind, **changes: Any) -> Driver:
        with self._driver_lock(driver_id):
            before = self._load(driver_id)
            if all(getattr(before, field) == value for field, value in changes.items()):
                return before

            after = before.evolve(**changes)
            self._store_call("save_driver", self._store.save_driver, after)
            with self._lock:
                self._drivers[driver_id] = after
            self._publish(DriverChange(kind, driver_id, before, after))
            return after

    def _load(self, driver_id: str) -> Driver:
        """Memory first, then store. Caller holds the driver lock."""
        with self._lock:
            record = self._drivers.get(driver_id)
        if record is not None:
            return record

        record = self._store_call("load_driver", self._store.load_driver, driver_id)
        if record is None:
            raise NotFoundError(f"Driver {driver_id} not found", {"driver_id": driver_id})
        with self._lock:
            self._drivers[driver_id] = record
        self._publish(DriverChange(ChangeKind.REFRESHED, driver_id, None, record))
        return record

    def _store_call(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        return with_retry_sync(lambda: fn(*args), self._retry, operation_name=f"store.{name}")

    def _driver_lock(self, driver_id: str) -> threading.RLock:
        return self._driver_locks[hash(driver_id) % _LOCK_STRIPES]

    def _publish(
        self,
        change: DriverChange,
        listeners: list[tuple[ChangeListener, bool]] | None = None,
    ) -> None:
        if listeners is None:
            with self._lock:
                listeners = list(self._listeners)
        failure: Exception | None = None
        for listener, required in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.exception(
                    f"Change listener {listener!r} failed for {change.kind.value} "
                    f"on driver {change.driver_id}"
                )
                if required and failure is None:
                    failure = e
        if failure is not None:
            raise failure
