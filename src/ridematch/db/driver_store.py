"""Durable driver stores wrapped by the driver registry."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..core.exceptions import StoreUnavailableError
from ..geo import Position
from ..models import Driver
from .schema import DriverRow
from .transaction import transaction

logger = logging.getLogger(__name__)


class DriverStore(Protocol):
    """Source of truth for driver records.

    Implementations raise StoreUnavailableError when the backing store cannot
    be reached; the registry retries those with backoff.
    """

    def load_driver(self, driver_id: str) -> Driver | None: ...

    def save_driver(self, driver: Driver) -> None: ...

    def delete_driver(self, driver_id: str) -> None: ...

    def list_driver_ids(self) -> list[str]: ...


class InMemoryDriverStore:
    """Process-local store for tests and single-node development."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._drivers: dict[str, Driver] = {}

    def load_driver(self, driver_id: str) -> Driver | None:
        with self._lock:
            return self._drivers.get(driver_id)

    def save_driver(self, driver: Driver) -> None:
        with self._lock:
            self._drivers[driver.driver_id] = driver

    def delete_driver(self, driver_id: str) -> None:
        with self._lock:
            self._drivers.pop(driver_id, None)

    def list_driver_ids(self) -> list[str]:
        with self._lock:
            return list(self._drivers)


@contextmanager
def _store_errors(operation: str, driver_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Driver store {operation} failed for {driver_id or '*'}: {e}")
        raise StoreUnavailableError(
            f"Driver store {operation} failed: {e}",
            {"operation": operation, "driver_id": driver_id},
        ) from e


class SqlDriverStore:
    """SQLAlchemy-backed store; any SQLAlchemyError surfaces as StoreUnavailableError."""

    def __init__(self, session_maker: sessionmaker[Any]) -> None:
        self._session_maker = session_maker

    def load_driver(self, driver_id: str) -> Driver | None:
        with _store_errors("load", driver_id), self._session_maker() as session:
            row = session.get(DriverRow, driver_id)
            return _row_to_driver(row) if row is not None else None

    def save_driver(self, driver: Driver) -> None:
        lat, lon = driver.position.as_tuple() if driver.position else (None, None)
        with _store_errors("save", driver.driver_id), self._session_maker() as session:
            with transaction(session):
                row = session.get(DriverRow, driver.driver_id)
                if row is None:
                    row = DriverRow(id=driver.driver_id)
                    session.add(row)
                row.name = driver.name
                row.lat = lat
                row.lon = lon
                row.available = driver.available
                row.device_token = driver.device_token
                row.version = driver.version

    def delete_driver(self, driver_id: str) -> None:
        with _store_errors("delete", driver_id), self._session_maker() as session:
            with transaction(session):
                session.execute(delete(DriverRow).where(DriverRow.id == driver_id))

    def list_driver_ids(self) -> list[str]:
        with _store_errors("list"), self._session_maker() as session:
            return list(session.scalars(select(DriverRow.id)).all())


def _row_to_driver(row: DriverRow) -> Driver:
    position = None
    if row.lat is not None and row.lon is not None:
        position = Position(row.lat, row.lon)
    return Driver(
        driver_id=row.id,
        name=row.name,
        position=position,
        available=row.available,
        device_token=row.device_token,
        version=row.version,
    )
