"""Driver persistence module."""

from .database import init_database
from .driver_store import DriverStore, InMemoryDriverStore, SqlDriverStore
from .schema import DriverRow, StoreMetadata
from .transaction import transaction

__all__ = [
    "DriverRow",
    "DriverStore",
    "InMemoryDriverStore",
    "SqlDriverStore",
    "StoreMetadata",
    "init_database",
    "transaction",
]
