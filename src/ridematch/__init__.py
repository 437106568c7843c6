"""Availability-aware driver matching and notification dispatch."""

from .geo import Position
from .models import ChangeKind, Driver, DriverChange, Region

__version__ = "0.1.0"

__all__ = ["ChangeKind", "Driver", "DriverChange", "Position", "Region", "__version__"]
