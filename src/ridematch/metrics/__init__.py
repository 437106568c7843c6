"""Prometheus metrics module."""

from .prometheus_exporter import (
    REGISTRY,
    generate_metrics,
    record_cache_lookup,
    record_error,
    record_notification,
)

__all__ = [
    "REGISTRY",
    "generate_metrics",
    "record_cache_lookup",
    "record_error",
    "record_notification",
]
