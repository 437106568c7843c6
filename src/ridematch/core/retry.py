"""Retry utilities with bounded exponential backoff."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .exceptions import TransientError

T = TypeVar("T")
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (TransientError,)
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry that follows the given zero-based attempt."""
        return min(self.base_delay * (self.multiplier**attempt), self.max_delay)


def with_retry_sync(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """Run operation with exponential backoff retry; used at the store boundary."""
    if config is None:
        config = RetryConfig()

    last_exception: Exception | None = None

    for attempt in range(config.max_attempts):
        try:
            return operation()
        except config.retryable_exceptions as e:
            last_exception = e
            if attempt == config.max_attempts - 1:
                logger.error(f"{operation_name} failed after {config.max_attempts} attempts: {e}")
                raise

            delay = config.delay_for(attempt)
            logger.warning(
                f"{operation_name} failed (attempt {attempt + 1}/{config.max_attempts}), "
                f"retrying in {delay:.2f}s"
            )
            time.sleep(delay)

    raise last_exception  # type: ignore
