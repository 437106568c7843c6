"""Timer-driven periodic tasks owned by the runtime."""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Calls a bounded unit of work every ``interval_seconds``.

    Runs never overlap: the loop awaits each run before sleeping again, and
    ``run_once`` shares the same lock. A failing run is logged and the
    schedule continues.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        work: Callable[[], Awaitable[Any] | Any],
        run_immediately: bool = False,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be > 0, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self._work = work
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None
        self._run_lock = asyncio.Lock()
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"periodic:{self.name}"
        )
        logger.info(f"Scheduled task '{self.name}' started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Scheduled task '{self.name}' stopped after {self.runs} runs")

    async def run_once(self) -> bool:
        """Run one iteration. Returns False if the run raised."""
        async with self._run_lock:
            try:
                result = self._work()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception(f"Scheduled task '{self.name}' run failed")
                return False
            finally:
                self.runs += 1
            return True

    async def _loop(self) -> None:
        if self._run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
