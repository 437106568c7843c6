"""Service entry point: runs the matching runtime until SIGINT/SIGTERM."""

import asyncio
import logging
import signal

from .match_logging import setup_logging
from .runtime import MatchingRuntime
from .settings import get_settings

logger = logging.getLogger(__name__)


async def run() -> None:
    settings = get_settings()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)

    async with MatchingRuntime(settings) as runtime:
        logger.info(
            f"ridematch running: store={settings.store.backend}, cache={settings.cache.backend}, "
            f"provider={settings.dispatcher.provider}, workers={settings.dispatcher.workers}"
        )
        await stop_event.wait()
        logger.info(f"Shutting down with {runtime.dispatcher.pending} notifications pending")


def main() -> None:
    settings = get_settings()
    setup_logging(
        level=settings.logging.level,
        json_output=settings.logging.format == "json",
        environment=settings.logging.environment,
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
