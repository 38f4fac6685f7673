"""Standalone queue consumer: `python -m concierge.worker`."""

import asyncio
import signal

from concierge.config import settings
from concierge.database import SessionLocal
from concierge.logging_config import get_logger, setup_logging
from concierge.services.redis_client import get_redis
from concierge.services.worker_loop import build_worker_loop

logger = get_logger("worker")


async def main() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops.
            pass

    redis_client = get_redis()
    worker_loop = build_worker_loop(redis_client, session_factory=SessionLocal)
    try:
        await worker_loop.run_forever(stop_event)
    finally:
        await redis_client.aclose()
        logger.info("Worker shut down")


if __name__ == "__main__":
    setup_logging(settings.log_level)
    asyncio.run(main())
