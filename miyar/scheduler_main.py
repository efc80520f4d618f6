"""
Scheduler Entry Point — runs in a separate process.

Usage:
    python -m miyar.scheduler_main

This does NOT run a web server. It runs the APScheduler background loop
for the weekly learning run, alert evaluation and alert expiry.
"""

import asyncio
import signal

import structlog

from miyar.config import settings
from miyar.db.engine import close_db, get_session_factory, init_db
from miyar.log_config import configure_logging
from miyar.services.scheduler import LearningScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version, environment=settings.environment)

    await init_db()
    scheduler = LearningScheduler(session_factory=get_session_factory(), config=settings)

    if settings.run_on_startup:
        logger.info("running_initial_learning_run")
        await scheduler.run_learning()

    scheduler.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
