"""Default mode implementation for feedrefresh.

This module provides the default execution mode that initializes all
components, starts the refresh scheduler, and runs until SIGINT or SIGTERM.
"""

import asyncio
import logging
import signal

from ..config import AppSettings
from ..db import SqlalchemyCore
from ..exceptions import FeedDirectoryError, QueueBackendError
from ..schedule import RefreshScheduler
from .components import init_components

logger = logging.getLogger(__name__)


async def graceful_shutdown(
    scheduler: RefreshScheduler | None,
    db_core: SqlalchemyCore | None,
) -> None:
    """Perform graceful shutdown of all components in correct order.

    Args:
        scheduler: The refresh scheduler instance to shutdown.
        db_core: The database core instance to close.
    """
    logger.info("Shutting down.")

    # Stop scheduling first, then let in-flight refreshes finish
    if scheduler:
        try:
            await scheduler.stop(wait_for_jobs=True)
            logger.info("Scheduler shutdown completed.")
        except Exception as e:
            logger.error("Error shutting down scheduler.", exc_info=e)

    if db_core:
        try:
            await db_core.close()
            logger.info("Database connections closed.")
        except Exception as e:
            logger.error("Error closing database connections.", exc_info=e)

    logger.info("feedrefresh shutdown completed.")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            logger.debug("Signal handlers not supported.", extra={"signal": sig.name})


async def default(settings: AppSettings) -> None:
    """Main async entry point for default mode.

    Initializes all components, starts the scheduler, and blocks until a
    shutdown signal arrives. Only a failure to set up the queue backend is
    fatal; it is re-raised after cleanup.

    Args:
        settings: Application settings object containing configuration.

    Raises:
        QueueBackendError: If the queue backend cannot be initialized.
        FeedDirectoryError: If the configured feeds cannot be synchronized.
    """
    logger.debug(
        "Starting feedrefresh in default mode.",
        extra={"config_file": str(settings.config_file)},
    )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    db_core: SqlalchemyCore | None = None
    scheduler: RefreshScheduler | None = None
    try:
        components = await init_components(settings)
        db_core = components.db_core
        scheduler = RefreshScheduler(
            components.queue,
            components.orchestrator,
            components.worker_pool,
            refresh_interval=settings.refresh_interval,
        )
        await scheduler.start()
        logger.info(
            "feedrefresh running.",
            extra={
                "configured_feeds": len(settings.feeds),
                "queue_backend": settings.queue_backend,
            },
        )
        await stop_event.wait()
        logger.info("Shutdown signal received.")
    except (QueueBackendError, FeedDirectoryError) as e:
        logger.critical("Failed to initialize feedrefresh, exiting.", exc_info=e)
        raise
    except Exception as e:
        logger.error("Unexpected error during execution.", exc_info=e)
    finally:
        await graceful_shutdown(scheduler, db_core)
