"""Command-line interface entry points for feedrefresh.

This module provides the main CLI function that handles settings loading,
logging setup, and routing to the default service mode or a debug mode.
"""

import logging

from ..config import AppSettings, DebugMode
from ..logging_config import setup_logging
from .debug_once import run_debug_once_mode
from .default import default


async def main_cli():
    """Initialize and run feedrefresh based on configuration.

    Sets up logging, loads application settings, and routes execution to
    the default service mode or the 'once' debug mode based on DEBUG_MODE.
    """
    settings = AppSettings()  # type: ignore

    setup_logging(
        log_format_type=settings.log_format,
        app_log_level_name=settings.log_level,
        include_stacktrace=settings.log_include_stacktrace,
    )

    logger = logging.getLogger(__name__)
    logger.debug(
        "Application settings loaded.",
        extra={
            "config_file": str(settings.config_file),
            "active_debug_mode": settings.debug_mode,
            "configured_feeds": len(settings.feeds),
        },
    )

    match settings.debug_mode:
        case DebugMode.ONCE:
            logger.info(
                "Initializing feedrefresh in 'once' debug mode.",
                extra={"feeds_config_file_path": str(settings.config_file)},
            )
            await run_debug_once_mode(settings)
        case None:
            logger.debug("Initializing feedrefresh in default mode.")
            await default(settings)

    logger.debug("main_cli execution finished.")
