"""Debug mode that runs a single refresh cycle.

Runs one scheduling pass, lets the workers drain the queue (retries
included), logs the outcome of every refresh job, and exits.
"""

import logging

from ..config import AppSettings
from ..db.types import JobState, RefreshJob
from ..exceptions import FeedDirectoryError, QueueBackendError
from ..queue import JobOutcome
from .components import init_components

logger = logging.getLogger(__name__)


def _log_outcome(job: RefreshJob, outcome: JobOutcome) -> None:
    logger.info(
        "Refresh attempt settled.",
        extra={
            "feed_id": job.feed_id,
            "attempt": job.attempt,
            "state": job.state.value,
            "count": outcome.count,
            "error": outcome.error_message,
        },
    )


async def run_debug_once_mode(settings: AppSettings) -> None:
    """Run one scheduling pass and process the resulting jobs to completion.

    Args:
        settings: Application settings containing feed configurations.

    Raises:
        QueueBackendError: If the queue backend cannot be initialized.
        FeedDirectoryError: If the configured feeds cannot be synchronized.
    """
    try:
        components = await init_components(settings)
    except (QueueBackendError, FeedDirectoryError) as e:
        logger.critical("Failed to initialize components for 'once' mode.", exc_info=e)
        raise

    pool = components.worker_pool
    pool.add_outcome_listener(_log_outcome)
    try:
        scheduled = await components.orchestrator.run_scheduling_pass()
        logger.info(
            "Scheduling pass finished, processing jobs.",
            extra={"scheduled_count": scheduled},
        )
        pool.start()
        await pool.run_until_idle()
    finally:
        await pool.stop(wait_for_jobs=True)
        counts = await components.queue.counts()
        logger.info(
            "'once' mode finished.",
            extra={
                "completed": counts[JobState.COMPLETED],
                "abandoned": counts[JobState.ABANDONED],
                "failed_attempts": counts[JobState.FAILED],
            },
        )
        await components.db_core.close()
