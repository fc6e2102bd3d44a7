"""Construction of the refresh pipeline from application settings."""

from dataclasses import dataclass
import logging

from ..config import AppSettings
from ..db import FeedDatabase, SqlalchemyCore
from ..exceptions import QueueBackendError
from ..feed_sync import sync_configured_feeds
from ..fetcher import HttpFeedFetcher
from ..pipeline import RefreshOrchestrator, SlidingWindowRateLimiter, WorkerPool
from ..queue import InMemoryJobQueue, JobOptions, JobQueue, SqlJobQueue

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """The wired-up pipeline.

    Attributes:
        db_core: Database core; close it on shutdown.
        feed_db: Feed store and feed directory.
        queue: Refresh job queue.
        orchestrator: Enqueues refreshes of due feeds.
        worker_pool: Executes refresh jobs.
    """

    db_core: SqlalchemyCore
    feed_db: FeedDatabase
    queue: JobQueue
    orchestrator: RefreshOrchestrator
    worker_pool: WorkerPool


def job_options_from(settings: AppSettings) -> JobOptions:
    """Build the enqueue options configured in ``settings``."""
    return JobOptions(
        attempts=settings.max_attempts,
        backoff_delay=settings.backoff_delay,
        remove_on_complete=settings.remove_on_complete,
        remove_on_fail=settings.remove_on_fail,
    )


async def init_components(settings: AppSettings) -> Components:
    """Initialize the database, seed the configured feeds, and wire the pipeline.

    Args:
        settings: Application settings.

    Returns:
        The wired-up pipeline; nothing is started yet.

    Raises:
        QueueBackendError: If the data directory or database cannot be set up.
        FeedDirectoryError: If the existing feeds cannot be read.
    """
    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise QueueBackendError(
            "Failed to create data directory.", backend=settings.queue_backend
        ) from e

    logger.debug(
        "Initializing database components.",
        extra={"data_dir": str(settings.data_dir)},
    )
    db_core = SqlalchemyCore(settings.data_dir)
    feed_db = FeedDatabase(db_core)
    queue: JobQueue
    try:
        await db_core.create_tables()
        match settings.queue_backend:
            case "sqlite":
                sql_queue = SqlJobQueue(db_core)
                await sql_queue.initialize()
                queue = sql_queue
            case "memory":
                queue = InMemoryJobQueue()
        await sync_configured_feeds(feed_db, settings.feeds)
    except Exception:
        await db_core.close()
        raise

    fetcher = HttpFeedFetcher(feed_db, timeout=settings.fetch_timeout)
    rate_limiter = SlidingWindowRateLimiter(
        max_starts=settings.rate_limit_max, window=settings.rate_limit_window
    )
    worker_pool = WorkerPool(
        queue,
        fetcher,
        rate_limiter,
        concurrency=settings.worker_concurrency,
        poll_interval=settings.poll_interval,
        job_timeout=settings.job_timeout,
    )
    orchestrator = RefreshOrchestrator(
        feed_db,
        queue,
        options=job_options_from(settings),
        stale_threshold=settings.stale_threshold,
    )
    logger.debug(
        "Refresh pipeline initialized.",
        extra={
            "queue_backend": settings.queue_backend,
            "worker_concurrency": settings.worker_concurrency,
            "rate_limit_max": settings.rate_limit_max,
            "rate_limit_window_seconds": settings.rate_limit_window.total_seconds(),
        },
    )
    return Components(
        db_core=db_core,
        feed_db=feed_db,
        queue=queue,
        orchestrator=orchestrator,
        worker_pool=worker_pool,
    )
