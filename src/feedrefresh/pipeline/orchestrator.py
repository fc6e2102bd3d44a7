"""Decide which feeds need refreshing and turn them into queued jobs."""

from datetime import timedelta
import logging
import time

from ..db.types import RefreshJob
from ..exceptions import DatabaseOperationError, FeedDirectoryError, FeedNotFoundError
from ..fetcher import FeedDirectory
from ..queue import JobOptions, JobQueue

logger = logging.getLogger(__name__)


class RefreshOrchestrator:
    """Enqueue one refresh job per feed that is due.

    Attributes:
        _directory: Source of feeds and their freshness.
        _queue: Queue the refresh jobs are enqueued on.
        _options: Options captured on every job this orchestrator enqueues.
        _stale_threshold: Age after which a fetched feed is due again.
    """

    def __init__(
        self,
        directory: FeedDirectory,
        queue: JobQueue,
        options: JobOptions | None = None,
        stale_threshold: timedelta = timedelta(minutes=30),
    ):
        if stale_threshold < timedelta(0):
            raise ValueError(
                f"stale_threshold must be non-negative, got {stale_threshold}"
            )
        self._directory = directory
        self._queue = queue
        self._options = options or JobOptions()
        self._stale_threshold = stale_threshold

    async def schedule_one(self, feed_id: str, feed_url: str) -> bool:
        """Enqueue a refresh of one feed unless one is already pending or running.

        Returns:
            True if a new job was enqueued.

        Raises:
            DatabaseOperationError: If the queue backend fails.
        """
        job = await self._queue.enqueue(
            RefreshJob.dedupe_key_for(feed_id), feed_id, feed_url, self._options
        )
        return job is not None

    async def schedule_due(self) -> int:
        """Enqueue a refresh for every feed that is due.

        Returns:
            Number of jobs enqueued; feeds that already had a live job are
            not counted.

        Raises:
            FeedDirectoryError: If the feeds due for refresh cannot be listed.
            DatabaseOperationError: If the queue backend fails.
        """
        try:
            due = await self._directory.list_feeds_due_for_refresh(
                self._stale_threshold
            )
        except DatabaseOperationError as e:
            raise FeedDirectoryError("Failed to list feeds due for refresh.") from e

        scheduled = 0
        for feed in due:
            if await self.schedule_one(feed.feed_id, feed.feed_url):
                scheduled += 1
        logger.debug(
            "Scheduled due feeds.",
            extra={"due_count": len(due), "scheduled_count": scheduled},
        )
        return scheduled

    async def run_scheduling_pass(self) -> int | None:
        """Run one periodic scheduling pass without ever raising.

        Returns:
            Number of jobs enqueued, or None if the pass failed; a failed pass
            is logged and the next one is unaffected.
        """
        started = time.perf_counter()
        try:
            scheduled = await self.schedule_due()
        except Exception:
            logger.error(
                "Refresh scheduling pass failed, skipping until next tick.",
                exc_info=True,
            )
            return None
        logger.info(
            "Refresh scheduling pass completed.",
            extra={
                "scheduled_count": scheduled,
                "duration_seconds": round(time.perf_counter() - started, 3),
            },
        )
        return scheduled

    async def refresh_feed(self, feed_id: str) -> bool:
        """Enqueue an on-demand refresh of one feed, regardless of its freshness.

        Returns:
            True if a new job was enqueued, False if one was already pending
            or running.

        Raises:
            FeedNotFoundError: If the feed does not exist.
            DatabaseOperationError: If the lookup or the queue backend fails.
        """
        try:
            feed = await self._directory.get_feed_ref(feed_id)
        except FeedNotFoundError:
            logger.warning("Refresh requested for unknown feed.", extra={"feed_id": feed_id})
            raise
        scheduled = await self.schedule_one(feed.feed_id, feed.feed_url)
        logger.info(
            "On-demand refresh requested.",
            extra={"feed_id": feed_id, "scheduled": scheduled},
        )
        return scheduled
