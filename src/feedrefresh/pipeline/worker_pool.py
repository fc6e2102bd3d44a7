"""Bounded pool of workers that execute refresh jobs.

Each worker slot loops: wait until a job may be ready, claim it, take a start
from the shared rate limiter, fetch the feed, report the outcome, and on
failure either enqueue a delayed retry or abandon the job.
"""

import asyncio
from collections.abc import Callable
from datetime import timedelta
import logging
import time
from typing import TypeAlias

from ..db.types import RefreshJob
from ..exceptions import FeedRefreshError
from ..fetcher import FeedFetcher
from ..logging_config import log_context
from ..queue import JobOutcome, JobQueue
from .rate_limiter import SlidingWindowRateLimiter
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

OutcomeListener: TypeAlias = Callable[[RefreshJob, JobOutcome], None]


class WorkerPool:
    """Run refresh jobs from a queue with bounded concurrency.

    Attributes:
        _queue: Queue jobs are claimed from.
        _fetcher: Collaborator that performs the fetch.
        _rate_limiter: Limits how often any slot may start a job.
        _concurrency: Number of worker slots.
        _poll_seconds: Upper bound on how long an idle slot sleeps between
            checks of the queue.
        _job_timeout_seconds: Per-attempt fetch timeout, or None for none.
        _tasks: Running slot tasks.
        _waiting: Slot tasks currently idle in ``wait_for_ready``.
        _in_flight: Number of jobs claimed whose bookkeeping is unfinished.
        _stopping: Set once ``stop`` has been requested.
    """

    def __init__(
        self,
        queue: JobQueue,
        fetcher: FeedFetcher,
        rate_limiter: SlidingWindowRateLimiter,
        concurrency: int = 5,
        poll_interval: timedelta = timedelta(seconds=1),
        job_timeout: timedelta | None = None,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        if poll_interval <= timedelta(0):
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if job_timeout is not None and job_timeout <= timedelta(0):
            raise ValueError(f"job_timeout must be positive, got {job_timeout}")

        self._queue = queue
        self._fetcher = fetcher
        self._rate_limiter = rate_limiter
        self._concurrency = concurrency
        self._poll_seconds = poll_interval.total_seconds()
        self._job_timeout_seconds = (
            job_timeout.total_seconds() if job_timeout is not None else None
        )
        self._listeners: list[OutcomeListener] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._waiting: set[asyncio.Task[None]] = set()
        self._in_flight = 0
        self._stopping = False
        logger.debug(
            "WorkerPool initialized.",
            extra={
                "concurrency": concurrency,
                "poll_interval_seconds": self._poll_seconds,
                "job_timeout_seconds": self._job_timeout_seconds,
            },
        )

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def add_outcome_listener(self, listener: OutcomeListener) -> None:
        """Register a callback invoked after every attempt is settled.

        The callback receives the job as stored after settlement (COMPLETED,
        FAILED, or ABANDONED) and the outcome of the attempt.
        """
        self._listeners.append(listener)

    # --- Lifecycle ---

    def start(self) -> None:
        """Spawn the worker slots.

        Raises:
            RuntimeError: If the pool is already running.
        """
        if self._tasks:
            raise RuntimeError("WorkerPool is already running")
        self._stopping = False
        self._tasks = [
            asyncio.create_task(self._run_slot(slot), name=f"refresh-worker-{slot}")
            for slot in range(self._concurrency)
        ]
        logger.info("Worker pool started.", extra={"concurrency": self._concurrency})

    async def stop(self, wait_for_jobs: bool = False) -> None:
        """Stop every worker slot.

        Args:
            wait_for_jobs: If True, slots that are executing a job finish it
                (including its bookkeeping) before exiting; idle slots are
                cancelled either way.
        """
        if not self._tasks:
            logger.debug("Worker pool is not running, nothing to stop.")
            return

        logger.info("Stopping worker pool.", extra={"wait_for_jobs": wait_for_jobs})
        self._stopping = True
        tasks = self._tasks
        for task in tasks:
            if not wait_for_jobs or task in self._waiting:
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []
        self._waiting.clear()
        logger.info("Worker pool stopped.")

    async def run_until_idle(self, poll_interval: timedelta | None = None) -> None:
        """Wait until no job is PENDING or ACTIVE and no slot is mid-bookkeeping.

        Delayed retries count as PENDING, so this also waits them out.

        Args:
            poll_interval: How often to check; defaults to the pool's.
        """
        interval = (
            poll_interval.total_seconds()
            if poll_interval is not None
            else self._poll_seconds
        )
        while self._in_flight or not await self._queue.is_idle():
            await asyncio.sleep(interval)

    # --- Slot loop ---

    async def _run_slot(self, slot: int) -> None:
        current = asyncio.current_task()
        while not self._stopping:
            try:
                if current is not None:
                    self._waiting.add(current)
                try:
                    await self._queue.wait_for_ready(self._poll_seconds)
                finally:
                    if current is not None:
                        self._waiting.discard(current)
                if self._stopping:
                    break

                job = await self._queue.dequeue_next()
                if job is None:
                    continue

                self._in_flight += 1
                try:
                    # The start is recorded right before the fetch begins
                    await self._rate_limiter.acquire()
                    await self._process(job)
                finally:
                    self._in_flight -= 1
            except Exception:
                logger.error(
                    "Worker slot failed, continuing after poll interval.",
                    exc_info=True,
                    extra={"slot": slot},
                )
                await asyncio.sleep(self._poll_seconds)
        logger.debug("Worker slot exited.", extra={"slot": slot})

    async def _execute(self, job: RefreshJob) -> JobOutcome:
        """Run exactly one fetch for ``job`` and capture its outcome."""
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self._job_timeout_seconds):
                count = await self._fetcher.fetch_articles(job.feed_id, job.feed_url)
        except Exception as e:
            return JobOutcome.failed(e, time.perf_counter() - started)
        return JobOutcome.completed(count, time.perf_counter() - started)

    async def _process(self, job: RefreshJob) -> None:
        with log_context(job.context_id):
            log_params = {
                "job_id": job.id,
                "feed_id": job.feed_id,
                "attempt": job.attempt,
            }
            logger.debug("Refreshing feed.", extra=log_params)
            outcome = await self._execute(job)

            try:
                settled = await self._queue.report_outcome(job, outcome)
                if outcome.success:
                    logger.info(
                        "Feed refreshed.",
                        extra={
                            **log_params,
                            "count": outcome.count,
                            "duration_seconds": round(outcome.duration_seconds, 3),
                        },
                    )
                else:
                    settled = await self._handle_failure(settled, outcome)
            except FeedRefreshError:
                logger.error(
                    "Failed to record refresh outcome.",
                    exc_info=True,
                    extra=log_params,
                )
                return

            self._notify(settled, outcome)

    async def _handle_failure(self, job: RefreshJob, outcome: JobOutcome) -> RefreshJob:
        """Enqueue the next attempt of a failed job, or abandon it.

        Returns:
            The failed job as stored after the decision.
        """
        log_params = {
            "job_id": job.id,
            "feed_id": job.feed_id,
            "attempt": job.attempt,
            "max_attempts": job.max_attempts,
        }
        decision = RetryPolicy.for_job(job).decide(job.attempt + 1)
        if not decision.retry or decision.delay is None:
            abandoned = await self._queue.abandon(job)
            logger.error(
                "Feed refresh abandoned after final attempt.",
                exc_info=outcome.error,
                extra=log_params,
            )
            return abandoned

        logger.warning(
            "Feed refresh attempt failed, retrying.",
            exc_info=outcome.error,
            extra={
                **log_params,
                "retry_delay_ms": int(decision.delay / timedelta(milliseconds=1)),
            },
        )
        retry = await self._queue.retry(job, decision.delay)
        if retry is None:
            logger.info(
                "Retry not enqueued, a newer refresh of the feed is already queued.",
                extra=log_params,
            )
        return job

    def _notify(self, job: RefreshJob, outcome: JobOutcome) -> None:
        for listener in self._listeners:
            try:
                listener(job, outcome)
            except Exception:
                logger.error(
                    "Outcome listener failed.",
                    exc_info=True,
                    extra={"job_id": job.id, "state": job.state.value},
                )
