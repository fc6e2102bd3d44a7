"""Abstract refresh job queue.

``JobQueue`` owns everything that is the same for every backend: building
job records from enqueue options, outcome bookkeeping, retention, and the
"job may be ready" signal idle workers wait on. Backends only provide the
atomic storage primitives (insert-if-absent, claim, guarded transition).
"""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Callable, Collection, Sequence
from datetime import UTC, datetime, timedelta
import logging

from ..db.types import JobState, RefreshJob
from ..exceptions import JobStateError
from .types import JobOptions, JobOutcome

logger = logging.getLogger(__name__)

_FAILURE_STATES = (JobState.FAILED, JobState.ABANDONED)


def utc_now() -> datetime:
    """Default queue clock."""
    return datetime.now(UTC)


class JobQueue(ABC):
    """Ordered, deduplicated holding area for refresh jobs.

    At most one PENDING or ACTIVE job exists per dedupe key. Jobs become
    ready at their ``scheduled_at`` and are handed out earliest-first, ties
    in enqueue order.

    Attributes:
        _clock: Source of the current (aware, UTC) time.
        _ready: Condition notified whenever a job is enqueued.
        _generation: Incremented on every enqueue so waiters cannot miss a
            notification that happens between their check and their wait.
        _awaiting_decision: Ids of FAILED jobs whose retry or abandonment is
            still to come; retention never deletes them.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._ready = asyncio.Condition()
        self._generation = 0
        self._awaiting_decision: set[int] = set()

    # --- Backend primitives ---

    @abstractmethod
    async def _insert(self, job: RefreshJob) -> RefreshJob | None:
        """Insert ``job`` unless its dedupe key is live; return the stored job or None."""

    @abstractmethod
    async def _claim(self, now: datetime) -> RefreshJob | None:
        """Atomically move the next ready PENDING job to ACTIVE."""

    @abstractmethod
    async def _transition(
        self,
        job: RefreshJob,
        from_state: JobState,
        to_state: JobState,
        **values: object,
    ) -> RefreshJob | None:
        """Move ``job`` between states; None if it was not in ``from_state``."""

    @abstractmethod
    async def _purge(
        self, states: Sequence[JobState], keep: int, exclude_ids: Collection[int]
    ) -> int:
        """Delete all but the ``keep`` newest finished jobs in ``states``.

        Jobs in ``exclude_ids`` are never deleted.
        """

    @abstractmethod
    async def _next_scheduled_at(self) -> datetime | None:
        """Earliest ``scheduled_at`` among PENDING jobs."""

    @abstractmethod
    async def _requeue_active(self, now: datetime) -> int:
        """Return every ACTIVE job to PENDING, ready at ``now``."""

    @abstractmethod
    async def get_latest(self, dedupe_key: str) -> RefreshJob | None:
        """Return the most recently enqueued job for ``dedupe_key``."""

    @abstractmethod
    async def get_jobs(
        self, dedupe_key: str | None = None, state: JobState | None = None
    ) -> list[RefreshJob]:
        """Return jobs matching the filters, in enqueue order."""

    @abstractmethod
    async def counts(self) -> dict[JobState, int]:
        """Return the number of jobs in each state."""

    # --- Producer side ---

    async def enqueue(
        self,
        dedupe_key: str,
        feed_id: str,
        feed_url: str,
        options: JobOptions | None = None,
    ) -> RefreshJob | None:
        """Add a job that is ready immediately.

        A silent no-op if a job with ``dedupe_key`` is already PENDING or ACTIVE.

        Returns:
            The new job, or None if the call was deduplicated.
        """
        return await self.enqueue_delayed(
            dedupe_key, feed_id, feed_url, timedelta(0), options
        )

    async def enqueue_delayed(
        self,
        dedupe_key: str,
        feed_id: str,
        feed_url: str,
        delay: timedelta,
        options: JobOptions | None = None,
        attempt: int = 0,
    ) -> RefreshJob | None:
        """Add a job that becomes ready once ``delay`` has elapsed.

        Same dedupe semantics as :meth:`enqueue`.

        Args:
            dedupe_key: Key that identifies the job's feed.
            feed_id: Feed identifier for the payload.
            feed_url: Feed URL for the payload.
            delay: How long to wait before the job is ready.
            options: Enqueue options; defaults to ``JobOptions()``.
            attempt: Attempts already made (non-zero for retries).

        Returns:
            The new job, or None if the call was deduplicated.

        Raises:
            ValueError: If ``delay`` is negative.
        """
        if delay < timedelta(0):
            raise ValueError(f"delay must be non-negative, got {delay}")
        options = options or JobOptions()
        now = self._clock()
        job = RefreshJob(
            dedupe_key=dedupe_key,
            feed_id=feed_id,
            feed_url=feed_url,
            state=JobState.PENDING,
            attempt=attempt,
            max_attempts=options.attempts,
            backoff_delay_ms=options.backoff_delay_ms,
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
            enqueued_at=now,
            scheduled_at=now + delay,
        )
        log_params = {
            "dedupe_key": dedupe_key,
            "feed_id": feed_id,
            "attempt": attempt,
            "delay_ms": int(delay / timedelta(milliseconds=1)),
        }

        stored = await self._insert(job)
        if stored is None:
            logger.debug("Refresh job already pending or active.", extra=log_params)
            return None

        logger.debug("Refresh job enqueued.", extra={**log_params, "job_id": stored.id})
        async with self._ready:
            self._generation += 1
            self._ready.notify_all()
        return stored

    # --- Consumer side ---

    async def dequeue_next(self) -> RefreshJob | None:
        """Claim the next ready job, marking it ACTIVE.

        Never blocks; use :meth:`wait_for_ready` to suspend while idle.

        Returns:
            The claimed job, or None if no job is ready.
        """
        job = await self._claim(self._clock())
        if job is not None:
            logger.debug(
                "Refresh job claimed.",
                extra={"job_id": job.id, "dedupe_key": job.dedupe_key},
            )
        return job

    async def wait_for_ready(self, timeout: float) -> None:
        """Suspend until a job may be ready to dequeue.

        Returns as soon as a job is enqueued, when the earliest delayed job
        becomes ready, or after ``timeout`` seconds, whichever is first.
        Returns immediately if a job is already ready.
        """
        generation = self._generation
        next_at = await self._next_scheduled_at()
        if next_at is not None:
            until_ready = (next_at - self._clock()).total_seconds()
            if until_ready <= 0:
                return
            timeout = min(timeout, until_ready)

        async with self._ready:
            try:
                await asyncio.wait_for(
                    self._ready.wait_for(lambda: self._generation != generation),
                    timeout,
                )
            except TimeoutError:
                pass

    async def report_outcome(self, job: RefreshJob, outcome: JobOutcome) -> RefreshJob:
        """Move an ACTIVE job to COMPLETED or FAILED.

        Retrying a failed job is the caller's decision; see ``RetryPolicy``.

        Returns:
            The updated job.

        Raises:
            JobStateError: If the job is not ACTIVE.
        """
        now = self._clock()
        if outcome.success:
            updated = await self._transition(
                job,
                JobState.ACTIVE,
                JobState.COMPLETED,
                completed_at=now,
                result_count=outcome.count,
                error=None,
            )
        else:
            updated = await self._transition(
                job,
                JobState.ACTIVE,
                JobState.FAILED,
                completed_at=now,
                error=outcome.error_message,
            )
        if updated is None:
            raise JobStateError(
                "Cannot report outcome for a job that is not active.",
                dedupe_key=job.dedupe_key,
                job_id=job.id,
                state=job.state.value,
            )

        if updated.state == JobState.COMPLETED:
            await self._purge(
                (JobState.COMPLETED,), updated.remove_on_complete, exclude_ids=()
            )
        elif updated.id is not None:
            # Failure retention runs once the job is retried or abandoned
            self._awaiting_decision.add(updated.id)
        return updated

    async def retry(self, job: RefreshJob, delay: timedelta) -> RefreshJob | None:
        """Enqueue the next attempt of a FAILED job.

        The new record carries the failed job's options and ``attempt + 1``,
        and becomes ready after ``delay``.

        Returns:
            The new job, or None if a job for the same key is already PENDING
            or ACTIVE.
        """
        try:
            retry = await self.enqueue_delayed(
                job.dedupe_key,
                job.feed_id,
                job.feed_url,
                delay,
                options=JobOptions.for_job(job),
                attempt=job.attempt + 1,
            )
        finally:
            self._settle_failure(job)
        await self._purge_failures(job.remove_on_fail)
        return retry

    async def abandon(self, job: RefreshJob) -> RefreshJob:
        """Move a FAILED job to the terminal ABANDONED state.

        Raises:
            JobStateError: If the job is not FAILED.
        """
        try:
            updated = await self._transition(job, JobState.FAILED, JobState.ABANDONED)
        finally:
            self._settle_failure(job)
        if updated is None:
            raise JobStateError(
                "Only failed jobs can be abandoned.",
                dedupe_key=job.dedupe_key,
                job_id=job.id,
                state=job.state.value,
            )
        await self._purge_failures(updated.remove_on_fail)
        return updated

    def _settle_failure(self, job: RefreshJob) -> None:
        if job.id is not None:
            self._awaiting_decision.discard(job.id)

    async def _purge_failures(self, keep: int) -> int:
        return await self._purge(
            _FAILURE_STATES, keep, exclude_ids=frozenset(self._awaiting_decision)
        )

    async def recover_interrupted(self) -> int:
        """Requeue jobs left ACTIVE by a worker pool that was stopped mid-job.

        Only safe while no worker pool is consuming the queue.

        Returns:
            Number of requeued jobs.
        """
        requeued = await self._requeue_active(self._clock())
        if requeued:
            logger.info(
                "Requeued interrupted refresh jobs.", extra={"requeued": requeued}
            )
        return requeued

    async def is_idle(self) -> bool:
        """True if no job is PENDING or ACTIVE."""
        counts = await self.counts()
        return counts[JobState.PENDING] == 0 and counts[JobState.ACTIVE] == 0
