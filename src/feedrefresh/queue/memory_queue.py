"""Process-local job queue for tests and single-process runs."""

import asyncio
from collections.abc import Callable, Collection, Sequence
from datetime import datetime
import itertools
import logging

from ..db.types import JobState, RefreshJob
from .base import JobQueue, utc_now

logger = logging.getLogger(__name__)


class InMemoryJobQueue(JobQueue):
    """Job queue that keeps every record in a dict.

    A single ``asyncio.Lock`` serializes all mutations, which makes the
    dedupe check-and-insert and the claim atomic with respect to other
    coroutines in the same event loop. Nothing survives a restart.

    Attributes:
        _jobs: All retained jobs keyed by id.
        _live: Dedupe key to id of its PENDING/ACTIVE job.
        _ids: Sequence generator for job ids.
        _lock: Guards ``_jobs`` and ``_live``.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        super().__init__(clock)
        self._jobs: dict[int, RefreshJob] = {}
        self._live: dict[str, int] = {}
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def _insert(self, job: RefreshJob) -> RefreshJob | None:
        async with self._lock:
            if job.dedupe_key in self._live:
                return None
            job.id = next(self._ids)
            self._jobs[job.id] = job
            self._live[job.dedupe_key] = job.id
            return job

    async def _claim(self, now: datetime) -> RefreshJob | None:
        async with self._lock:
            ready = [job for job in self._jobs.values() if job.is_ready(now)]
            if not ready:
                return None
            job = min(ready, key=lambda j: (j.scheduled_at, j.id or 0))
            job.state = JobState.ACTIVE
            job.started_at = now
            return job

    async def _transition(
        self,
        job: RefreshJob,
        from_state: JobState,
        to_state: JobState,
        **values: object,
    ) -> RefreshJob | None:
        async with self._lock:
            stored = self._jobs.get(job.id) if job.id is not None else None
            if stored is None or stored.state != from_state:
                return None
            stored.state = to_state
            for name, value in values.items():
                setattr(stored, name, value)
            if not to_state.is_live and self._live.get(stored.dedupe_key) == stored.id:
                del self._live[stored.dedupe_key]
            return stored

    async def _purge(
        self, states: Sequence[JobState], keep: int, exclude_ids: Collection[int]
    ) -> int:
        async with self._lock:
            finished = sorted(
                (job for job in self._jobs.values() if job.state in states),
                key=lambda j: (j.completed_at or j.enqueued_at, j.id or 0),
                reverse=True,
            )
            doomed = [job.id for job in finished[keep:] if job.id not in exclude_ids]
            for job_id in doomed:
                if job_id is not None:
                    del self._jobs[job_id]
        if doomed:
            logger.debug(
                "Purged finished refresh jobs.",
                extra={"states": [s.value for s in states], "deleted": len(doomed)},
            )
        return len(doomed)

    async def _requeue_active(self, now: datetime) -> int:
        async with self._lock:
            active = [j for j in self._jobs.values() if j.state == JobState.ACTIVE]
            for job in active:
                job.state = JobState.PENDING
                job.started_at = None
                job.scheduled_at = now
        return len(active)

    async def _next_scheduled_at(self) -> datetime | None:
        async with self._lock:
            pending = [
                job.scheduled_at
                for job in self._jobs.values()
                if job.state == JobState.PENDING
            ]
        return min(pending, default=None)

    async def get_jobs(
        self, dedupe_key: str | None = None, state: JobState | None = None
    ) -> list[RefreshJob]:
        """Return jobs filtered by dedupe key and/or state, oldest first."""
        async with self._lock:
            return [
                job
                for _, job in sorted(self._jobs.items())
                if (dedupe_key is None or job.dedupe_key == dedupe_key)
                and (state is None or job.state == state)
            ]

    async def get_latest(self, dedupe_key: str) -> RefreshJob | None:
        """Return the most recently created job for ``dedupe_key``."""
        jobs = await self.get_jobs(dedupe_key=dedupe_key)
        return jobs[-1] if jobs else None

    async def counts(self) -> dict[JobState, int]:
        """Return the number of jobs in each state (zero for absent states)."""
        counts = {state: 0 for state in JobState}
        async with self._lock:
            for job in self._jobs.values():
                counts[job.state] += 1
        return counts
