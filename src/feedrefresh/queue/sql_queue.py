"""Durable job queue backed by the SQLite database."""

from collections.abc import Callable, Collection, Sequence
from datetime import datetime
import logging

from ..db import JobDatabase, SqlalchemyCore
from ..db.types import JobState, RefreshJob
from ..exceptions import DatabaseOperationError, QueueBackendError
from .base import JobQueue, utc_now

logger = logging.getLogger(__name__)


class SqlJobQueue(JobQueue):
    """Job queue whose records live in the ``refresh_job`` table.

    Jobs survive a process restart, and dedupe and claim stay atomic when
    several processes share the database file.

    Attributes:
        _db_core: Database core used to create the schema.
        _job_db: Storage primitives for refresh jobs.
    """

    def __init__(
        self,
        db_core: SqlalchemyCore,
        job_db: JobDatabase | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(clock)
        self._db_core = db_core
        self._job_db = job_db or JobDatabase(db_core)

    async def initialize(self) -> None:
        """Create the queue tables if they do not exist and requeue interrupted jobs.

        Raises:
            QueueBackendError: If the database cannot be opened or created.
        """
        await self._db_core.create_tables()
        try:
            await self.recover_interrupted()
        except DatabaseOperationError as e:
            raise QueueBackendError(
                "Failed to recover interrupted refresh jobs.", backend="sqlite"
            ) from e
        logger.debug(
            "SQL job queue initialized.", extra={"db_path": str(self._db_core.db_path)}
        )

    async def _insert(self, job: RefreshJob) -> RefreshJob | None:
        return await self._job_db.insert_if_absent(job)

    async def _claim(self, now: datetime) -> RefreshJob | None:
        return await self._job_db.claim_next(now)

    async def _transition(
        self,
        job: RefreshJob,
        from_state: JobState,
        to_state: JobState,
        **values: object,
    ) -> RefreshJob | None:
        return await self._job_db.transition(job, from_state, to_state, **values)

    async def _purge(
        self, states: Sequence[JobState], keep: int, exclude_ids: Collection[int]
    ) -> int:
        return await self._job_db.purge_terminal(
            states, keep, exclude_ids=exclude_ids
        )

    async def _requeue_active(self, now: datetime) -> int:
        return await self._job_db.requeue_active(now)

    async def _next_scheduled_at(self) -> datetime | None:
        return await self._job_db.next_scheduled_at()

    async def get_jobs(
        self, dedupe_key: str | None = None, state: JobState | None = None
    ) -> list[RefreshJob]:
        """Return jobs filtered by dedupe key and/or state, oldest first."""
        return await self._job_db.get_jobs(dedupe_key=dedupe_key, state=state)

    async def get_latest(self, dedupe_key: str) -> RefreshJob | None:
        """Return the most recently created job for ``dedupe_key``."""
        return await self._job_db.get_latest(dedupe_key)

    async def counts(self) -> dict[JobState, int]:
        """Return the number of jobs in each state (zero for absent states)."""
        return await self._job_db.count_by_state()
