"""Durable storage primitives for refresh jobs.

Every operation the queue relies on for correctness is a single SQL
statement, so it stays atomic even when several processes share the
database file:

- dedupe-on-insert: a partial unique index over ``dedupe_key`` for live
  (PENDING/ACTIVE) rows plus ``INSERT ... ON CONFLICT DO NOTHING``;
- claim-on-dequeue: ``UPDATE ... WHERE id = (SELECT ... LIMIT 1) AND
  state = 'PENDING' RETURNING *``.
"""

from collections.abc import Collection, Sequence
from datetime import datetime
import logging

from sqlalchemy import delete, func, update
from sqlalchemy.dialects.sqlite import insert
from sqlmodel import col, select

from .decorators import handle_db_errors, handle_job_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import JobState, RefreshJob

logger = logging.getLogger(__name__)


class JobDatabase:
    """Manage database operations for refresh jobs.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    @handle_job_db_errors("insert refresh job")
    async def insert_if_absent(self, job: RefreshJob) -> RefreshJob | None:
        """Insert ``job`` unless a live job with the same dedupe key exists.

        Args:
            job: The job to insert; its ``id`` is assigned by the database.

        Returns:
            The stored job, or None if the insert was a dedupe no-op.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        data = job.model_dump(exclude={"id"})
        async with self._db.session() as session:
            stmt = (
                insert(RefreshJob)
                .values(**data)
                .on_conflict_do_nothing()
                .returning(RefreshJob)
            )
            result = await session.scalars(stmt)
            stored = result.first()
            await session.commit()
        return stored

    @handle_db_errors("claim next refresh job")
    async def claim_next(self, now: datetime) -> RefreshJob | None:
        """Atomically move the next ready PENDING job to ACTIVE.

        Ready means ``scheduled_at <= now``; the earliest ``scheduled_at``
        wins, ties go to the lowest id.

        Returns:
            The claimed job, or None if nothing is ready.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        next_id = (
            select(RefreshJob.id)
            .where(col(RefreshJob.state) == JobState.PENDING)
            .where(col(RefreshJob.scheduled_at) <= now)
            .order_by(col(RefreshJob.scheduled_at), col(RefreshJob.id))
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(RefreshJob)
            .where(col(RefreshJob.id) == next_id)
            .where(col(RefreshJob.state) == JobState.PENDING)
            .values(state=JobState.ACTIVE, started_at=now)
            .returning(RefreshJob)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.scalars(stmt)
            claimed = result.first()
            await session.commit()
        return claimed

    @handle_job_db_errors("transition refresh job")
    async def transition(
        self,
        job: RefreshJob,
        from_state: JobState,
        to_state: JobState,
        **values: object,
    ) -> RefreshJob | None:
        """Move ``job`` from ``from_state`` to ``to_state`` with extra column values.

        Returns:
            The updated job, or None if the job was not in ``from_state``.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        stmt = (
            update(RefreshJob)
            .where(col(RefreshJob.id) == job.id)
            .where(col(RefreshJob.state) == from_state)
            .values(state=to_state, **values)
            .returning(RefreshJob)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.scalars(stmt)
            updated = result.first()
            await session.commit()
        return updated

    @handle_db_errors("requeue interrupted refresh jobs")
    async def requeue_active(self, now: datetime) -> int:
        """Return every ACTIVE job to PENDING, ready at ``now``.

        Jobs are only ACTIVE while a worker of a running process owns them,
        so any found at startup were interrupted by a shutdown.

        Returns:
            Number of requeued jobs.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        stmt = (
            update(RefreshJob)
            .where(col(RefreshJob.state) == JobState.ACTIVE)
            .values(state=JobState.PENDING, started_at=None, scheduled_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        return SqlalchemyCore.rowcount(result)

    @handle_db_errors("purge refresh jobs")
    async def purge_terminal(
        self,
        states: Sequence[JobState],
        keep: int,
        exclude_ids: Collection[int] = (),
    ) -> int:
        """Delete all but the ``keep`` most recently finished jobs in ``states``.

        Args:
            states: Terminal states that share one retention budget.
            keep: Number of jobs to retain.
            exclude_ids: Jobs that are never deleted, even when over budget.

        Returns:
            Number of deleted rows.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        kept_ids = (
            select(RefreshJob.id)
            .where(col(RefreshJob.state).in_(states))
            .order_by(col(RefreshJob.completed_at).desc(), col(RefreshJob.id).desc())
            .limit(keep)
        )
        stmt = (
            delete(RefreshJob)
            .where(col(RefreshJob.state).in_(states))
            .where(col(RefreshJob.id).not_in(kept_ids))
        )
        if exclude_ids:
            stmt = stmt.where(col(RefreshJob.id).not_in(list(exclude_ids)))
        async with self._db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
        deleted = SqlalchemyCore.rowcount(result)
        if deleted:
            logger.debug(
                "Purged finished refresh jobs.",
                extra={"states": [s.value for s in states], "deleted": deleted},
            )
        return deleted

    @handle_db_errors("get refresh jobs")
    async def get_jobs(
        self, dedupe_key: str | None = None, state: JobState | None = None
    ) -> list[RefreshJob]:
        """Return jobs filtered by dedupe key and/or state, oldest first."""
        stmt = select(RefreshJob)
        if dedupe_key is not None:
            stmt = stmt.where(col(RefreshJob.dedupe_key) == dedupe_key)
        if state is not None:
            stmt = stmt.where(col(RefreshJob.state) == state)
        stmt = stmt.order_by(col(RefreshJob.id))
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @handle_db_errors("get latest refresh job")
    async def get_latest(self, dedupe_key: str) -> RefreshJob | None:
        """Return the most recently created job for ``dedupe_key``."""
        stmt = (
            select(RefreshJob)
            .where(col(RefreshJob.dedupe_key) == dedupe_key)
            .order_by(col(RefreshJob.id).desc())
            .limit(1)
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    @handle_db_errors("count refresh jobs")
    async def count_by_state(self) -> dict[JobState, int]:
        """Return the number of jobs in each state (zero for absent states)."""
        stmt = select(RefreshJob.state, func.count()).group_by(col(RefreshJob.state))
        async with self._db.session() as session:
            result = await session.execute(stmt)
            rows = result.all()
        counts = {state: 0 for state in JobState}
        for state, count in rows:
            counts[JobState(state)] = count
        return counts

    @handle_db_errors("get next scheduled time")
    async def next_scheduled_at(self) -> datetime | None:
        """Return the earliest ``scheduled_at`` among PENDING jobs."""
        stmt = select(func.min(RefreshJob.scheduled_at)).where(
            col(RefreshJob.state) == JobState.PENDING
        )
        async with self._db.session() as session:
            result = await session.execute(stmt)
            value = result.scalar_one_or_none()
        return value
