# pyright: reportPrivateUsage=false

"""Tests for the JobDatabase storage primitives."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from feedrefresh.db import JobDatabase, SqlalchemyCore
from feedrefresh.db.types import JobState, RefreshJob

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)

# --- Fixtures ---


@pytest_asyncio.fixture
async def db_core(tmp_path: Path) -> AsyncGenerator[SqlalchemyCore]:
    """Provides a SqlalchemyCore instance with the schema created."""
    core = SqlalchemyCore(tmp_path)
    await core.create_tables()
    yield core
    await core.close()


@pytest_asyncio.fixture
async def job_db(db_core: SqlalchemyCore) -> JobDatabase:
    """Provides a JobDatabase instance for testing."""
    return JobDatabase(db_core)


def make_job(
    feed_id: str, scheduled_at: datetime = NOW, state: JobState = JobState.PENDING
) -> RefreshJob:
    """Build an unsaved job for ``feed_id``."""
    return RefreshJob(
        dedupe_key=RefreshJob.dedupe_key_for(feed_id),
        feed_id=feed_id,
        feed_url=f"https://example.com/{feed_id}.xml",
        state=state,
        enqueued_at=NOW,
        scheduled_at=scheduled_at,
    )


# --- Tests ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_insert_if_absent_assigns_id(job_db: JobDatabase):
    stored = await job_db.insert_if_absent(make_job("a"))

    assert stored is not None
    assert stored.id is not None
    assert stored.dedupe_key == "feed-a"
    assert stored.state == JobState.PENDING
    assert stored.enqueued_at == NOW


@pytest.mark.unit
@pytest.mark.asyncio
async def test_insert_if_absent_only_blocks_live_duplicates(job_db: JobDatabase):
    first = await job_db.insert_if_absent(make_job("a"))
    assert first is not None
    assert await job_db.insert_if_absent(make_job("a")) is None

    await job_db.transition(
        first, JobState.PENDING, JobState.COMPLETED, completed_at=NOW
    )

    assert await job_db.insert_if_absent(make_job("a")) is not None
    # Any number of finished jobs may share a key
    assert await job_db.insert_if_absent(make_job("a", state=JobState.FAILED)) is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_claim_next_returns_none_when_nothing_ready(job_db: JobDatabase):
    await job_db.insert_if_absent(make_job("a", scheduled_at=NOW + timedelta(seconds=1)))

    assert await job_db.claim_next(NOW) is None
    claimed = await job_db.claim_next(NOW + timedelta(seconds=1))
    assert claimed is not None
    assert claimed.state == JobState.ACTIVE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transition_from_wrong_state_returns_none(job_db: JobDatabase):
    job = await job_db.insert_if_absent(make_job("a"))
    assert job is not None

    assert await job_db.transition(job, JobState.ACTIVE, JobState.COMPLETED) is None
    updated = await job_db.transition(
        job, JobState.PENDING, JobState.ACTIVE, started_at=NOW
    )
    assert updated is not None
    assert updated.state == JobState.ACTIVE
    assert updated.started_at == NOW


@pytest.mark.unit
@pytest.mark.asyncio
async def test_purge_terminal_keeps_newest_and_excluded(job_db: JobDatabase):
    ids: list[int] = []
    for i in range(4):
        job = await job_db.insert_if_absent(make_job(f"f{i}"))
        assert job is not None and job.id is not None
        await job_db.transition(
            job,
            JobState.PENDING,
            JobState.FAILED,
            completed_at=NOW + timedelta(seconds=i),
        )
        ids.append(job.id)

    deleted = await job_db.purge_terminal(
        (JobState.FAILED, JobState.ABANDONED), keep=1, exclude_ids=[ids[0]]
    )

    assert deleted == 2
    remaining = await job_db.get_jobs(state=JobState.FAILED)
    assert sorted(job.id for job in remaining if job.id is not None) == [ids[0], ids[3]]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_purge_terminal_leaves_other_states_alone(job_db: JobDatabase):
    pending = await job_db.insert_if_absent(make_job("pending"))
    assert pending is not None

    assert await job_db.purge_terminal((JobState.COMPLETED,), keep=0) == 0
    assert len(await job_db.get_jobs()) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_requeue_active(job_db: JobDatabase):
    await job_db.insert_if_absent(make_job("a"))
    await job_db.insert_if_absent(make_job("b"))
    claimed = await job_db.claim_next(NOW)
    assert claimed is not None

    later = NOW + timedelta(minutes=1)
    assert await job_db.requeue_active(later) == 1

    requeued = await job_db.get_latest(claimed.dedupe_key)
    assert requeued is not None
    assert requeued.state == JobState.PENDING
    assert requeued.started_at is None
    assert requeued.scheduled_at == later


@pytest.mark.unit
@pytest.mark.asyncio
async def test_count_by_state_and_next_scheduled_at(job_db: JobDatabase):
    assert await job_db.next_scheduled_at() is None
    await job_db.insert_if_absent(make_job("a", scheduled_at=NOW + timedelta(hours=1)))
    await job_db.insert_if_absent(make_job("b", scheduled_at=NOW + timedelta(hours=2)))
    await job_db.claim_next(NOW + timedelta(hours=1))

    counts = await job_db.count_by_state()

    assert counts == {
        JobState.PENDING: 1,
        JobState.ACTIVE: 1,
        JobState.COMPLETED: 0,
        JobState.FAILED: 0,
        JobState.ABANDONED: 0,
    }
    assert await job_db.next_scheduled_at() == NOW + timedelta(hours=2)
