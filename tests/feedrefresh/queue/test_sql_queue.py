# pyright: reportPrivateUsage=false

"""Tests for SqlJobQueue against a real SQLite database."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from feedrefresh.db import SqlalchemyCore
from feedrefresh.db.types import JobState
from feedrefresh.exceptions import JobStateError
from feedrefresh.queue import JobOptions, JobOutcome, SqlJobQueue


class ManualClock:
    """UTC clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


# --- Fixtures ---


@pytest.fixture
def clock() -> ManualClock:
    """Provides a manual clock."""
    return ManualClock()


@pytest_asyncio.fixture
async def db_core(tmp_path: Path) -> AsyncGenerator[SqlalchemyCore]:
    """Provides a SqlalchemyCore on a temporary database."""
    core = SqlalchemyCore(tmp_path)
    yield core
    await core.close()


@pytest_asyncio.fixture
async def queue(db_core: SqlalchemyCore, clock: ManualClock) -> SqlJobQueue:
    """Provides an initialized SQL queue on the manual clock."""
    sql_queue = SqlJobQueue(db_core, clock=clock)
    await sql_queue.initialize()
    return sql_queue


# --- Tests ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_enqueue_persists_job(queue: SqlJobQueue, clock: ManualClock):
    job = await queue.enqueue("feed-1", "1", "https://example.com/1.xml")

    assert job is not None
    assert job.id is not None
    stored = await queue.get_latest("feed-1")
    assert stored is not None
    assert stored.id == job.id
    assert stored.state == JobState.PENDING
    assert stored.scheduled_at == clock.now
    assert stored.scheduled_at.tzinfo is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_live_dedupe_key_is_unique(queue: SqlJobQueue):
    assert await queue.enqueue("feed-1", "1", "https://example.com/1") is not None
    assert await queue.enqueue("feed-1", "1", "https://example.com/1") is None

    job = await queue.dequeue_next()
    assert job is not None
    assert await queue.enqueue("feed-1", "1", "https://example.com/1") is None

    await queue.report_outcome(job, JobOutcome.completed(1))
    assert await queue.enqueue("feed-1", "1", "https://example.com/1") is not None
    assert len(await queue.get_jobs(dedupe_key="feed-1")) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_enqueues_of_one_key_create_one_job(queue: SqlJobQueue):
    results = await asyncio.gather(
        *(queue.enqueue("feed-1", "1", "https://example.com/1") for _ in range(5))
    )

    assert sum(1 for job in results if job is not None) == 1
    assert len(await queue.get_jobs()) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_dequeues_never_share_a_job(queue: SqlJobQueue):
    for i in range(3):
        await queue.enqueue(f"feed-{i}", str(i), f"https://example.com/{i}")

    claimed = await asyncio.gather(*(queue.dequeue_next() for _ in range(5)))

    ids = [job.id for job in claimed if job is not None]
    assert len(ids) == 3
    assert len(set(ids)) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dequeue_respects_schedule_and_order(
    queue: SqlJobQueue, clock: ManualClock
):
    await queue.enqueue_delayed(
        "feed-late", "late", "https://example.com/late", timedelta(seconds=5)
    )
    await queue.enqueue("feed-a", "a", "https://example.com/a")
    await queue.enqueue("feed-b", "b", "https://example.com/b")

    first = await queue.dequeue_next()
    second = await queue.dequeue_next()
    assert first is not None and second is not None
    assert [first.feed_id, second.feed_id] == ["a", "b"]
    assert await queue.dequeue_next() is None

    clock.advance(timedelta(seconds=5))
    late = await queue.dequeue_next()
    assert late is not None
    assert late.feed_id == "late"
    assert late.state == JobState.ACTIVE
    assert late.started_at == clock.now


@pytest.mark.unit
@pytest.mark.asyncio
async def test_outcomes_and_abandon(queue: SqlJobQueue):
    await queue.enqueue("feed-1", "1", "https://example.com/1")
    job = await queue.dequeue_next()
    assert job is not None

    failed = await queue.report_outcome(job, JobOutcome.failed(RuntimeError("503")))
    assert failed.state == JobState.FAILED
    assert failed.error == "RuntimeError: 503"

    abandoned = await queue.abandon(failed)
    assert abandoned.state == JobState.ABANDONED

    with pytest.raises(JobStateError):
        await queue.abandon(abandoned)
    with pytest.raises(JobStateError):
        await queue.report_outcome(abandoned, JobOutcome.completed(1))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retention_purges_oldest_completed(
    queue: SqlJobQueue, clock: ManualClock
):
    options = JobOptions(remove_on_complete=1)
    for i in range(3):
        await queue.enqueue(f"feed-{i}", str(i), f"https://example.com/{i}", options)
        job = await queue.dequeue_next()
        assert job is not None
        clock.advance(timedelta(seconds=1))
        await queue.report_outcome(job, JobOutcome.completed(i))

    remaining = await queue.get_jobs()
    assert [job.feed_id for job in remaining] == ["2"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_job_survives_retention_until_abandoned(queue: SqlJobQueue):
    options = JobOptions(remove_on_fail=0)
    await queue.enqueue("feed-1", "1", "https://example.com/1", options)
    job = await queue.dequeue_next()
    assert job is not None

    failed = await queue.report_outcome(job, JobOutcome.failed(RuntimeError()))
    assert [j.id for j in await queue.get_jobs()] == [failed.id]

    await queue.abandon(failed)
    assert await queue.get_jobs() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_interleaved_failures_are_each_abandoned(
    queue: SqlJobQueue, clock: ManualClock
):
    options = JobOptions(attempts=1, remove_on_fail=0)
    await queue.enqueue("feed-a", "a", "https://example.com/a", options)
    await queue.enqueue("feed-b", "b", "https://example.com/b", options)
    job_a = await queue.dequeue_next()
    job_b = await queue.dequeue_next()
    assert job_a is not None and job_b is not None

    failed_a = await queue.report_outcome(job_a, JobOutcome.failed(RuntimeError("a")))
    clock.advance(timedelta(seconds=1))
    failed_b = await queue.report_outcome(job_b, JobOutcome.failed(RuntimeError("b")))

    abandoned_a = await queue.abandon(failed_a)
    assert abandoned_a.state == JobState.ABANDONED
    # "b" has not been settled yet, so retention leaves it alone
    remaining = await queue.get_jobs()
    assert [(job.feed_id, job.state) for job in remaining] == [("b", JobState.FAILED)]

    abandoned_b = await queue.abandon(failed_b)
    assert abandoned_b.state == JobState.ABANDONED
    assert await queue.get_jobs() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retry_enqueues_next_attempt_and_trims_settled_failures(
    queue: SqlJobQueue, clock: ManualClock
):
    options = JobOptions(
        attempts=3, backoff_delay=timedelta(seconds=2), remove_on_fail=0
    )
    await queue.enqueue("feed-a", "a", "https://example.com/a", options)
    await queue.enqueue("feed-b", "b", "https://example.com/b", options)
    job_a = await queue.dequeue_next()
    job_b = await queue.dequeue_next()
    assert job_a is not None and job_b is not None
    failed_a = await queue.report_outcome(job_a, JobOutcome.failed(RuntimeError()))
    failed_b = await queue.report_outcome(job_b, JobOutcome.failed(RuntimeError()))

    retry = await queue.retry(failed_a, timedelta(seconds=2))

    assert retry is not None
    assert retry.attempt == 1
    assert retry.max_attempts == 3
    assert retry.backoff_delay_ms == 2000
    assert retry.remove_on_fail == 0
    assert retry.scheduled_at == clock.now + timedelta(seconds=2)
    remaining = await queue.get_jobs()
    assert [(job.feed_id, job.state) for job in remaining] == [
        ("b", JobState.FAILED),
        ("a", JobState.PENDING),
    ]

    await queue.abandon(failed_b)
    remaining = await queue.get_jobs()
    assert [(job.feed_id, job.state) for job in remaining] == [
        ("a", JobState.PENDING)
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_counts_next_scheduled_and_idle(queue: SqlJobQueue, clock: ManualClock):
    assert await queue.is_idle()
    await queue.enqueue_delayed(
        "feed-1", "1", "https://example.com/1", timedelta(seconds=30)
    )

    counts = await queue.counts()
    assert counts[JobState.PENDING] == 1
    assert counts[JobState.COMPLETED] == 0
    assert await queue._next_scheduled_at() == clock.now + timedelta(seconds=30)
    assert not await queue.is_idle()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_jobs_survive_restart_and_active_jobs_are_requeued(
    tmp_path: Path, clock: ManualClock
):
    core = SqlalchemyCore(tmp_path)
    queue = SqlJobQueue(core, clock=clock)
    await queue.initialize()
    await queue.enqueue("feed-1", "1", "https://example.com/1")
    await queue.enqueue("feed-2", "2", "https://example.com/2")
    interrupted = await queue.dequeue_next()
    assert interrupted is not None
    await core.close()

    clock.advance(timedelta(minutes=5))
    restarted_core = SqlalchemyCore(tmp_path)
    try:
        restarted = SqlJobQueue(restarted_core, clock=clock)
        await restarted.initialize()

        counts = await restarted.counts()
        assert counts[JobState.PENDING] == 2
        assert counts[JobState.ACTIVE] == 0

        # The requeued job is ready now, behind the job that never started
        first = await restarted.dequeue_next()
        second = await restarted.dequeue_next()
        assert first is not None and second is not None
        assert first.feed_id == "2"
        assert second.id == interrupted.id
    finally:
        await restarted_core.close()
