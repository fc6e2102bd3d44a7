# pyright: reportPrivateUsage=false

"""Tests for the FeedDatabase and Feed model functionality."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from feedrefresh.db import FeedDatabase, SqlalchemyCore
from feedrefresh.db.types import Feed, FeedRef
from feedrefresh.exceptions import DatabaseOperationError, FeedNotFoundError

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
async def feed_db(db_core: SqlalchemyCore) -> FeedDatabase:
    """Provides a FeedDatabase instance whose clock is fixed at NOW."""
    return FeedDatabase(db_core, clock=lambda: NOW)


@pytest.fixture
def sample_feed() -> Feed:
    """Provides a sample Feed instance for testing."""
    return Feed(
        id="test_feed",
        url="https://example.com/feed.xml",
        title="Test Feed",
        is_enabled=True,
    )


# --- Tests for FeedDatabase.upsert_feed ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_schema_starts_empty(feed_db: FeedDatabase):
    assert await feed_db.get_feeds() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upsert_and_get_feed(feed_db: FeedDatabase, sample_feed: Feed):
    """Test inserting a new feed and retrieving it."""
    await feed_db.upsert_feed(sample_feed)

    retrieved = await feed_db.get_feed_by_id(sample_feed.id)

    assert retrieved.url == sample_feed.url
    assert retrieved.title == "Test Feed"
    assert retrieved.is_enabled is True
    assert retrieved.last_fetched_at is None
    assert retrieved.last_error is None
    assert retrieved.created_at is not None
    assert retrieved.created_at.tzinfo is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upsert_updates_configuration_but_keeps_fetch_bookkeeping(
    feed_db: FeedDatabase, sample_feed: Feed
):
    await feed_db.upsert_feed(sample_feed)
    fetched_at = NOW - timedelta(hours=1)
    await feed_db.mark_fetch_success(sample_feed.id, fetched_at=fetched_at)

    await feed_db.upsert_feed(
        Feed(
            id=sample_feed.id,
            url="https://example.com/moved.xml",
            title="Renamed",
            is_enabled=False,
        )
    )

    retrieved = await feed_db.get_feed_by_id(sample_feed.id)
    assert retrieved.url == "https://example.com/moved.xml"
    assert retrieved.title == "Renamed"
    assert retrieved.is_enabled is False
    assert retrieved.last_fetched_at == fetched_at


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_feed_by_id_not_found(feed_db: FeedDatabase):
    with pytest.raises(FeedNotFoundError) as exc_info:
        await feed_db.get_feed_by_id("missing")
    assert exc_info.value.feed_id == "missing"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_duplicate_url_raises_database_error(
    feed_db: FeedDatabase, sample_feed: Feed
):
    await feed_db.upsert_feed(sample_feed)

    with pytest.raises(DatabaseOperationError) as exc_info:
        await feed_db.upsert_feed(Feed(id="other", url=sample_feed.url))
    assert exc_info.value.feed_id == "other"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_feeds_filters_by_enabled(feed_db: FeedDatabase):
    await feed_db.upsert_feed(Feed(id="b", url="https://example.com/b"))
    await feed_db.upsert_feed(Feed(id="a", url="https://example.com/a"))
    await feed_db.upsert_feed(
        Feed(id="c", url="https://example.com/c", is_enabled=False)
    )

    assert [f.id for f in await feed_db.get_feeds()] == ["a", "b", "c"]
    assert [f.id for f in await feed_db.get_feeds(enabled=True)] == ["a", "b"]
    assert [f.id for f in await feed_db.get_feeds(enabled=False)] == ["c"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_set_feed_enabled(feed_db: FeedDatabase, sample_feed: Feed):
    await feed_db.upsert_feed(sample_feed)

    await feed_db.set_feed_enabled(sample_feed.id, False)

    assert (await feed_db.get_feed_by_id(sample_feed.id)).is_enabled is False
    with pytest.raises(FeedNotFoundError):
        await feed_db.set_feed_enabled("missing", True)


# --- Tests for the feed directory ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_feeds_due_for_refresh(feed_db: FeedDatabase):
    await feed_db.upsert_feed(Feed(id="never", url="https://example.com/never"))
    await feed_db.upsert_feed(Feed(id="stale", url="https://example.com/stale"))
    await feed_db.upsert_feed(Feed(id="staler", url="https://example.com/staler"))
    await feed_db.upsert_feed(Feed(id="fresh", url="https://example.com/fresh"))
    await feed_db.upsert_feed(
        Feed(id="disabled", url="https://example.com/disabled", is_enabled=False)
    )
    await feed_db.mark_fetch_success("stale", fetched_at=NOW - timedelta(hours=1))
    await feed_db.mark_fetch_success("staler", fetched_at=NOW - timedelta(hours=2))
    await feed_db.mark_fetch_success("fresh", fetched_at=NOW - timedelta(minutes=10))

    due = await feed_db.list_feeds_due_for_refresh(timedelta(minutes=30))

    assert [ref.feed_id for ref in due] == ["never", "staler", "stale"]
    assert due[0] == FeedRef("never", "https://example.com/never", None)
    assert due[2].last_fetched_at == NOW - timedelta(hours=1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_feed_fetched_exactly_at_cutoff_is_not_due(feed_db: FeedDatabase):
    await feed_db.upsert_feed(Feed(id="edge", url="https://example.com/edge"))
    await feed_db.mark_fetch_success("edge", fetched_at=NOW - timedelta(minutes=30))

    assert await feed_db.list_feeds_due_for_refresh(timedelta(minutes=30)) == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_feed_ref(feed_db: FeedDatabase, sample_feed: Feed):
    await feed_db.upsert_feed(sample_feed)

    ref = await feed_db.get_feed_ref(sample_feed.id)

    assert ref == FeedRef(sample_feed.id, sample_feed.url, None)
    with pytest.raises(FeedNotFoundError):
        await feed_db.get_feed_ref("missing")


# --- Tests for fetch bookkeeping ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_fetch_failure_then_success(feed_db: FeedDatabase, sample_feed: Feed):
    await feed_db.upsert_feed(sample_feed)

    await feed_db.mark_fetch_failure(sample_feed.id, "HTTP 503")
    failed = await feed_db.get_feed_by_id(sample_feed.id)
    assert failed.last_error == "HTTP 503"
    assert failed.last_fetched_at is None

    await feed_db.mark_fetch_success(sample_feed.id)
    recovered = await feed_db.get_feed_by_id(sample_feed.id)
    assert recovered.last_error is None
    assert recovered.last_fetched_at == NOW


@pytest.mark.unit
@pytest.mark.asyncio
async def test_mark_fetch_on_missing_feed_raises(feed_db: FeedDatabase):
    with pytest.raises(FeedNotFoundError):
        await feed_db.mark_fetch_success("missing")
    with pytest.raises(FeedNotFoundError):
        await feed_db.mark_fetch_failure("missing", "boom")
