"""Database management for feeds.

``FeedDatabase`` is both the feed store and the ``FeedDirectory`` the refresh
orchestrator queries for stale feeds.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
import logging

from sqlalchemy import or_, update
from sqlalchemy.dialects.sqlite import insert
from sqlmodel import col, select

from ..exceptions import FeedNotFoundError
from .decorators import handle_db_errors, handle_feed_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import Feed, FeedRef

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class FeedDatabase:
    """Manage all database operations for feeds.

    Attributes:
        _db: Core SQLAlchemy database manager.
        _clock: Source of the current time, used for staleness cutoffs and
            fetch timestamps.
    """

    def __init__(
        self, db_core: SqlalchemyCore, clock: Callable[[], datetime] = _utc_now
    ):
        self._db = db_core
        self._clock = clock

    # --- CRUD Operations ---
    @handle_feed_db_errors("upsert feed", feed_id_from="feed.id")
    async def upsert_feed(self, feed: Feed) -> None:
        """Insert or update a feed.

        Only the configuration columns (url, title, is_enabled) are updated
        for an existing feed; fetch bookkeeping is left untouched.

        Args:
            feed: The Feed object to insert or update.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        log_params = {"feed_id": feed.id, "feed_url": feed.url}
        logger.debug("Attempting to upsert feed record.", extra=log_params)
        async with self._db.session() as session:
            data = feed.model_dump_for_insert()
            stmt = insert(Feed).values(**data)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "url": feed.url,
                    "title": feed.title,
                    "is_enabled": feed.is_enabled,
                    "updated_at": self._clock(),
                },
            )
            await session.execute(stmt)
            await session.commit()
        logger.debug("Upsert feed record execution complete.", extra=log_params)

    @handle_feed_db_errors("get feed by ID")
    async def get_feed_by_id(self, feed_id: str) -> Feed:
        """Retrieve a specific feed by ID.

        Raises:
            FeedNotFoundError: If the feed is not found.
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            feed = await session.get(Feed, feed_id)
            if not feed:
                raise FeedNotFoundError("Feed not found.", feed_id=feed_id)
            return feed

    @handle_db_errors("get feeds")
    async def get_feeds(self, enabled: bool | None = None) -> list[Feed]:
        """Get all feeds, or only those with the given enabled status."""
        async with self._db.session() as session:
            stmt = select(Feed)
            if enabled is not None:
                stmt = stmt.where(col(Feed.is_enabled) == enabled)
            stmt = stmt.order_by(col(Feed.id))
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @handle_feed_db_errors("set feed enabled")
    async def set_feed_enabled(self, feed_id: str, enabled: bool) -> None:
        """Set is_enabled to the provided value.

        Args:
            feed_id: The feed identifier.
            enabled: Whether the feed should be enabled.

        Raises:
            FeedNotFoundError: If the feed is not found.
            DatabaseOperationError: If the database operation fails.
        """
        await self._update_feed(feed_id, is_enabled=enabled, updated_at=self._clock())
        logger.debug(
            "Feed enabled status updated.",
            extra={"feed_id": feed_id, "enabled": enabled},
        )

    # --- Feed directory ---
    @handle_db_errors("list feeds due for refresh")
    async def list_feeds_due_for_refresh(
        self, stale_threshold: timedelta
    ) -> list[FeedRef]:
        """List enabled feeds never fetched or last fetched before the threshold.

        Never-fetched feeds come first, then the stalest, then by id.

        Args:
            stale_threshold: Maximum age of ``last_fetched_at``.

        Returns:
            References to the feeds due for a refresh.

        Raises:
            DatabaseOperationError: If the database query fails.
        """
        cutoff = self._clock() - stale_threshold
        logger.debug(
            "Listing feeds due for refresh.", extra={"cutoff": cutoff.isoformat()}
        )
        async with self._db.session() as session:
            stmt = (
                select(Feed)
                .where(col(Feed.is_enabled).is_(True))
                .where(
                    or_(
                        col(Feed.last_fetched_at).is_(None),
                        col(Feed.last_fetched_at) < cutoff,
                    )
                )
                .order_by(
                    col(Feed.last_fetched_at).is_not(None),
                    col(Feed.last_fetched_at),
                    col(Feed.id),
                )
            )
            result = await session.execute(stmt)
            return [
                FeedRef(
                    feed_id=feed.id,
                    feed_url=feed.url,
                    last_fetched_at=feed.last_fetched_at,
                )
                for feed in result.scalars().all()
            ]

    async def get_feed_ref(self, feed_id: str) -> FeedRef:
        """Return the pipeline reference for one feed.

        Raises:
            FeedNotFoundError: If the feed is not found.
            DatabaseOperationError: If the database operation fails.
        """
        feed = await self.get_feed_by_id(feed_id)
        return FeedRef(
            feed_id=feed.id, feed_url=feed.url, last_fetched_at=feed.last_fetched_at
        )

    # --- Fetch bookkeeping ---
    async def _update_feed(self, feed_id: str, **values: object) -> None:
        async with self._db.session() as session:
            stmt = update(Feed).where(col(Feed.id) == feed_id).values(**values)
            result = await session.execute(stmt)
            if SqlalchemyCore.rowcount(result) == 0:
                raise FeedNotFoundError("Feed not found.", feed_id=feed_id)
            await session.commit()

    @handle_feed_db_errors("mark fetch success")
    async def mark_fetch_success(
        self, feed_id: str, fetched_at: datetime | None = None
    ) -> None:
        """Set ``last_fetched_at`` and clear ``last_error``.

        Args:
            feed_id: The feed identifier.
            fetched_at: Fetch time; defaults to now.

        Raises:
            FeedNotFoundError: If the feed is not found.
            DatabaseOperationError: If the database operation fails.
        """
        now = self._clock()
        await self._update_feed(
            feed_id,
            last_fetched_at=fetched_at or now,
            last_error=None,
            updated_at=now,
        )
        logger.debug("Marked feed fetch success.", extra={"feed_id": feed_id})

    @handle_feed_db_errors("mark fetch failure")
    async def mark_fetch_failure(self, feed_id: str, error: str) -> None:
        """Record ``error`` as the feed's ``last_error``; ``last_fetched_at`` is kept.

        Raises:
            FeedNotFoundError: If the feed is not found.
            DatabaseOperationError: If the database operation fails.
        """
        await self._update_feed(feed_id, last_error=error, updated_at=self._clock())
        logger.debug(
            "Marked feed fetch failure.", extra={"feed_id": feed_id, "error": error}
        )
