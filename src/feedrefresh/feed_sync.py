"""Startup synchronization of configured feeds into the feed table.

Feeds in the YAML configuration are upserted; feeds that are enabled in the
database but no longer configured are disabled so they stop being refreshed.
Fetch bookkeeping (``last_fetched_at``, ``last_error``) is never touched.
"""

from dataclasses import dataclass, field
import logging

from .config import FeedConfig
from .db import FeedDatabase
from .db.types import Feed
from .exceptions import DatabaseOperationError, FeedDirectoryError

logger = logging.getLogger(__name__)


@dataclass
class FeedSyncResult:
    """Summary of a startup feed synchronization.

    Attributes:
        enabled_feed_ids: Configured feeds that take part in refreshes.
        disabled_feed_ids: Feeds disabled because they left the configuration.
        failed_feeds: Feed id to error summary for feeds that could not be stored.
    """

    enabled_feed_ids: list[str] = field(default_factory=list[str])
    disabled_feed_ids: list[str] = field(default_factory=list[str])
    failed_feeds: dict[str, str] = field(default_factory=dict[str, str])


async def sync_configured_feeds(
    feed_db: FeedDatabase, config_feeds: dict[str, FeedConfig]
) -> FeedSyncResult:
    """Bring the feed table in line with the configured feeds.

    A feed that fails to store is logged and skipped; the others are still
    synchronized.

    Args:
        feed_db: The feed store.
        config_feeds: Configured feeds keyed by feed id.

    Returns:
        What was enabled, disabled, and what failed.

    Raises:
        FeedDirectoryError: If the existing feeds cannot be read.
    """
    result = FeedSyncResult()
    try:
        db_feeds = await feed_db.get_feeds()
    except DatabaseOperationError as e:
        raise FeedDirectoryError("Failed to read feeds from database.") from e

    for feed_id, feed_config in config_feeds.items():
        feed = Feed(
            id=feed_id,
            url=feed_config.url,
            title=feed_config.title,
            is_enabled=feed_config.enabled,
        )
        try:
            await feed_db.upsert_feed(feed)
        except DatabaseOperationError as e:
            result.failed_feeds[feed_id] = str(e)
            logger.warning(
                "Failed to store configured feed, continuing with others.",
                extra={"feed_id": feed_id, "feed_url": feed_config.url},
                exc_info=e,
            )
            continue
        if feed_config.enabled:
            result.enabled_feed_ids.append(feed_id)

    for db_feed in db_feeds:
        if db_feed.id in config_feeds or not db_feed.is_enabled:
            continue
        try:
            await feed_db.set_feed_enabled(db_feed.id, False)
        except DatabaseOperationError as e:
            logger.warning(
                "Failed to disable removed feed, continuing with others.",
                extra={"feed_id": db_feed.id},
                exc_info=e,
            )
            continue
        result.disabled_feed_ids.append(db_feed.id)

    logger.info(
        "Configured feeds synchronized.",
        extra={
            "enabled_feeds": len(result.enabled_feed_ids),
            "disabled_feeds": len(result.disabled_feed_ids),
            "failed_feeds": len(result.failed_feeds),
        },
    )
    return result
