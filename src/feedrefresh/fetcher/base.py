"""Interfaces of the pipeline's external collaborators."""

from datetime import timedelta
from typing import Protocol

from ..db.types import FeedRef


class FeedFetcher(Protocol):
    """Fetches a feed and ingests its new articles."""

    async def fetch_articles(self, feed_id: str, feed_url: str) -> int:
        """Fetch ``feed_url`` and ingest its new items.

        Args:
            feed_id: The feed identifier.
            feed_url: The feed source URL.

        Returns:
            The number of new items ingested.

        Raises:
            Exception: Any failure; the worker turns it into a failed attempt.
        """
        ...


class FeedDirectory(Protocol):
    """Source of truth for which feeds exist and how fresh they are."""

    async def list_feeds_due_for_refresh(
        self, stale_threshold: timedelta
    ) -> list[FeedRef]:
        """Return enabled feeds never fetched or last fetched before ``now - stale_threshold``."""
        ...

    async def get_feed_ref(self, feed_id: str) -> FeedRef:
        """Return the reference for one feed.

        Raises:
            FeedNotFoundError: If the feed does not exist.
        """
        ...
