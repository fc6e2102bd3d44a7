"""Lightweight reference to a feed, as handed to the refresh pipeline."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class FeedRef:
    """The slice of a feed the pipeline needs to schedule a refresh.

    Attributes:
        feed_id: The feed identifier.
        feed_url: The feed source URL.
        last_fetched_at: Last successful fetch, or None if never fetched.
    """

    feed_id: str
    feed_url: str
    last_fetched_at: datetime | None = None
