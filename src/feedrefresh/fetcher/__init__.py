"""Feed fetching collaborators of the refresh pipeline."""

from .base import FeedDirectory, FeedFetcher
from .http_fetcher import FeedItem, HttpFeedFetcher, count_new_items, parse_feed_items

__all__ = [
    "FeedDirectory",
    "FeedFetcher",
    "FeedItem",
    "HttpFeedFetcher",
    "count_new_items",
    "parse_feed_items",
]
