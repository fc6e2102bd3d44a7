"""Database model and enum types."""

from .feed import Feed
from .feed_ref import FeedRef
from .job_state import JobState
from .refresh_job import RefreshJob

__all__ = [
    "Feed",
    "FeedRef",
    "JobState",
    "RefreshJob",
]
