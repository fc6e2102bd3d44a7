"""Refresh job queue implementations."""

from .base import JobQueue
from .memory_queue import InMemoryJobQueue
from .sql_queue import SqlJobQueue
from .types import JobOptions, JobOutcome

__all__ = [
    "InMemoryJobQueue",
    "JobOptions",
    "JobOutcome",
    "JobQueue",
    "SqlJobQueue",
]
