"""Refresh job lifecycle values."""

from enum import Enum


class JobState(str, Enum):
    """Represent the state of a refresh job.

    ``PENDING -> ACTIVE -> {COMPLETED | FAILED}``; a FAILED job is either
    followed by a delayed retry record or moved to the terminal ABANDONED.
    """

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"

    @property
    def is_live(self) -> bool:
        """True while the job holds its dedupe key."""
        return self in (JobState.PENDING, JobState.ACTIVE)
