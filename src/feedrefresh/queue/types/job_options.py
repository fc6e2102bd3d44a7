"""Per-job enqueue options."""

from dataclasses import dataclass
from datetime import timedelta

from ...db.types import RefreshJob


@dataclass(frozen=True)
class JobOptions:
    """Options captured on a refresh job when it is enqueued.

    Attributes:
        attempts: Total attempts allowed, counting the first.
        backoff_delay: Base delay of the exponential backoff between attempts.
        remove_on_complete: Completed jobs retained before the oldest are purged.
        remove_on_fail: Failed/abandoned jobs retained before the oldest are purged.
    """

    attempts: int = 3
    backoff_delay: timedelta = timedelta(seconds=5)
    remove_on_complete: int = 100
    remove_on_fail: int = 50

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be at least 1, got {self.attempts}")
        if self.backoff_delay < timedelta(0):
            raise ValueError(
                f"backoff_delay must be non-negative, got {self.backoff_delay}"
            )
        if self.remove_on_complete < 0 or self.remove_on_fail < 0:
            raise ValueError("retention counts must be non-negative")

    @classmethod
    def for_job(cls, job: RefreshJob) -> "JobOptions":
        """Options that were captured on ``job``, for enqueueing its retry."""
        return cls(
            attempts=job.max_attempts,
            backoff_delay=job.backoff_delay,
            remove_on_complete=job.remove_on_complete,
            remove_on_fail=job.remove_on_fail,
        )

    @property
    def backoff_delay_ms(self) -> int:
        """Base backoff delay in whole milliseconds."""
        return int(self.backoff_delay / timedelta(milliseconds=1))
