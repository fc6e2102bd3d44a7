"""Exponential backoff policy for failed refresh jobs."""

from dataclasses import dataclass
from datetime import timedelta

from ..db.types import RefreshJob


@dataclass(frozen=True)
class RetryDecision:
    """Whether a failed job is retried and after how long.

    Attributes:
        retry: True if another attempt should be enqueued.
        delay: Wait before the next attempt; None when not retrying.
    """

    retry: bool
    delay: timedelta | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a fixed attempt ceiling.

    The n-th retry (``attempt`` counting from 0) waits ``base_delay * 2**attempt``;
    with the defaults that is 5s, then 10s, after which the job is abandoned.

    Attributes:
        base_delay: Delay before the first retry.
        max_attempts: Total attempts allowed, counting the first.
    """

    base_delay: timedelta = timedelta(seconds=5)
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.base_delay < timedelta(0):
            raise ValueError(f"base_delay must be non-negative, got {self.base_delay}")

    @classmethod
    def for_job(cls, job: RefreshJob) -> "RetryPolicy":
        """Build the policy captured on ``job`` when it was enqueued."""
        return cls(base_delay=job.backoff_delay, max_attempts=job.max_attempts)

    def next_delay(self, attempt: int) -> timedelta:
        """Delay before retrying after the failure of ``attempt`` (0-based).

        Raises:
            ValueError: If ``attempt`` is negative.
        """
        if attempt < 0:
            raise ValueError(f"attempt must be non-negative, got {attempt}")
        return self.base_delay * (2**attempt)

    def decide(self, attempts_made: int) -> RetryDecision:
        """Decide what to do after ``attempts_made`` attempts have all failed.

        Args:
            attempts_made: Attempts made so far, including the one that just
                failed (so at least 1).

        Returns:
            A retry decision carrying the backoff delay, or a decision not to
            retry once the ceiling is reached.
        """
        if attempts_made < 1:
            raise ValueError(f"attempts_made must be at least 1, got {attempts_made}")
        if attempts_made >= self.max_attempts:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.next_delay(attempts_made - 1))
