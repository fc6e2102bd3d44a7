"""Outcome of a single refresh attempt."""

from dataclasses import dataclass


@dataclass(frozen=True)
class JobOutcome:
    """What a worker reports back after executing a refresh job.

    Attributes:
        success: Whether the fetch succeeded.
        count: Number of new items ingested, for successful attempts.
        error: The exception that failed the attempt.
        duration_seconds: Wall time spent in the fetch.
    """

    success: bool
    count: int | None = None
    error: Exception | None = None
    duration_seconds: float = 0.0

    @classmethod
    def completed(cls, count: int, duration_seconds: float = 0.0) -> "JobOutcome":
        """Outcome of a successful fetch that ingested ``count`` items."""
        return cls(success=True, count=count, duration_seconds=duration_seconds)

    @classmethod
    def failed(cls, error: Exception, duration_seconds: float = 0.0) -> "JobOutcome":
        """Outcome of a fetch that raised ``error``."""
        return cls(success=False, error=error, duration_seconds=duration_seconds)

    @property
    def error_message(self) -> str | None:
        """Printable form of the error, including its type."""
        if self.error is None:
            return None
        message = str(self.error)
        name = type(self.error).__name__
        return f"{name}: {message}" if message else name
