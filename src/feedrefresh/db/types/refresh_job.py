"""RefreshJob table mapped with SQLModel.

The same model backs both queue implementations: the SQL queue persists it,
the in-memory queue keeps instances in a dict.
"""

from datetime import datetime, timedelta

from sqlalchemy import Column, Enum, Index, Integer, Text, text
from sqlmodel import Field, SQLModel

from .job_state import JobState
from .timezone_aware_datetime import TimezoneAwareDatetime

DEDUPE_KEY_PREFIX = "feed-"


class RefreshJob(SQLModel, table=True):
    """A request to refresh one feed.

    Attributes:
        id: Queue-assigned sequence number; breaks ties between jobs that are
            ready at the same instant, so it doubles as the FIFO order.
        dedupe_key: ``feed-<feed_id>``; at most one PENDING/ACTIVE job per key.
        feed_id: Feed identifier captured at enqueue time.
        feed_url: Feed URL captured at enqueue time (not re-read on execution).
        state: Current lifecycle state.

        Retry Bookkeeping:
            attempt: Number of attempts made before this one (0 for the first).
            max_attempts: Total attempts allowed, counting the first.
            backoff_delay_ms: Base delay of the exponential backoff.

        Retention:
            remove_on_complete: Completed jobs kept per queue.
            remove_on_fail: Failed/abandoned jobs kept per queue.

        Time Keeping:
            enqueued_at: When the record was created (UTC).
            scheduled_at: When the job becomes ready (UTC).
            started_at: When a worker claimed it (UTC).
            completed_at: When the outcome was reported (UTC).

        Outcome:
            result_count: New items reported by a successful fetch.
            error: Message of the failure that ended this attempt.
    """

    __tablename__ = "refresh_job"  # type: ignore
    __table_args__ = (
        Index(
            "ix_refresh_job_live_dedupe_key",
            "dedupe_key",
            unique=True,
            sqlite_where=text("state IN ('PENDING', 'ACTIVE')"),
        ),
        Index("ix_refresh_job_ready", "state", "scheduled_at", "id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    dedupe_key: str = Field(index=True)
    feed_id: str
    feed_url: str
    state: JobState = Field(
        default=JobState.PENDING,
        sa_column=Column(Enum(JobState), nullable=False, index=True),
    )

    # --- Retry Bookkeeping ---
    attempt: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, server_default="0")
    )
    max_attempts: int = 3
    backoff_delay_ms: int = 5000

    # --- Retention ---
    remove_on_complete: int = 100
    remove_on_fail: int = 50

    # --- Time Keeping ---
    enqueued_at: datetime = Field(
        sa_column=Column(TimezoneAwareDatetime, nullable=False)
    )
    scheduled_at: datetime = Field(
        sa_column=Column(TimezoneAwareDatetime, nullable=False)
    )
    started_at: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )

    # --- Outcome ---
    result_count: int | None = None
    error: str | None = Field(default=None, sa_column=Column(Text))

    # --- Helpers ---

    @staticmethod
    def dedupe_key_for(feed_id: str) -> str:
        """Return the dedupe key used for refresh jobs of ``feed_id``."""
        return f"{DEDUPE_KEY_PREFIX}{feed_id}"

    @property
    def backoff_delay(self) -> timedelta:
        """Base backoff delay as a timedelta."""
        return timedelta(milliseconds=self.backoff_delay_ms)

    @property
    def context_id(self) -> str:
        """Identifier used to correlate log lines of this attempt."""
        return f"{self.dedupe_key}-attempt{self.attempt}"

    def is_ready(self, now: datetime) -> bool:
        """True if the job is PENDING and its scheduled time has arrived."""
        return self.state == JobState.PENDING and self.scheduled_at <= now
