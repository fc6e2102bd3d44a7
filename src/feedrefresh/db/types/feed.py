"""Feed table mapped with SQLModel."""

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Column, Text, text
from sqlmodel import Field, SQLModel

from .timezone_aware_datetime import TimezoneAwareDatetime

SQLITE_DATETIME_NOW = "(datetime('now'))"


class Feed(SQLModel, table=True):
    """ORM model representing a subscribed feed.

    Attributes:
        id: The feed identifier.
        url: The source URL the feed is fetched from.
        title: Optional human-readable title.
        is_enabled: Whether the feed takes part in periodic refreshes.

        Time Keeping:
            last_fetched_at: Last successful fetch (UTC), None if never fetched.
            created_at: When the feed was created (UTC).
            updated_at: When the feed was last updated (UTC).

        Error Tracking:
            last_error: Message of the most recent failed fetch, cleared on success.
    """

    id: str = Field(primary_key=True)
    url: str = Field(index=True, unique=True)
    title: str | None = None
    is_enabled: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, index=True, server_default="1"),
    )

    # ----------------------------------------------------- time keeping ----
    last_fetched_at: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime, index=True)
    )
    created_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )

    # ------------------------------------------------------ error tracking
    last_error: str | None = Field(default=None, sa_column=Column(Text))

    def model_dump_for_insert(self) -> dict[str, Any]:
        """Dump the feed for an INSERT, leaving unset timestamps to the database."""
        dump = self.model_dump()
        for key in ("created_at", "updated_at"):
            if dump.get(key) is None:
                dump.pop(key, None)
        return dump
