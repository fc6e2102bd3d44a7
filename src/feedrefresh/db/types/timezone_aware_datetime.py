"""Timezone-aware datetime column type for SQLite."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, TypeDecorator


class TimezoneAwareDatetime(TypeDecorator[datetime]):
    """SQLAlchemy type that only ever stores and returns aware UTC datetimes.

    SQLite has no timezone support, so values are normalized to naive UTC on
    the way in and re-tagged with UTC on the way out. Naive values are
    rejected rather than guessed at.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, dialect: Any
    ) -> datetime | None:
        """Normalize an aware datetime to naive UTC for storage.

        Raises:
            TypeError: If the datetime is naive.
        """
        if value is None:
            return None
        if not value.tzinfo or value.tzinfo.utcoffset(value) is None:
            raise TypeError("tzinfo is required")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(
        self, value: datetime | None, dialect: Any
    ) -> datetime | None:
        """Tag a stored naive UTC datetime as UTC."""
        if value is None:
            return None
        return value.replace(tzinfo=UTC)
