"""UTC time helpers.

SQLite hands back naive datetimes for timezone-aware columns; every value
read from the database passes through ``as_utc`` before comparison.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
