from __future__ import annotations

from datetime import UTC, datetime

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def normalize(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    # Fixed precision keeps lexical order equal to chronological order in sqlite.
    return normalize(value).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    return normalize(datetime.fromisoformat(value))
