"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone

SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_timestamp() -> str:
    """Current UTC time in the format SQLite's ``CURRENT_TIMESTAMP`` produces."""
    return datetime.now(tz=timezone.utc).strftime(SQLITE_TIMESTAMP_FORMAT)
