"""Utility functions for time handling.

The ledger stores naive local wall-clock timestamps ("YYYY-MM-DD HH:MM:SS"),
matching what the relay controllers and the CIMIS date windows use. Only
diagnostic timestamps (MQTT health) are UTC-aware.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Return the current local wall-clock time, naive, truncated to seconds."""
    return datetime.now().replace(microsecond=0)


def parse_run_time(value: str) -> datetime:
    """
    Parse a run date given on the command line.

    Accepts ``YYYY-MM-DD`` (taken as local midnight) or any ISO-8601
    date-time; aware values are converted to naive local time.

    Raises:
        ValueError: the value is not a recognised date
    """
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed
