"""Timestamps for stored records."""
from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time, naive, as SQLite hands it back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
