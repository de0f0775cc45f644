"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

PARTICIPANT_COLORS: List[str] = [
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#96CEB4",
    "#FFEAA7",
    "#DDA0DD",
    "#98D8C8",
    "#F7DC6F",
]


def participant_color(index: int) -> str:
    """Pick a display color round-robin from the palette."""
    return PARTICIPANT_COLORS[index % len(PARTICIPANT_COLORS)]


def equal_shares(count: int) -> List[float]:
    """Share percentages for an equal split between ``count`` participants."""
    if count <= 0:
        return []
    return [100.0 / count] * count


def month_key(value: dt.datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def from_unix_timestamp(ts: Optional[int | float | str]) -> Optional[dt.datetime]:
    """Convert a Stripe epoch timestamp into a naive UTC datetime.

    Returns ``None`` when the value is missing or cannot be parsed.
    """
    if ts is None or ts == "":
        return None
    try:
        return dt.datetime.fromtimestamp(int(ts), tz=dt.timezone.utc).replace(tzinfo=None)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
