"""
Shared utility functions for the store aggregation service.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from hashlib import sha256
from itertools import zip_longest
from typing import Any, List, Optional, Sequence, TypeVar

from dateutil import parser as dateparser

T = TypeVar("T")


def now_utc() -> datetime:
    """
    Get current UTC datetime with timezone information.

    Returns:
        Current UTC datetime
    """
    return datetime.now(timezone.utc)


def to_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if moment.tzinfo:
        return moment.astimezone(timezone.utc)
    return moment.replace(tzinfo=timezone.utc)


def parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a date string, epoch timestamp or datetime and convert to UTC.

    Args:
        value: Date string in various formats, epoch seconds/milliseconds,
            datetime, or None

    Returns:
        UTC datetime object, or current UTC time if input is None/empty
    """
    if value is None or value == "":
        return now_utc()
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)):
        # Play Store reports some timestamps in milliseconds
        seconds = value / 1000.0 if value > 10_000_000_000 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return to_utc(dateparser.parse(str(value)))


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize whitespace in text content.

    Args:
        text: Input text string (can be None)

    Returns:
        Normalized text with single spaces and trimmed edges
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", str(text)).strip()


def generate_id(*parts: str) -> str:
    """
    Generate a deterministic short ID from multiple string parts.

    Args:
        *parts: Variable number of string arguments

    Returns:
        16-character hexadecimal string
    """
    key = "|".join(parts).encode("utf-8")
    return sha256(key).hexdigest()[:16]


def format_percentage(count: int, total: int) -> str:
    """Format ``count`` as a share of ``total`` with one decimal, e.g. ``"42.0%"``."""
    if total <= 0:
        return "0.0%"
    return f"{(count / total) * 100:.1f}%"


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (unlike ``round``)."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def interleave(*sequences: Sequence[T]) -> List[T]:
    """Merge sequences by alternating their items: a1, b1, a2, b2, ..."""
    sentinel = object()
    merged: List[T] = []
    for group in zip_longest(*sequences, fillvalue=sentinel):
        merged.extend(item for item in group if item is not sentinel)
    return merged
