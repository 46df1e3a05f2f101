"""
Display formatting for asset and hierarchy payloads.
"""

import json
import math
from datetime import date, datetime
from typing import Any, Optional, Union

DateLike = Union[date, datetime, str, None]


def format_duration(seconds: Optional[float]) -> Optional[str]:
    """Format seconds as m:ss, or h:mm:ss from one hour up."""
    if seconds is None:
        return None
    try:
        seconds = float(seconds)
    except (TypeError, ValueError):
        return None
    if math.isnan(seconds) or seconds <= 0:
        return None

    hrs = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hrs > 0:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def format_file_size(size_bytes: Optional[int]) -> Optional[str]:
    """Format a byte count in MB, switching to GB from 1000 MB."""
    if not size_bytes:
        return None
    mb = size_bytes / (1024 * 1024)
    if mb >= 1000:
        return f"{mb / 1024:.2f} GB"
    return f"{mb:.2f} MB"


def _coerce_datetime(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_date(value: DateLike) -> Optional[str]:
    """ISO calendar date (YYYY-MM-DD)."""
    parsed = _coerce_datetime(value)
    return parsed.date().isoformat() if parsed else None


def format_datetime(value: DateLike) -> Optional[str]:
    """ISO 8601 timestamp."""
    parsed = _coerce_datetime(value)
    return parsed.isoformat() if parsed else None


def full_name(first: Optional[str], last: Optional[str]) -> Optional[str]:
    """Join name parts, returning None when both are empty."""
    name = " ".join(part for part in (first, last) if part)
    return name or None


def media_duration(media_info: Any) -> Optional[str]:
    """
    Formatted duration from an asset's media_info blob.

    PostgreSQL hands JSON columns back as dicts, SQLite as text; both are
    accepted. Upload tools disagree on the key casing.
    """
    if isinstance(media_info, (str, bytes)):
        try:
            media_info = json.loads(media_info)
        except ValueError:
            return None
    if not isinstance(media_info, dict):
        return None

    raw = media_info.get("duration") or media_info.get("Duration")
    if not raw:
        return None
    try:
        return format_duration(float(raw))
    except (TypeError, ValueError):
        return None
