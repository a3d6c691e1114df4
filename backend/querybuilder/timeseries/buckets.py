"""
Bucket Sizing & Normalization
=============================

Pure helpers for turning a time range into chart buckets.

WHY THIS FILE EXISTS
--------------------
Every chart needs a bucket width that keeps the point count readable no
matter how wide the range is. The width must be deterministic (same range,
same buckets) so that independently executed queries line up, and so that a
fallback window can be re-bucketed without surprises.

Bucket strings come back from the backend in more than one format
("2026-01-01 00:00:00" or "2026-01-01T00:00:00Z"). Everything downstream
keys rows by the normalized ISO form produced by `to_iso_bucket()`.

SIZING RULE
-----------
    raw = ceil(range_seconds / 40)          # target ~40 points
    width = first ladder step >= raw        # 60, 300, 900, 3600, 14400, 86400

RELATED FILES
-------------
- querybuilder/timeseries/windows.py: Applies the sizing per execution window
- querybuilder/timeseries/merge.py: Keys rows by normalized bucket
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

TARGET_POINTS = 40
BUCKET_LADDER_SECONDS = (60, 300, 900, 3600, 14400, 86400)
DEFAULT_BUCKET_SECONDS = 60

# UTC "YYYY-MM-DD HH:MM:SS[.fff]" as produced by the analytics backend
WINDOW_DATETIME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}) (\d{2}:\d{2}:\d{2})(\.\d+)?$")
STEP_SHORTHAND_RE = re.compile(r"^(\d+)([mh])$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

TimeValue = Union[str, datetime, None]


def parse_utc(value: TimeValue) -> Optional[datetime]:
    """
    Parse a window boundary or bucket into an aware UTC datetime.

    Accepts "YYYY-MM-DD HH:MM:SS[.fff]" (UTC, no offset), ISO-8601 strings
    (with "Z" or an explicit offset) and datetimes. Naive values are UTC.

    RETURNS:
        Aware datetime, or None if the value is missing or unparsable
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None

        match = WINDOW_DATETIME_RE.match(raw)
        if match:
            raw = f"{match.group(1)}T{match.group(2)}{match.group(3) or ''}"
        elif raw.endswith("Z") or raw.endswith("z"):
            raw = raw[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_epoch_ms(value: datetime) -> int:
    return (value - _EPOCH) // _ONE_MS


def _from_epoch_ms(epoch_ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=epoch_ms)


def format_iso_bucket(value: datetime) -> str:
    """Format an aware datetime as "YYYY-MM-DDTHH:MM:SS.mmmZ"."""
    utc = value.astimezone(timezone.utc)
    return f"{utc.strftime('%Y-%m-%dT%H:%M:%S')}.{utc.microsecond // 1000:03d}Z"


def format_window_time(value: datetime) -> str:
    """Format a datetime as a window boundary ("YYYY-MM-DD HH:MM:SS", UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


def to_iso_bucket(value: TimeValue) -> str:
    """
    Normalize a bucket timestamp to ISO-8601 UTC with milliseconds.

    EXAMPLES:
        to_iso_bucket("2026-02-01 00:00:00")   -> "2026-02-01T00:00:00.000Z"
        to_iso_bucket("2026-02-01T00:00:00Z")  -> "2026-02-01T00:00:00.000Z"
        to_iso_bucket("not a time")            -> "not a time"
    """
    parsed = parse_utc(value)
    if parsed is None:
        return value.strip() if isinstance(value, str) else str(value)
    return format_iso_bucket(parsed)


def range_seconds(start: TimeValue, end: TimeValue) -> Optional[float]:
    """Seconds between two boundaries, or None if either is unparsable."""
    start_dt = parse_utc(start)
    end_dt = parse_utc(end)
    if start_dt is None or end_dt is None:
        return None
    return (_to_epoch_ms(end_dt) - _to_epoch_ms(start_dt)) / 1000


def compute_bucket_seconds(start: TimeValue, end: TimeValue) -> int:
    """
    Choose a bucket width for a time range.

    WHAT: Targets ~40 points, snapping up through a fixed ladder.

    WHY: Deterministic and total - malformed or empty ranges fall back to
    the finest bucket instead of raising.

    EXAMPLE:
        compute_bucket_seconds("2026-01-01 00:00:00", "2026-01-02 00:00:00")  # 3600
    """
    seconds = range_seconds(start, end)
    if seconds is None or seconds <= 0:
        return DEFAULT_BUCKET_SECONDS

    raw = math.ceil(max(seconds, 1) / TARGET_POINTS)
    for step in BUCKET_LADDER_SECONDS:
        if raw <= step:
            return step
    return BUCKET_LADDER_SECONDS[-1]


def floor_to_bucket(value: datetime, bucket_seconds: int) -> datetime:
    """Floor a datetime to the start of its bucket (epoch-aligned)."""
    bucket_ms = bucket_seconds * 1000
    return _from_epoch_ms((_to_epoch_ms(value) // bucket_ms) * bucket_ms)


def build_bucket_timeline(start: TimeValue, end: TimeValue, bucket_seconds: int) -> List[str]:
    """
    List every bucket boundary between start and end, inclusive.

    The first entry is the bucket containing `start`, the last the bucket
    containing `end`. Empty when either side is missing or end < start.
    """
    start_dt = parse_utc(start)
    end_dt = parse_utc(end)
    if start_dt is None or end_dt is None or end_dt < start_dt or bucket_seconds <= 0:
        return []

    bucket_ms = bucket_seconds * 1000
    cursor = _to_epoch_ms(floor_to_bucket(start_dt, bucket_seconds))
    last = _to_epoch_ms(floor_to_bucket(end_dt, bucket_seconds))

    buckets: List[str] = []
    while cursor <= last:
        buckets.append(format_iso_bucket(_from_epoch_ms(cursor)))
        cursor += bucket_ms
    return buckets


def shift_bucket(bucket: str, offset_seconds: float) -> str:
    """Move a bucket by an offset; unparsable buckets are returned as-is."""
    parsed = parse_utc(bucket)
    if parsed is None:
        return bucket
    return format_iso_bucket(parsed + timedelta(seconds=offset_seconds))


def parse_step_shorthand(text: Optional[str]) -> Optional[int]:
    """
    Parse a step interval like "5m" or "1h" into seconds.

    Only "<int>m" (minutes) and "<int>h" (hours) are valid. Anything else,
    including a zero amount, returns None.
    """
    if text is None:
        return None

    match = STEP_SHORTHAND_RE.match(text.strip().lower())
    if not match:
        return None

    amount = int(match.group(1))
    if amount <= 0:
        return None

    return amount * 60 if match.group(2) == "m" else amount * 3600
