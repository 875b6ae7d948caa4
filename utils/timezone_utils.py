"""
Timezone utilities
All stored timestamps are UTC; provider timestamps and user-facing dates are WIB
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

import pytz

logger = logging.getLogger(__name__)

LOCAL_TIMEZONE = pytz.timezone("Asia/Jakarta")

_DATETIME_FORMATS = [
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M:%S.%f',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
]

_MONTHS_ID = [
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
]


def utc_now() -> datetime:
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def to_utc(dt: Union[datetime, str, int, float], naive_tz: Optional[pytz.BaseTzInfo] = None) -> datetime:
    """
    Convert a datetime, ISO/SQL string or unix timestamp to an aware UTC datetime

    Naive values are interpreted in naive_tz (UTC when not given).
    """
    if isinstance(dt, bool):
        raise ValueError(f"Cannot convert {dt!r} to datetime")

    if isinstance(dt, (int, float)):
        return datetime.fromtimestamp(dt, timezone.utc)

    if isinstance(dt, str):
        dt = _parse_datetime_string(dt)

    if isinstance(dt, datetime):
        if dt.tzinfo is None:
            if naive_tz is None:
                return dt.replace(tzinfo=timezone.utc)
            return naive_tz.localize(dt).astimezone(timezone.utc)
        return dt.astimezone(timezone.utc)

    raise ValueError(f"Cannot convert {type(dt)} to UTC datetime: {dt}")


def _parse_datetime_string(dt_str: str) -> datetime:
    dt_str = dt_str.strip()
    if not dt_str:
        raise ValueError("Empty datetime string")

    try:
        return datetime.fromisoformat(dt_str.replace('Z', '+00:00'))
    except ValueError:
        pass

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(dt_str, fmt)
        except ValueError:
            continue

    raise ValueError(f"Could not parse datetime string: {dt_str}")


def parse_provider_timestamp(value: Union[str, int, float]) -> datetime:
    """Provider timestamps without an offset are local (WIB) wall-clock times"""
    return to_utc(value, naive_tz=LOCAL_TIMEZONE)


def days_since(dt: Union[datetime, str], now: Optional[datetime] = None) -> int:
    """Whole days elapsed since dt (floored)"""
    now = to_utc(now) if now is not None else utc_now()
    return int((now - to_utc(dt)).total_seconds() // 86400)


def format_local(dt: Union[datetime, str]) -> str:
    """Format as e.g. '19 Oktober 2026 15.30' in WIB"""
    local = to_utc(dt).astimezone(LOCAL_TIMEZONE)
    return f"{local.day} {_MONTHS_ID[local.month - 1]} {local.year} {local.strftime('%H.%M')}"
