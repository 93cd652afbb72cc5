#!/usr/bin/env python3
"""
Time zone helpers for KMA data.

KMA reports and expects every timestamp in Korea Standard Time (UTC+9, no DST).
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

KST = timezone(timedelta(hours=9), name="KST")

COMPACT_FORMAT = "%Y%m%d%H%M"

_COMPACT_RE = re.compile(r"^\d{12,14}$")
_DATE_RE = re.compile(r"^\d{8}$")
_HHMM_RE = re.compile(r"^\d{4}$")


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_kst(value: datetime) -> datetime:
    """Convert an aware datetime to KST. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(KST)


def format_kst(value: datetime, fmt: str = COMPACT_FORMAT) -> str:
    """Format a datetime in KST (default YYYYMMDDHHMI)."""
    return to_kst(value).strftime(fmt)


def parse_kst_stamp(raw: Optional[str]) -> Optional[int]:
    """Parse a KST timestamp token into epoch seconds.

    Accepts compact YYYYMMDDHHMI[SS] tokens as well as ISO-like
    'YYYY-MM-DD HH:MM[:SS]' strings (KST unless an offset is given).

    Returns:
        Epoch seconds, or None if the token is not a timestamp
    """
    if not raw:
        return None
    s = str(raw).strip()
    if _COMPACT_RE.match(s):
        padded = s if len(s) == 14 else s[:12] + "00"
        try:
            parsed = datetime.strptime(padded, "%Y%m%d%H%M%S")
        except ValueError:
            return None
        return int(parsed.replace(tzinfo=KST).timestamp())

    try:
        parsed = datetime.fromisoformat(s.replace(" ", "T", 1))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=KST)
    return int(parsed.timestamp())


def parse_kst_pair(date_token: Optional[str], time_token: Optional[str]) -> Optional[int]:
    """Parse a split YYYYMMDD + HHMI token pair into epoch seconds."""
    if not date_token or not time_token:
        return None
    date_token = date_token.strip()
    time_token = time_token.strip()
    if not _DATE_RE.match(date_token) or not _HHMM_RE.match(time_token):
        return None
    return parse_kst_stamp(date_token + time_token)


def kst_epoch(yyyymmdd: str, hhmm: str) -> int:
    """Epoch seconds for a KST base_date/base_time pair (raises on bad input)."""
    parsed = datetime.strptime(f"{yyyymmdd}{hhmm[:4]}", COMPACT_FORMAT)
    return int(parsed.replace(tzinfo=KST).timestamp())
