#!/usr/bin/env python3
"""
Candidate query times for KMA endpoints.

KMA publishes surface and UV observations on 10-minute boundaries and
nowcasts on half-hour boundaries. The newest slot is often not available
yet, so the loggers walk backward from "now" one boundary at a time.

Usage:
    times = time_candidates(now_utc(), granularity_minutes=10, lookback_steps=18)
    for window in iter_candidate_windows(times, VARIANTS, stations=["108", "0"]):
        ...
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterator, Optional, Sequence

from tz_utils import COMPACT_FORMAT, KST, to_kst


@dataclass(frozen=True)
class EndpointVariant:
    """One request-format flavour of the same endpoint (e.g. help on/off)."""
    name: str
    params: dict = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class CandidateWindow:
    """A single (query time, endpoint variant, station scope) attempt."""
    tm: str
    variant: EndpointVariant
    station: str
    tm_start: Optional[str] = None

    @property
    def label(self) -> str:
        span = f"{self.tm_start}-{self.tm}" if self.tm_start else self.tm
        return f"stn={self.station} tm={span} {self.variant.name}"


def snap_to_boundary(now: datetime, granularity_minutes: int, tz: tzinfo = KST) -> datetime:
    """Latest granularity boundary at or before now, in the source time zone."""
    if granularity_minutes <= 0:
        raise ValueError("granularity_minutes must be positive")
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    local = local.replace(second=0, microsecond=0)
    minute_of_day = local.hour * 60 + local.minute
    return local - timedelta(minutes=minute_of_day % granularity_minutes)


def time_candidates(
    now: datetime,
    granularity_minutes: int = 10,
    lookback_steps: int = 18,
    tz: tzinfo = KST,
    fmt: str = COMPACT_FORMAT,
) -> list[str]:
    """Ordered, deduplicated query times, most recent first.

    The first entry is the latest boundary at or before now; each following
    entry is exactly one granularity step earlier. Yields lookback_steps + 1
    values before deduplication.
    """
    if lookback_steps < 0:
        raise ValueError("lookback_steps must not be negative")
    base = snap_to_boundary(now, granularity_minutes, tz)
    out: list[str] = []
    seen = set()
    for step in range(lookback_steps + 1):
        value = (base - timedelta(minutes=step * granularity_minutes)).strftime(fmt)
        if value not in seen:
            seen.add(value)
            out.append(value)
    return out


def span_start(tm: str, span_minutes: int, fmt: str = COMPACT_FORMAT) -> str:
    """Start of a range query ending at tm (both in the source's local time)."""
    end = datetime.strptime(tm, fmt)
    return (end - timedelta(minutes=span_minutes)).strftime(fmt)


def iter_candidate_windows(
    times: Sequence[str],
    variants: Sequence[EndpointVariant],
    stations: Sequence[str],
    span_minutes: int = 0,
) -> Iterator[CandidateWindow]:
    """Cross station scopes x time candidates x endpoint variants.

    Nesting order is station, then time, then variant, so a wanted station is
    exhausted before falling back to a wider scope.
    """
    for station in stations:
        for tm in times:
            tm_start = span_start(tm, span_minutes) if span_minutes > 0 else None
            for variant in variants:
                yield CandidateWindow(tm=tm, variant=variant, station=station, tm_start=tm_start)


def ultra_base_time(now: datetime) -> tuple[str, str]:
    """Issue slot (base_date, base_time) for the short-range forecast.

    Before minute 45 the previous hour's HH00 run is the newest published
    one, from minute 45 onward the current HH30 run is.
    """
    local = to_kst(now).replace(second=0, microsecond=0)
    if local.minute < 45:
        base = (local - timedelta(hours=1)).replace(minute=0)
    else:
        base = local.replace(minute=30)
    return base.strftime("%Y%m%d"), base.strftime("%H%M")


def split_slot(tm: str) -> tuple[str, str]:
    """Split a YYYYMMDDHHMI candidate into (base_date, base_time)."""
    return tm[:8], tm[8:12]


if __name__ == "__main__":
    from tz_utils import now_utc

    current = now_utc()
    print(f"Now (KST): {to_kst(current).isoformat()}")
    print(f"10-min candidates: {time_candidates(current, 10, 6)}")
    print(f"30-min candidates: {time_candidates(current, 30, 3)}")
    print(f"Forecast base: {ultra_base_time(current)}")
