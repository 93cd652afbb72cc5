#!/usr/bin/env python3
"""
Column resolver - maps semantic fields to column indices.

KMA typ01 tables only sometimes carry a usable header (help=1 puts it in the
comment block, but not always with the same width as the data rows). Fields
are therefore resolved in two passes:

1. Header-name match against the first qualifying comment line.
2. Range statistics over the most recent rows for anything still unresolved.

The time column gets its own pattern-based fallback, including the case
where date and time are split into adjacent YYYYMMDD / HHMI tokens.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

import tz_utils
from ingest_errors import ColumnResolutionError
from table_normalizer import MODE_COMMA, NormalizedTable, parse_number, split_line

# Rows inspected by the statistical pass
STATS_WINDOW = 50

# A column must have at least this share of in-range values to be picked
MIN_FIT_FRACTION = 0.5

SOURCE_HEADER = "header"
SOURCE_STATS = "stats"
SOURCE_PATTERN = "pattern"
SOURCE_VALUE = "value"

_TIMESTAMP_RE = re.compile(r"^\d{12,14}$")
_DATE_RE = re.compile(r"^\d{8}$")
_HHMM_RE = re.compile(r"^\d{4}$")

logger = logging.getLogger(__name__)


@dataclass
class ColumnMap:
    """Semantic field name -> zero-based column index."""
    indices: dict = field(default_factory=dict)
    sources: dict = field(default_factory=dict)
    time_pair: Optional[tuple] = None

    def get(self, name: str) -> Optional[int]:
        return self.indices.get(name)

    def has(self, name: str) -> bool:
        if name == "time" and self.time_pair is not None:
            return True
        return name in self.indices

    @property
    def claimed(self) -> set:
        taken = set(self.indices.values())
        if self.time_pair is not None:
            taken.update(self.time_pair)
        return taken

    def assign(self, name: str, index: int, source: str):
        """Claim a column for a field. A column is never shared by two fields."""
        if index in self.claimed:
            raise ValueError(f"column {index} already claimed")
        self.indices[name] = index
        self.sources[name] = source

    def assign_time_pair(self, date_index: int, time_index: int):
        if date_index in self.claimed or time_index in self.claimed:
            raise ValueError("time pair overlaps a claimed column")
        self.time_pair = (date_index, time_index)
        self.sources["time"] = SOURCE_PATTERN

    def row_time(self, row: Sequence[str]) -> Optional[int]:
        """Observation time of a row in epoch seconds, if resolvable."""
        idx = self.get("time")
        if idx is not None and idx < len(row):
            return tz_utils.parse_kst_stamp(row[idx])
        if self.time_pair is not None:
            a, b = self.time_pair
            if b < len(row):
                return tz_utils.parse_kst_pair(row[a], row[b])
        return None

    def newest_last(self, rows: Sequence[Sequence[str]]) -> bool:
        """True if rows run oldest -> newest.

        Decided by majority of adjacent timestamp steps; defaults to
        newest-last (the usual typ01 order) when there is no time column.
        """
        stamps = [t for t in (self.row_time(r) for r in rows) if t is not None]
        ascending = sum(1 for a, b in zip(stamps, stamps[1:]) if b > a)
        descending = sum(1 for a, b in zip(stamps, stamps[1:]) if b < a)
        return ascending >= descending


def _in_range(lo: float, hi: float) -> Callable[[np.ndarray], np.ndarray]:
    return lambda values: (values >= lo) & (values <= hi)


def prefer_high_median(values: np.ndarray, numeric: np.ndarray, cmap: ColumnMap) -> float:
    """Secondary score: larger median wins (humidity vs. other 0-100 columns)."""
    finite = values[np.isfinite(values)]
    return float(np.median(finite)) if finite.size else float("-inf")


def prefer_below(reference: str) -> Callable[[np.ndarray, np.ndarray, ColumnMap], float]:
    """Secondary score: share of rows at or below the reference field's column."""
    def score(values: np.ndarray, numeric: np.ndarray, cmap: ColumnMap) -> float:
        ref_idx = cmap.get(reference)
        if ref_idx is None:
            return 0.0
        ref = numeric[:, ref_idx]
        both = np.isfinite(values) & np.isfinite(ref)
        if not both.any():
            return 0.0
        return float(np.count_nonzero(values[both] <= ref[both]) / np.count_nonzero(both))
    return score


def is_station_code(values: np.ndarray) -> np.ndarray:
    """Element-wise test for integer station codes (1..9999)."""
    return (values >= 1) & (values < 10000) & (np.mod(values, 1) == 0)


@dataclass(frozen=True)
class FieldSpec:
    """How to find and validate one semantic field.

    stats_range feeds the column statistics; valid_range is the plausibility
    band applied per row. Fields without a fit function are header-only.
    """
    name: str
    header_pattern: re.Pattern
    stats_range: Optional[tuple] = None
    valid_range: Optional[tuple] = None
    fit: Optional[Callable] = None
    secondary: Optional[Callable] = None

    def fit_mask(self, values: np.ndarray) -> Optional[np.ndarray]:
        if self.fit is not None:
            return self.fit(values)
        if self.stats_range is not None:
            return _in_range(*self.stats_range)(values)
        return None


def find_header_tokens(
    comments: Sequence[str],
    width: int,
    header_keys: Sequence[re.Pattern] = (),
    mode: str = "",
) -> Optional[list[str]]:
    """First comment line with the row width that mentions every header key."""
    for line in comments:
        tokens = split_line(line, mode) if mode == MODE_COMMA and "," in line else line.split()
        if len(tokens) != width:
            continue
        if all(any(key.search(t) for t in tokens) for key in header_keys):
            return tokens
    return None


def numeric_matrix(rows: Sequence[Sequence[str]]) -> np.ndarray:
    """Rows as a float matrix; text and sentinels become NaN."""
    if not rows:
        return np.empty((0, 0))
    data = []
    for row in rows:
        values = [parse_number(tok) for tok in row]
        data.append([np.nan if v is None else v for v in values])
    return np.array(data, dtype=float)


def recent_rows(rows: list, cmap: ColumnMap, window: int = STATS_WINDOW) -> list:
    """The most recent `window` rows, newest last."""
    ordered = rows if cmap.newest_last(rows) else list(reversed(rows))
    return ordered[-window:]


def _match_header(spec: FieldSpec, tokens: Sequence[str], cmap: ColumnMap) -> Optional[int]:
    for idx, token in enumerate(tokens):
        if idx in cmap.claimed:
            continue
        if spec.header_pattern.match(token.strip()):
            return idx
    return None


def resolve_time_by_pattern(rows: Sequence[Sequence[str]], cmap: ColumnMap):
    """Find a 12-14 digit timestamp column, else an adjacent date/time pair."""
    if not rows:
        return
    width = len(rows[0])
    best, best_share = None, 0.0
    for c in range(width):
        if c in cmap.claimed:
            continue
        hits = sum(1 for r in rows if _TIMESTAMP_RE.match(r[c].strip()))
        share = hits / len(rows)
        if share > best_share:
            best, best_share = c, share
    if best is not None and best_share >= MIN_FIT_FRACTION:
        cmap.assign("time", best, SOURCE_PATTERN)
        return

    for c in range(width - 1):
        if c in cmap.claimed or c + 1 in cmap.claimed:
            continue
        hits = sum(1 for r in rows
                   if _DATE_RE.match(r[c].strip()) and _HHMM_RE.match(r[c + 1].strip()))
        if hits / len(rows) >= MIN_FIT_FRACTION:
            cmap.assign_time_pair(c, c + 1)
            return


def resolve_station_by_value(rows: Sequence[Sequence[str]], cmap: ColumnMap, station: str):
    """Claim the leftmost free column whose every token equals the queried station."""
    if not rows or not station:
        return
    for c in range(len(rows[0])):
        if c in cmap.claimed:
            continue
        if all(c < len(r) and r[c].strip() == station for r in rows):
            cmap.assign("station", c, SOURCE_VALUE)
            return


def _pick_by_stats(spec: FieldSpec, numeric: np.ndarray, cmap: ColumnMap) -> Optional[int]:
    n_rows, n_cols = numeric.shape
    if n_rows == 0:
        return None
    best, best_score = None, None
    for c in range(n_cols):
        if c in cmap.claimed:
            continue
        values = numeric[:, c]
        mask = spec.fit_mask(values)
        if mask is None:
            return None
        fraction = np.count_nonzero(mask & np.isfinite(values)) / n_rows
        if fraction < MIN_FIT_FRACTION:
            continue
        secondary = spec.secondary(values, numeric, cmap) if spec.secondary else 0.0
        score = (fraction, secondary)
        # strict comparison keeps the leftmost column on ties
        if best_score is None or score > best_score:
            best, best_score = c, score
    return best


def resolve_columns(
    table: NormalizedTable,
    fields: Sequence[FieldSpec],
    header_keys: Sequence[re.Pattern] = (),
    required: Sequence[str] = (),
    required_any: Sequence[Sequence[str]] = (),
    window: int = STATS_WINDOW,
    skip_stats: Sequence[str] = (),
    station_value: Optional[str] = None,
) -> ColumnMap:
    """Build a ColumnMap for a table.

    Args:
        table: Normalized table
        fields: Field specs in resolution priority order ("time" handled specially)
        header_keys: Patterns a comment line must contain to count as the header
        required: Fields that must resolve
        required_any: Groups of which at least one member must resolve
        window: Number of recent rows used by the statistical pass
        skip_stats: Fields that may only be resolved from the header
        station_value: Station code every row carries (single-station query);
            its column is claimed before the statistical pass

    Raises:
        ColumnResolutionError: a required field (or group) is unresolved
    """
    cmap = ColumnMap()
    header = find_header_tokens(table.comments, table.width, header_keys, table.mode)

    if header:
        logger.debug("Header tokens: %s", header)
        for spec in fields:
            idx = _match_header(spec, header, cmap)
            if idx is not None:
                cmap.assign(spec.name, idx, SOURCE_HEADER)

    if not cmap.has("time"):
        resolve_time_by_pattern(table.rows, cmap)

    if station_value and not cmap.has("station"):
        resolve_station_by_value(table.rows, cmap, station_value)

    recent = recent_rows(table.rows, cmap, window)
    numeric = numeric_matrix(recent)
    for spec in fields:
        if spec.name == "time" or cmap.has(spec.name) or spec.name in skip_stats:
            continue
        idx = _pick_by_stats(spec, numeric, cmap)
        if idx is not None:
            cmap.assign(spec.name, idx, SOURCE_STATS)

    missing = [name for name in required if not cmap.has(name)]
    for group in required_any:
        if not any(cmap.has(name) for name in group):
            missing.append("|".join(group))
    if missing:
        raise ColumnResolutionError(f"required columns not found: {', '.join(missing)}")

    logger.debug("Resolved columns: %s (time_pair=%s)", cmap.indices, cmap.time_pair)
    return cmap
