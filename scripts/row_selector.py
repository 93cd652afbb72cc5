#!/usr/bin/env python3
"""
Row selector - picks the newest plausible row of a resolved table.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from column_resolver import ColumnMap, FieldSpec
from derived_metrics import Derivation
from ingest_errors import NoValidRowError
from table_normalizer import NormalizedTable, parse_number

TIME_FROM_OBSERVATION = "observation"
TIME_FROM_CLOCK = "clock"

# derive(values, row, column_map) -> Derivation | None
DeriveFn = Callable[[dict, Sequence[str], ColumnMap], Optional[Derivation]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedReading:
    """One accepted observation."""
    timestamp: int
    fields: dict
    method: str
    time_source: str = TIME_FROM_OBSERVATION
    tags: dict = field(default_factory=dict)


def within(value: float, band: Optional[tuple]) -> bool:
    if band is None:
        return True
    lo, hi = band
    return lo <= value <= hi


def extract_values(row: Sequence[str], cmap: ColumnMap,
                   fields: Sequence[FieldSpec]) -> tuple[dict, list]:
    """Numeric values for every resolved field of a row.

    Sentinels are already absent (None). Values outside a field's validity
    band are also reported as absent and listed in the second return value.

    Returns:
        (values by field name, names of fields that failed their band)
    """
    values = {}
    out_of_band = []
    for spec in fields:
        idx = cmap.get(spec.name)
        if spec.name == "time" or idx is None or idx >= len(row):
            continue
        value = parse_number(row[idx])
        if value is not None and not within(value, spec.valid_range):
            out_of_band.append(spec.name)
            value = None
        values[spec.name] = value
    return values, out_of_band


def select_row(
    table: NormalizedTable,
    cmap: ColumnMap,
    fields: Sequence[FieldSpec],
    derive: DeriveFn,
    now_ts: int,
    required: Sequence[str] = (),
    required_any: Sequence[Sequence[str]] = (),
) -> ResolvedReading:
    """Scan rows newest -> oldest and return the first acceptable one.

    Raises:
        NoValidRowError: no row passes the checks
    """
    rows = table.rows
    order = range(len(rows) - 1, -1, -1) if cmap.newest_last(rows) else range(len(rows))

    rejected = 0
    for k in order:
        row = rows[k]
        values, out_of_band = extract_values(row, cmap, fields)

        if any(values.get(name) is None for name in required):
            rejected += 1
            continue
        if any(all(values.get(name) is None for name in group) for group in required_any):
            rejected += 1
            continue

        derived = derive(values, row, cmap)
        if derived is None:
            rejected += 1
            continue

        ts = cmap.row_time(row)
        time_source = TIME_FROM_OBSERVATION
        if ts is None:
            ts = now_ts
            time_source = TIME_FROM_CLOCK

        if out_of_band:
            logger.debug("Row %d: dropped out-of-band %s", k, ", ".join(out_of_band))
        logger.debug("Picked row %d after %d rejected: %s", k, rejected, row)
        return ResolvedReading(
            timestamp=ts,
            fields=dict(derived.fields),
            method=derived.method,
            time_source=time_source,
            tags=dict(derived.tags),
        )

    raise NoValidRowError(f"no valid row ({rejected} rejected)")
