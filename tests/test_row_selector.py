#!/usr/bin/env python3
"""
Tests for row_selector module.
"""

import re
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
from column_resolver import SOURCE_HEADER, ColumnMap, FieldSpec
from derived_metrics import Derivation
from ingest_errors import NoValidRowError
from row_selector import (
    TIME_FROM_CLOCK, TIME_FROM_OBSERVATION, extract_values, select_row, within,
)
from table_normalizer import NormalizedTable
from tz_utils import parse_kst_stamp

TIME = FieldSpec("time", re.compile("^TM$"))
TEMP = FieldSpec("temperature", re.compile("^TA$"), valid_range=(-60, 60))
HUMID = FieldSpec("humidity", re.compile("^HM$"), valid_range=(0, 100))
FIELDS = (TIME, TEMP, HUMID)
NOW_TS = 1_750_000_000


def passthrough(values, row, cmap):
    return Derivation(fields=dict(values), method="test")


def make_map(with_time=True):
    cmap = ColumnMap()
    if with_time:
        cmap.assign("time", 0, SOURCE_HEADER)
    cmap.assign("temperature", 1, SOURCE_HEADER)
    cmap.assign("humidity", 2, SOURCE_HEADER)
    return cmap


class TestHelpers:
    """Tests for within and extract_values."""

    def test_within(self):
        assert within(5, None)
        assert within(0, (0, 100))
        assert not within(101, (0, 100))

    def test_extract_values_masks_out_of_band(self):
        values, out_of_band = extract_values(["202501011200", "70.0", "-9"], make_map(), FIELDS)
        assert values == {"temperature": None, "humidity": None}
        assert out_of_band == ["temperature"]


class TestSelectRow:
    """Tests for select_row."""

    def test_newest_row_wins_ascending(self):
        table = NormalizedTable(rows=[
            ["202501011100", "1.0", "50"],
            ["202501011200", "2.0", "55"],
        ])
        reading = select_row(table, make_map(), FIELDS, passthrough, NOW_TS,
                             required=("temperature",))
        assert reading.fields["temperature"] == 2.0
        assert reading.timestamp == parse_kst_stamp("202501011200")
        assert reading.time_source == TIME_FROM_OBSERVATION

    def test_newest_row_wins_descending(self):
        table = NormalizedTable(rows=[
            ["202501011300", "3.0", "50"],
            ["202501011200", "2.0", "55"],
            ["202501011100", "1.0", "60"],
        ])
        reading = select_row(table, make_map(), FIELDS, passthrough, NOW_TS)
        assert reading.fields["temperature"] == 3.0

    def test_skips_rows_with_sentinels(self):
        table = NormalizedTable(rows=[
            ["202501011100", "1.0", "50"],
            ["202501011200", "-99.0", "55"],
        ])
        reading = select_row(table, make_map(), FIELDS, passthrough, NOW_TS,
                             required=("temperature",))
        assert reading.fields["temperature"] == 1.0

    def test_required_any(self):
        table = NormalizedTable(rows=[
            ["202501011100", "1.0", "50"],
            ["202501011200", "2.0", "-9"],
        ])
        reading = select_row(table, make_map(), FIELDS, passthrough, NOW_TS,
                             required_any=(("humidity",),))
        assert reading.fields["humidity"] == 50.0

    def test_derive_can_decline(self):
        def only_cold(values, row, cmap):
            if values["temperature"] > 1.5:
                return None
            return passthrough(values, row, cmap)

        table = NormalizedTable(rows=[
            ["202501011100", "1.0", "50"],
            ["202501011200", "2.0", "55"],
        ])
        reading = select_row(table, make_map(), FIELDS, only_cold, NOW_TS)
        assert reading.fields["temperature"] == 1.0

    def test_clock_fallback_without_time_column(self):
        table = NormalizedTable(rows=[["x", "2.0", "55"]])
        reading = select_row(table, make_map(with_time=False), FIELDS, passthrough, NOW_TS)
        assert reading.timestamp == NOW_TS
        assert reading.time_source == TIME_FROM_CLOCK

    def test_no_valid_row(self):
        table = NormalizedTable(rows=[["202501011200", "-9", "-9"]])
        with pytest.raises(NoValidRowError):
            select_row(table, make_map(), FIELDS, passthrough, NOW_TS,
                       required=("temperature",))

    def test_derivation_tags_copied(self):
        def tagged(values, row, cmap):
            return Derivation(fields={"x": 1.0}, method="m", tags={"rh_src": "hm"})

        table = NormalizedTable(rows=[["202501011200", "2.0", "55"]])
        reading = select_row(table, make_map(), FIELDS, tagged, NOW_TS)
        assert reading.method == "m"
        assert reading.tags == {"rh_src": "hm"}
