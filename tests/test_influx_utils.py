#!/usr/bin/env python3
"""
Tests for influx_utils module.

Line protocol formatting and the retrying writer (HTTP mocked).
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
from influx_utils import (
    escape_key, escape_measurement, format_field_value, format_point, write_lines,
    write_url,
)
from ingest_config import SinkConfig
from ingest_errors import InfluxWriteError

SINK = SinkConfig(url="http://influx:8086", token="tok", org="home", bucket="wx")


def response(status, text=""):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.text = text
    return r


class TestLineProtocol:
    """Tests for escaping and point formatting."""

    def test_escape_key(self):
        assert escape_key("a b,c=d") == "a\\ b\\,c\\=d"

    def test_escape_measurement_keeps_equals(self):
        assert escape_measurement("life index,x=1") == "life\\ index\\,x=1"

    @pytest.mark.parametrize("value,expected", [
        (True, "true"),
        (3, "3i"),
        (2.5, "2.5"),
        ('say "hi"', '"say \\"hi\\""'),
    ])
    def test_field_values(self, value, expected):
        assert format_field_value(value) == expected

    def test_format_point(self):
        line = format_point(
            "life_index",
            {"source": "kmahub-asos", "loc": "seoul", "stn": "108", "method": "wc", "rh_src": ""},
            {"temp_c": 5.0, "rh_pct": None, "feels_c": 2.49, "base_time_s": 1736910000},
            1736910000,
        )
        assert line == (
            "life_index,source=kmahub-asos,loc=seoul,stn=108,method=wc "
            "temp_c=5.0,feels_c=2.49,base_time_s=1736910000i 1736910000"
        )

    def test_format_point_without_fields_raises(self):
        with pytest.raises(ValueError):
            format_point("m", {"a": "b"}, {"x": None})

    def test_write_url(self):
        assert write_url(SINK) == "http://influx:8086/api/v2/write"


class TestWriteLines:
    """Tests for write_lines."""

    def test_success(self):
        session = MagicMock()
        session.post.return_value = response(204)
        assert write_lines(SINK, ["m x=1i 1"], session=session) == 1
        _, kwargs = session.post.call_args
        assert kwargs["params"] == {"org": "home", "bucket": "wx", "precision": "s"}
        assert kwargs["headers"]["Authorization"] == "Token tok"
        assert kwargs["data"] == b"m x=1i 1"

    def test_empty_is_noop(self):
        session = MagicMock()
        assert write_lines(SINK, [], session=session) == 0
        session.post.assert_not_called()

    def test_client_error_not_retried(self):
        session = MagicMock()
        session.post.return_value = response(400, "bad line")
        with pytest.raises(InfluxWriteError) as exc_info:
            write_lines(SINK, ["bad"], session=session, retry_delay=0)
        assert exc_info.value.status == 400
        assert session.post.call_count == 1

    @patch("influx_utils.time.sleep")
    def test_server_error_retried_then_succeeds(self, mock_sleep):
        session = MagicMock()
        session.post.side_effect = [response(503), requests.ConnectionError("reset"), response(204)]
        assert write_lines(SINK, ["m x=1i"], session=session, max_retries=3) == 1
        assert session.post.call_count == 3
        assert mock_sleep.call_count == 2

    @patch("influx_utils.time.sleep")
    def test_retries_exhausted(self, mock_sleep):
        session = MagicMock()
        session.post.return_value = response(500, "oops")
        with pytest.raises(InfluxWriteError):
            write_lines(SINK, ["m x=1i"], session=session, max_retries=2)
        assert session.post.call_count == 2
