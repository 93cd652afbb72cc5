#!/usr/bin/env python3
"""
Tests for the observation logger entry points (obs_logger, asos_feels_logger,
uv_logger).

The orchestrator is replaced by a stub and the Influx write is patched.
"""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))
import asos_feels_logger
import uv_logger
from ingest_config import IngestConfig, SinkConfig, SourceConfig
from ingest_errors import ConfigError, IngestExhaustedError, InfluxWriteError, TransportError
from ingest_pipeline import FEELS_LIKE, PLAIN_VARIANT, UV_INDEX, IngestResult
from obs_logger import run_observation_logger
from row_selector import ResolvedReading
from time_windows import CandidateWindow

TS = 1736910000

CONFIG = IngestConfig(
    service="asos_feels",
    source=SourceConfig(base_url="https://apihub.example", auth_key="KEY"),
    sink=SinkConfig(url="http://influx:8086", token="tok", org="home", bucket="wx"),
    loc="seoul",
    station="108",
    lookback_steps=2,
)

FEELS_READING = ResolvedReading(
    timestamp=TS,
    fields={"temperature": 5.0, "humidity": 60.0, "wind_speed": 3.0, "feels_like": 2.49},
    method="wc",
    tags={"rh_src": "hm"},
)

UV_READING = ResolvedReading(timestamp=TS, fields={"uv_index": 0.5, "euv": 12.5}, method="euv25")


def result_for(reading):
    window = CandidateWindow(tm="202501151200", variant=PLAIN_VARIANT, station="108")
    return IngestResult(reading=reading, window=window, latency_ms=42, attempts=1)


class StubOrchestrator:
    """Returns a fixed result or raises a fixed error."""

    def __init__(self, outcome):
        self.outcome = outcome

    def factory(self, config, strategy, metrics=None):
        self.metrics = metrics
        return self

    def run(self):
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if self.metrics is not None:
            self.metrics.item_succeeded(self.outcome.window.label, latency_ms=42)
        return self.outcome


@pytest.fixture
def mock_write():
    with patch("influx_utils.write_lines") as write:
        write.return_value = 1
        yield write


class TestBuildLines:
    """Tests for the per-logger line builders."""

    def test_feels_like_line(self):
        lines = asos_feels_logger.build_lines(CONFIG, result_for(FEELS_READING))
        assert lines == [
            "life_index,source=kmahub-asos,loc=seoul,stn=108,method=wc,rh_src=hm "
            f"temp_c=5.0,rh_pct=60.0,wind_ms=3.0,feels_c=2.49,base_time_s={TS}i {TS}"
        ]

    def test_feels_like_line_without_humidity(self):
        reading = ResolvedReading(timestamp=TS, method="at", tags={"rh_src": "td"},
                                  fields={"temperature": 20.0, "wind_speed": 2.0, "feels_like": 20.0})
        line = asos_feels_logger.build_lines(CONFIG, result_for(reading))[0]
        assert "rh_pct" not in line
        assert "rh_src=td" in line

    def test_uv_line(self):
        lines = uv_logger.build_lines(CONFIG, result_for(UV_READING))
        assert lines == [
            "life_index,source=kmahub-uv,loc=seoul,stn=108,method=euv25 "
            f"uv_idx=0.5,base_time_s={TS}i {TS}"
        ]


class TestRunObservationLogger:
    """Tests for run_observation_logger."""

    def test_success_writes_point_and_probe(self, mock_write):
        stub = StubOrchestrator(result_for(FEELS_READING))
        code = run_observation_logger(CONFIG, FEELS_LIKE, asos_feels_logger.build_lines, stub.factory)
        assert code == 0
        assert mock_write.call_count == 2
        point_lines = mock_write.call_args_list[0][0][1]
        probe_lines = mock_write.call_args_list[1][0][1]
        assert point_lines[0].startswith("life_index,")
        assert probe_lines[0].startswith("api_probe,service=asos_feels,env=prod,loc=seoul success=1i,latency_ms=42i")

    def test_ingest_failure_exits_zero_with_probe(self, mock_write):
        error = IngestExhaustedError("all 12 attempts failed",
                                     last_error=TransportError("HTTP 503", latency_ms=60), attempts=12)
        stub = StubOrchestrator(error)
        code = run_observation_logger(CONFIG, UV_INDEX, uv_logger.build_lines, stub.factory)
        assert code == 0
        assert mock_write.call_count == 1
        probe = mock_write.call_args[0][1][0]
        assert "service=uv_obs" in probe
        assert "success=0i" in probe
        assert "latency_ms=60i" in probe
        assert 'note="all 12 attempts failed"' in probe

    def test_write_failure_exits_zero(self, mock_write):
        mock_write.side_effect = [InfluxWriteError("Influx write 500", status=500), 1]
        stub = StubOrchestrator(result_for(UV_READING))
        code = run_observation_logger(CONFIG, UV_INDEX, uv_logger.build_lines, stub.factory)
        assert code == 0
        probe = mock_write.call_args[0][1][0]
        assert "success=0i" in probe
        assert "write failed" in probe


class TestMain:
    """Tests for the script entry points."""

    @patch("asos_feels_logger.setup_logging")
    @patch("asos_feels_logger.load_config", side_effect=ConfigError("Missing env: APIHUB_KEY"))
    def test_config_error_exit_one(self, mock_load, mock_logging):
        assert asos_feels_logger.main() == 1

    @patch("uv_logger.run_observation_logger", return_value=0)
    @patch("uv_logger.setup_logging")
    @patch("uv_logger.load_config", return_value=CONFIG)
    def test_uv_main_runs_pipeline(self, mock_load, mock_logging, mock_run):
        assert uv_logger.main() == 0
        mock_load.assert_called_once_with("uv_obs")
        args = mock_run.call_args[0]
        assert args[1] is UV_INDEX
