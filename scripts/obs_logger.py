#!/usr/bin/env python3
"""
Shared run loop for the observation loggers (feels-like, UV).

Runs the ingestion pipeline for one strategy, writes the resulting point and
always leaves an api_probe heartbeat. Failures are logged and recorded but
never raised to the scheduler.
"""

import logging
from typing import Callable

import requests

import influx_utils
from ingest_config import IngestConfig
from ingest_errors import IngestError, InfluxWriteError
from ingest_pipeline import IngestResult, IngestionOrchestrator, IngestStrategy, transport_latency
from script_metrics import ScriptMetrics

logger = logging.getLogger(__name__)


def run_observation_logger(
    config: IngestConfig,
    strategy: IngestStrategy,
    build_lines: Callable[[IngestConfig, IngestResult], list],
    orchestrator_factory=IngestionOrchestrator,
) -> int:
    """Fetch one reading, write it, emit the probe.

    Returns:
        Exit code (always 0 so one bad run never breaks the schedule)
    """
    with ScriptMetrics(strategy.name, loc=config.loc, sink=config.sink) as metrics:
        orchestrator = orchestrator_factory(config, strategy, metrics=metrics)
        try:
            result = orchestrator.run()
        except IngestError as e:
            logger.error("%s: no reading: %s", strategy.name, e)
            metrics.fail(str(e), latency_ms=transport_latency(e))
            return 0

        metrics.latency_ms = result.latency_ms
        lines = build_lines(config, result)
        try:
            influx_utils.write_lines(config.sink, lines)
        except (InfluxWriteError, requests.RequestException) as e:
            logger.error("%s: write failed: %s", strategy.name, e)
            metrics.fail(f"write failed: {e}", latency_ms=result.latency_ms)
            return 0

        logger.info("%s: wrote %d line(s)", strategy.name, len(lines))
    return 0
