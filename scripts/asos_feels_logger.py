#!/usr/bin/env python3
"""
ASOS Feels-Like Logger

Fetches the latest hourly ASOS surface observation from KMA API Hub
(kma_sfctm2.php), computes the apparent ("feels-like") temperature and
writes it to InfluxDB.

Runs hourly via the scheduler.

Regimes:
- wc: wind chill (T <= 10 C, wind > 1.34 m/s)
- hi: heat index (T >= 27 C, RH >= 40 %)
- at: Steadman apparent temperature otherwise

Output:
    life_index,source=kmahub-asos,loc=<>,stn=<>,method=<>,rh_src=<>
        temp_c=<>,rh_pct=<>,wind_ms=<>,feels_c=<>,base_time_s=<>i <ts>
    api_probe,service=asos_feels,env=prod,loc=<> success=<>i,latency_ms=<>i ...
"""

import logging
import sys

import influx_utils
from ingest_config import IngestConfig, load_config, setup_logging
from ingest_errors import ConfigError
from ingest_pipeline import FEELS_LIKE, IngestResult
from obs_logger import run_observation_logger

SERVICE = "asos_feels"

logger = logging.getLogger(__name__)


def build_lines(config: IngestConfig, result: IngestResult) -> list:
    """Line-protocol point for an accepted feels-like reading."""
    reading = result.reading
    fields = reading.fields
    tags = {
        "source": FEELS_LIKE.source_tag,
        "loc": config.loc,
        "stn": config.station,
        "method": reading.method,
        "rh_src": reading.tags.get("rh_src"),
    }
    values = {
        "temp_c": float(fields["temperature"]),
        "rh_pct": float(fields["humidity"]) if "humidity" in fields else None,
        "wind_ms": float(fields["wind_speed"]),
        "feels_c": float(fields["feels_like"]),
        "base_time_s": int(reading.timestamp),
    }
    return [influx_utils.format_point(FEELS_LIKE.measurement, tags, values, reading.timestamp)]


def main():
    """Main entry point."""
    try:
        config = load_config(SERVICE)
    except ConfigError as e:
        setup_logging(SERVICE)
        logger.error("Configuration error: %s", e)
        return 1

    setup_logging(SERVICE, config.debug)
    logger.info("=" * 50)
    logger.info("ASOS Feels-Like Logger starting (stn=%s, loc=%s)", config.station, config.loc)

    return run_observation_logger(config, FEELS_LIKE, build_lines)


if __name__ == "__main__":
    sys.exit(main())
