#!/usr/bin/env python3
"""
UV Index Logger

Fetches the latest UV observation from KMA API Hub (kma_sfctm_uv.php) and
writes the UV index to InfluxDB.

Walks back through the last 3 hours of 10-minute slots, trying the plain
and help/disp response formats, first for UV_STN and then for all stations
(stn=0, rows filtered to UV_STN).

Source priority (method tag):
- uvb:   reported UV-B index
- euv25: erythemal UV / 25
- euv40: erythemal UV x 40
- heur:  first other column whose conversion lands in 0-20

Output:
    life_index,source=kmahub-uv,loc=<>,stn=<>,method=<> uv_idx=<>,base_time_s=<>i <ts>
    api_probe,service=uv_obs,env=prod,loc=<> success=<>i,latency_ms=<>i ...
"""

import logging
import sys

import influx_utils
from ingest_config import IngestConfig, load_config, setup_logging
from ingest_errors import ConfigError
from ingest_pipeline import UV_INDEX, IngestResult
from obs_logger import run_observation_logger

SERVICE = "uv_obs"

logger = logging.getLogger(__name__)


def build_lines(config: IngestConfig, result: IngestResult) -> list:
    """Line-protocol point for an accepted UV reading."""
    reading = result.reading
    tags = {
        "source": UV_INDEX.source_tag,
        "loc": config.loc,
        "stn": config.station,
        "method": reading.method,
    }
    values = {
        "uv_idx": float(reading.fields["uv_index"]),
        "base_time_s": int(reading.timestamp),
    }
    return [influx_utils.format_point(UV_INDEX.measurement, tags, values, reading.timestamp)]


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
    logger.info("UV Index Logger starting (stn=%s, loc=%s)", config.station, config.loc)

    return run_observation_logger(config, UV_INDEX, build_lines)


if __name__ == "__main__":
    sys.exit(main())
