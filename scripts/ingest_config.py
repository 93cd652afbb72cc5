#!/usr/bin/env python3
"""
Configuration for the KMA ingestion scripts.

Everything comes from the environment (optionally a .env file next to the
scripts or in the working directory). The environment is read once, here;
the resulting frozen config objects are passed to everything else.

Environment:
    APIHUB_BASE     KMA API Hub base URL (default https://apihub.kma.go.kr)
    APIHUB_KEY      API Hub authKey (required)
    INFLUX_URL, INFLUX_TOKEN, INFLUX_ORG, INFLUX_BUCKET   (required)
    LOC             Location tag (default seoul)
    ASOS_STN        ASOS station for feels-like (default 108, Seoul)
    UV_STN          UV station (required for the UV logger)
    POP_REG, NX, NY Forecast region and grid (defaults 11B10101, 60, 127)
    MAX_AGE_MIN     Oldest acceptable observation age in minutes
    DEBUG           1 for debug logging (also DEBUG_ASOS / DEBUG_UV / DEBUG_POP)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from ingest_errors import ConfigError

SCRIPT_DIR = Path(__file__).parent
LOG_DIR = SCRIPT_DIR / "logs"

DEFAULT_APIHUB_BASE = "https://apihub.kma.go.kr"
DEFAULT_LOC = "seoul"
DEFAULT_TIMEOUT_SEC = 30
DEFAULT_MAX_AGE_MIN = 180

# Per-service defaults: station, lookback steps, debug variable
SERVICE_DEFAULTS = {
    "asos_feels": {"station_env": "ASOS_STN", "station": "108", "lookback": 6, "debug_env": "DEBUG_ASOS"},
    "uv_obs": {"station_env": "UV_STN", "station": None, "lookback": 18, "debug_env": "DEBUG_UV"},
    "pop": {"station_env": "POP_REG", "station": "11B10101", "lookback": 3, "debug_env": "DEBUG_POP"},
}


@dataclass(frozen=True)
class SourceConfig:
    """KMA API Hub access."""
    base_url: str
    auth_key: str
    timeout: float = DEFAULT_TIMEOUT_SEC


@dataclass(frozen=True)
class SinkConfig:
    """InfluxDB v2 write target."""
    url: str
    token: str
    org: str
    bucket: str


@dataclass(frozen=True)
class IngestConfig:  # pylint: disable=too-many-instance-attributes
    """Everything one logger run needs."""
    service: str
    source: SourceConfig
    sink: SinkConfig
    loc: str
    station: str
    lookback_steps: int
    max_age_minutes: int = DEFAULT_MAX_AGE_MIN
    nx: str = "60"
    ny: str = "127"
    debug: bool = False


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _require(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigError(f"Missing env: {key}")
    return value


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from e


def load_config(service: str, environ: Optional[Mapping[str, str]] = None) -> IngestConfig:
    """Build the config for one service.

    Args:
        service: 'asos_feels', 'uv_obs' or 'pop'
        environ: Mapping to read instead of os.environ (no .env loading then)

    Raises:
        ConfigError: unknown service or missing/invalid variables
    """
    if service not in SERVICE_DEFAULTS:
        raise ConfigError(f"Unknown service: {service}")
    if environ is None:
        load_dotenv(SCRIPT_DIR / ".env")
        load_dotenv()
        environ = os.environ
    defaults = SERVICE_DEFAULTS[service]

    source = SourceConfig(
        base_url=(environ.get("APIHUB_BASE") or DEFAULT_APIHUB_BASE).strip().rstrip("/"),
        auth_key=_require(environ, "APIHUB_KEY"),
        timeout=_int(environ, "APIHUB_TIMEOUT", DEFAULT_TIMEOUT_SEC),
    )
    sink = SinkConfig(
        url=_require(environ, "INFLUX_URL").rstrip("/"),
        token=_require(environ, "INFLUX_TOKEN"),
        org=_require(environ, "INFLUX_ORG"),
        bucket=_require(environ, "INFLUX_BUCKET"),
    )

    station = (environ.get(defaults["station_env"]) or defaults["station"] or "").strip()
    if not station:
        raise ConfigError(f"Missing env: {defaults['station_env']}")

    return IngestConfig(
        service=service,
        source=source,
        sink=sink,
        loc=(environ.get("LOC") or DEFAULT_LOC).strip(),
        station=station,
        lookback_steps=_int(environ, "LOOKBACK_STEPS", defaults["lookback"]),
        max_age_minutes=_int(environ, "MAX_AGE_MIN", DEFAULT_MAX_AGE_MIN),
        nx=(environ.get("NX") or "60").strip(),
        ny=(environ.get("NY") or "127").strip(),
        debug=_flag(environ.get("DEBUG")) or _flag(environ.get(defaults["debug_env"])),
    )


def setup_logging(log_name: str, debug: bool = False):
    """Log to <scripts>/logs/<log_name>.log and the console."""
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / f"{log_name}.log", encoding="utf-8"),
            logging.StreamHandler()
        ]
    )
