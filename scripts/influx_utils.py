#!/usr/bin/env python3
"""
InfluxDB Utilities for the KMA Scripts

Provides:
- Line protocol formatting with proper escaping
- Writes to the InfluxDB v2 HTTP API (precision=s)
- Retry logic for transient failures (connection errors, 5xx)

All logger scripts should write through this module.
"""

import logging
import time
from typing import Mapping, Optional, Sequence

import requests

from ingest_config import SinkConfig
from ingest_errors import InfluxWriteError

# ============================================================================
# Configuration
# ============================================================================

WRITE_TIMEOUT_SEC = 30
WRITE_MAX_RETRIES = 3
WRITE_RETRY_DELAY_SEC = 5

logger = logging.getLogger(__name__)


# ============================================================================
# Line Protocol
# ============================================================================

def escape_key(value: str) -> str:
    """Escape a measurement name, tag key/value or field key."""
    return (str(value).replace("\\", "\\\\").replace(",", "\\,")
            .replace("=", "\\=").replace(" ", "\\ "))


def escape_measurement(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def format_field_value(value) -> str:
    """Format a field value: bool, int (suffix i), float or quoted string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def format_point(
    measurement: str,
    tags: Mapping[str, object],
    fields: Mapping[str, object],
    timestamp: Optional[int] = None,
) -> str:
    """Build one line-protocol point.

    Tags with empty values and fields with None values are skipped.

    Raises:
        ValueError: no field left to write
    """
    parts = [escape_measurement(measurement)]
    for key, value in tags.items():
        if value is None or str(value) == "":
            continue
        parts.append(f"{escape_key(key)}={escape_key(value)}")
    head = ",".join(parts)

    field_parts = [f"{escape_key(k)}={format_field_value(v)}"
                   for k, v in fields.items() if v is not None]
    if not field_parts:
        raise ValueError(f"point {measurement} has no fields")

    line = f"{head} {','.join(field_parts)}"
    if timestamp is not None:
        line += f" {int(timestamp)}"
    return line


# ============================================================================
# Writes
# ============================================================================

def write_url(sink: SinkConfig) -> str:
    return f"{sink.url}/api/v2/write"


def write_lines(
    sink: SinkConfig,
    lines: Sequence[str],
    session: Optional[requests.Session] = None,
    max_retries: int = WRITE_MAX_RETRIES,
    retry_delay: float = WRITE_RETRY_DELAY_SEC,
) -> int:
    """Write line-protocol points, retrying connection errors and 5xx.

    Returns:
        Number of lines written

    Raises:
        InfluxWriteError: rejected (4xx) or all retries exhausted
    """
    if not lines:
        return 0

    client = session or requests
    params = {"org": sink.org, "bucket": sink.bucket, "precision": "s"}
    headers = {
        "Authorization": f"Token {sink.token}",
        "Content-Type": "text/plain; charset=utf-8",
    }
    body = "\n".join(lines).encode("utf-8")
    last_error: Optional[InfluxWriteError] = None

    for attempt in range(1, max_retries + 1):
        try:
            response = client.post(write_url(sink), params=params, headers=headers,
                                   data=body, timeout=WRITE_TIMEOUT_SEC)
        except requests.RequestException as e:
            last_error = InfluxWriteError(f"Influx write failed: {e}")
        else:
            if response.ok:
                logger.debug("Influx write OK (%d lines)", len(lines))
                return len(lines)
            last_error = InfluxWriteError(
                f"Influx write {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )
            if response.status_code < 500:
                # Non-retryable error
                raise last_error

        if attempt < max_retries:
            logger.warning("Influx write failed (attempt %d/%d), retrying in %ss: %s",
                           attempt, max_retries, retry_delay, last_error)
            time.sleep(retry_delay)
        else:
            logger.error("Influx write failed after %d attempts: %s", max_retries, last_error)

    raise last_error
