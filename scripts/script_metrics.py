#!/usr/bin/env python3
"""
Script Metrics - run heartbeat for the KMA logger scripts.

Tracks attempts and retries during a run and writes one `api_probe` point to
InfluxDB when the run ends, whether it succeeded or not, so the scheduler's
run history always has a heartbeat.

Usage:
    from script_metrics import ScriptMetrics

    with ScriptMetrics('uv_obs', loc='seoul', sink=config.sink) as metrics:
        metrics.item_failed('stn=108 tm=202501011210 plain', 'HTTP 500')
        metrics.record_retry(attempt=1, error='HTTP 500', error_type='TransportError')
        metrics.item_succeeded('stn=108 tm=202501011200 plain', latency_ms=120)

A failed run without an exception (e.g. every candidate exhausted) is
recorded with metrics.fail(...) so the probe still goes out with success=0.
The probe write itself never raises; a failure there only logs a warning.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import requests

import influx_utils
from ingest_config import SinkConfig
from ingest_errors import InfluxWriteError

PROBE_MEASUREMENT = "api_probe"
NOTE_MAX_LEN = 200

logger = logging.getLogger(__name__)


def truncate_note(message: Optional[str], max_len: int = NOTE_MAX_LEN) -> str:
    """Truncate an error message for the probe note field."""
    if not message:
        return ""
    if len(message) <= max_len:
        return message
    return message[:max_len - 3] + "..."


@dataclass
class ItemTracker:
    """Tracks a single attempt (or other unit of work) within a run."""
    name: str
    item_type: Optional[str] = None
    status: str = "pending"
    latency_ms: int = 0
    error_message: Optional[str] = None
    retry_count: int = 0


@dataclass
class ScriptMetrics:  # pylint: disable=too-many-instance-attributes
    """
    Context manager for tracking a logger run and emitting its heartbeat.

    Fail-safe design: the probe write is wrapped in try/except. If it fails,
    a warning is logged and the run's own outcome is left untouched.
    """
    service: str
    loc: str = ""
    sink: Optional[SinkConfig] = None
    env: str = "prod"

    status: str = "running"
    error_message: Optional[str] = None
    latency_ms: int = 0
    extra_fields: dict = field(default_factory=dict)

    items: dict = field(default_factory=dict)
    total_retries: int = 0
    probe_written: bool = field(default=False, repr=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Finalize status and write the probe on context exit."""
        if exc_type is not None:
            self.status = "failed"
            self.error_message = str(exc_val)
            logger.debug("%s failed", self.service, exc_info=(exc_type, exc_val, exc_tb))
        else:
            self._determine_status()

        self._safe_write_probe()
        return False  # Don't suppress exceptions

    def _determine_status(self):
        """Determine final status from item outcomes and recorded failures."""
        if self.error_message:
            self.status = "failed"
            return
        if not self.items:
            self.status = "success"
            return
        succeeded = any(i.status == "success" for i in self.items.values())
        self.status = "success" if succeeded else "failed"

    def probe_line(self, timestamp: Optional[int] = None) -> str:
        """The api_probe point for the current state."""
        if timestamp is None:
            timestamp = int(datetime.now(timezone.utc).timestamp())
        success = self.status == "success"
        fields = {
            "success": 1 if success else 0,
            "latency_ms": int(self.latency_ms),
        }
        if self.items:
            fields["attempts"] = len(self.items)
        fields.update(self.extra_fields)
        if not success:
            fields["note"] = truncate_note(self.error_message or "err")
        tags = {"service": self.service, "env": self.env, "loc": self.loc}
        return influx_utils.format_point(PROBE_MEASUREMENT, tags, fields, timestamp)

    def _safe_write_probe(self):
        """Write the probe point, failing silently on error."""
        if self.sink is None:
            return
        try:
            influx_utils.write_lines(self.sink, [self.probe_line()])
            self.probe_written = True
        except (InfluxWriteError, requests.RequestException, ValueError) as e:
            logger.warning("Failed to write api_probe for %s: %s", self.service, e)

    def item_succeeded(self, name: str, item_type: Optional[str] = None, latency_ms: int = 0):
        """Manually mark an item as succeeded."""
        self.items[name] = ItemTracker(
            name=name,
            item_type=item_type,
            status="success",
            latency_ms=latency_ms,
        )
        self.latency_ms = latency_ms

    def item_failed(self, name: str, error: str, item_type: Optional[str] = None,
                    latency_ms: int = 0):
        """Manually mark an item as failed."""
        self.items[name] = ItemTracker(
            name=name,
            item_type=item_type,
            status="failed",
            latency_ms=latency_ms,
            error_message=error,
        )

    def record_retry(self, attempt: int, error: str, error_type: Optional[str] = None,
                     item_name: Optional[str] = None):
        """Record a retry attempt."""
        self.total_retries += 1

        # Update item retry count if tracking specific item
        if item_name and item_name in self.items:
            self.items[item_name].retry_count += 1

        logger.debug("Retry %d (%s): %s", attempt, error_type or "error", error)

    def fail(self, error: str, latency_ms: Optional[int] = None):
        """Mark the whole run failed without raising."""
        self.error_message = error
        if latency_ms is not None:
            self.latency_ms = latency_ms

    def add_field(self, name: str, value):
        """Add an extra field (e.g. point counts) to the probe."""
        self.extra_fields[name] = value
