#!/usr/bin/env python3
"""
Exception types shared by the KMA ingestion scripts.

Retryable errors make the orchestrator move on to the next candidate window.
Everything else stops the run.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for ingestion failures."""


class RetryableIngestError(IngestError):
    """A single attempt failed; later candidates may still succeed."""


class TransportError(RetryableIngestError):
    """Non-2xx response or network failure."""

    def __init__(self, message: str, status: Optional[int] = None, latency_ms: int = 0):
        super().__init__(message)
        self.status = status
        self.latency_ms = latency_ms


class TableParseError(RetryableIngestError):
    """Response text held no usable data rows."""


class ColumnResolutionError(RetryableIngestError):
    """A required field could not be mapped to a column."""


class NoValidRowError(RetryableIngestError):
    """Every row failed the plausibility checks."""


class StaleReadingError(IngestError):
    """An accepted reading is older than the allowed age."""

    def __init__(self, message: str, timestamp: int, age_seconds: int):
        super().__init__(message)
        self.timestamp = timestamp
        self.age_seconds = age_seconds


class IngestExhaustedError(IngestError):
    """All candidate windows were tried without success."""

    def __init__(self, message: str, last_error: Optional[Exception] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class ConfigError(Exception):
    """Required configuration is missing or malformed."""


class InfluxWriteError(Exception):
    """The metrics store rejected or never received a write."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
