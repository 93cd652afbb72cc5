#!/usr/bin/env python3
"""
Ingestion pipeline for KMA typ01 observation tables.

One retry driver, many strategies: each strategy says which endpoint to
call, which header synonyms and plausibility bands to use, and how to derive
the output metric. The orchestrator walks the ordered candidate windows
(station scope x query time x endpoint variant) one blocking request at a
time and stops at the first accepted reading.

Per attempt:
    fetch -> normalize_table -> resolve_columns -> select_row (+ derive)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional, Sequence, TypeVar

import raw_fetcher
import tz_utils
from column_resolver import (
    ColumnMap, FieldSpec, is_station_code, prefer_below, prefer_high_median,
    resolve_columns,
)
from derived_metrics import (
    DEFAULT_THRESHOLDS, DEFAULT_UV_CONVERSION, Derivation, RegimeThresholds,
    UvConversion, compute_feels_like, compute_uv_index,
)
from ingest_config import IngestConfig
from ingest_errors import (
    IngestExhaustedError, RetryableIngestError, StaleReadingError,
)
from row_selector import TIME_FROM_OBSERVATION, ResolvedReading, select_row
from script_metrics import ScriptMetrics
from table_normalizer import normalize_table
from time_windows import (
    CandidateWindow, EndpointVariant, iter_candidate_windows, time_candidates,
)

ALL_STATIONS = "0"

HELP_VARIANT = EndpointVariant("help", {"disp": "1", "help": "1"})
PLAIN_VARIANT = EndpointVariant("plain", {"disp": "0", "help": "0"})

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def _names(pattern: str) -> re.Pattern:
    return re.compile(rf"^(?:{pattern})$", re.IGNORECASE)


# ============================================================================
# Field specs
# ============================================================================

TIME_FIELD = FieldSpec("time", _names(r"TM|YYMMDDHHMI|YYMM|DATE|TIME|일시|시각"))
STATION_FIELD = FieldSpec("station", _names(r"STN|STN_ID|STATION|지점"),
                          fit=is_station_code)
TEMPERATURE_FIELD = FieldSpec("temperature", _names(r"TA|TEMP|기온"),
                              stats_range=(-50, 50), valid_range=(-60, 60))
HUMIDITY_FIELD = FieldSpec("humidity", _names(r"HM|REH|RH|습도"),
                           stats_range=(0, 100), valid_range=(0, 100),
                           secondary=prefer_high_median)
WIND_FIELD = FieldSpec("wind_speed", _names(r"WS|WSD|WIND|풍속"),
                       stats_range=(0, 60), valid_range=(0, 60))
DEW_POINT_FIELD = FieldSpec("dew_point", _names(r"TD|DEW|이슬점"),
                            stats_range=(-60, 40), valid_range=(-60, 60),
                            secondary=prefer_below("temperature"))
UV_INDEX_FIELD = FieldSpec("uv_index", _names(r"UV-B|UVB_IDX|UVI"))
EUV_FIELD = FieldSpec("euv", _names(r"EUV"))


# ============================================================================
# Strategies
# ============================================================================

@dataclass(frozen=True)
class IngestStrategy:  # pylint: disable=too-many-instance-attributes
    """Everything that differs between the feels-like and UV pipelines."""
    name: str
    path: str
    time_params: tuple
    fields: tuple
    header_keys: tuple
    derive_factory: Callable
    variants: tuple = (HELP_VARIANT, PLAIN_VARIANT)
    granularity_minutes: int = 10
    span_minutes: int = 0
    required: tuple = ()
    required_any: tuple = ()
    station_fallback: bool = False
    min_columns: int = 2
    measurement: str = "life_index"
    source_tag: str = ""


def feels_like_deriver(thresholds: RegimeThresholds = DEFAULT_THRESHOLDS):
    """Derive callback computing the feels-like temperature."""
    def derive(values: dict, row: Sequence[str], cmap: ColumnMap) -> Optional[Derivation]:
        return compute_feels_like(
            t_c=values["temperature"],
            wind_ms=values["wind_speed"],
            humidity=values.get("humidity"),
            dew_point=values.get("dew_point"),
            thresholds=thresholds,
        )
    return derive


def uv_deriver(wanted_station: Optional[str] = None,
               conv: UvConversion = DEFAULT_UV_CONVERSION):
    """Derive callback computing the UV index.

    With wanted_station set (all-stations query), rows from other stations
    are declined.
    """
    def derive(values: dict, row: Sequence[str], cmap: ColumnMap) -> Optional[Derivation]:
        stn_idx = cmap.get("station")
        if wanted_station and stn_idx is not None:
            token = row[stn_idx].strip()
            if token and token != wanted_station:
                return None
        excluded = set()
        if cmap.get("time") is not None:
            excluded.add(cmap.get("time"))
        if cmap.time_pair is not None:
            excluded.update(cmap.time_pair)
        if stn_idx is not None:
            excluded.add(stn_idx)
        return compute_uv_index(
            direct=values.get("uv_index"),
            euv=values.get("euv"),
            row=row,
            excluded_columns=excluded,
            conv=conv,
        )
    return derive


FEELS_LIKE = IngestStrategy(
    name="asos_feels",
    path="/api/typ01/url/kma_sfctm2.php",
    time_params=("tm1", "tm2"),
    span_minutes=180,
    fields=(TIME_FIELD, STATION_FIELD, TEMPERATURE_FIELD, HUMIDITY_FIELD,
            WIND_FIELD, DEW_POINT_FIELD),
    header_keys=(re.compile(r"^(TM|TIME|DATE|YYMMDDHHMI)$", re.IGNORECASE),),
    derive_factory=lambda station: feels_like_deriver(),
    required=("temperature", "wind_speed"),
    required_any=(("humidity", "dew_point"),),
    source_tag="kmahub-asos",
)

UV_INDEX = IngestStrategy(
    name="uv_obs",
    path="/api/typ01/url/kma_sfctm_uv.php",
    time_params=("tm",),
    fields=(TIME_FIELD, STATION_FIELD, UV_INDEX_FIELD, EUV_FIELD),
    header_keys=(re.compile(r"^(STN|지점)$", re.IGNORECASE),
                 re.compile(r"^(UVB|UV-B|UVA|EUV|YYMM\w*|TM|TIME|DATE)$", re.IGNORECASE)),
    derive_factory=lambda station: uv_deriver(station),
    variants=(PLAIN_VARIANT, HELP_VARIANT),
    station_fallback=True,
    source_tag="kmahub-uv",
)


# ============================================================================
# Retry driver
# ============================================================================

def first_accepted(
    attempts: Iterable[T],
    run_attempt: Callable[[T], R],
    on_failure: Optional[Callable[[int, T, RetryableIngestError], None]] = None,
) -> R:
    """Run attempts in order and return the first result.

    Retryable errors move on to the next attempt; anything else propagates.

    Raises:
        IngestExhaustedError: every attempt failed (carries the last error)
    """
    last_error: Optional[RetryableIngestError] = None
    count = 0
    for attempt in attempts:
        count += 1
        try:
            return run_attempt(attempt)
        except RetryableIngestError as e:
            last_error = e
            if on_failure is not None:
                on_failure(count, attempt, e)
    message = f"all {count} attempts failed"
    if last_error is not None:
        message += f"; last error: {last_error}"
    raise IngestExhaustedError(message, last_error=last_error, attempts=count)


# ============================================================================
# Orchestrator
# ============================================================================

@dataclass(frozen=True)
class Attempt:
    """A candidate window turned into a concrete request."""
    window: CandidateWindow
    url: str
    params: dict = field(hash=False)


@dataclass(frozen=True)
class IngestResult:
    """Accepted reading plus where and how it was obtained."""
    reading: ResolvedReading
    window: CandidateWindow
    latency_ms: int
    attempts: int


class IngestionOrchestrator:
    """Drives one strategy through its candidate windows."""

    def __init__(self, config: IngestConfig, strategy: IngestStrategy,
                 fetch=raw_fetcher.fetch_text, clock=tz_utils.now_utc,
                 metrics: Optional[ScriptMetrics] = None):
        self.config = config
        self.strategy = strategy
        self.fetch = fetch
        self.clock = clock
        self.metrics = metrics
        self._attempt_count = 0

    def station_scopes(self) -> list[str]:
        scopes = [self.config.station]
        if self.strategy.station_fallback and self.config.station != ALL_STATIONS:
            scopes.append(ALL_STATIONS)
        return scopes

    def iter_attempts(self, now) -> Iterator[Attempt]:
        """Ordered attempts for this run (bounded: scopes x times x variants)."""
        strategy = self.strategy
        times = time_candidates(now, strategy.granularity_minutes, self.config.lookback_steps)
        url = f"{self.config.source.base_url}{strategy.path}"
        windows = iter_candidate_windows(times, strategy.variants, self.station_scopes(),
                                         span_minutes=strategy.span_minutes)
        for window in windows:
            params = {"stn": window.station}
            if len(strategy.time_params) == 2:
                params[strategy.time_params[0]] = window.tm_start
                params[strategy.time_params[1]] = window.tm
            else:
                params[strategy.time_params[0]] = window.tm
            params.update(window.variant.params)
            params["authKey"] = self.config.source.auth_key
            yield Attempt(window=window, url=url, params=params)

    def parse_response(self, text: str, window: CandidateWindow, now_ts: int) -> ResolvedReading:
        """Pure text -> reading step (no I/O); same input gives the same reading."""
        strategy = self.strategy
        table = normalize_table(text, strategy.min_columns)

        wide_scope = window.station == ALL_STATIONS and self.config.station != ALL_STATIONS
        skip_stats = () if wide_scope else ("station",)
        cmap = resolve_columns(
            table,
            strategy.fields,
            header_keys=strategy.header_keys,
            required=strategy.required,
            required_any=strategy.required_any,
            skip_stats=skip_stats,
            station_value=None if window.station == ALL_STATIONS else window.station,
        )
        wanted = self.config.station if wide_scope else None
        return select_row(
            table,
            cmap,
            strategy.fields,
            strategy.derive_factory(wanted),
            now_ts,
            required=strategy.required,
            required_any=strategy.required_any,
        )

    def _run_attempt(self, attempt: Attempt) -> IngestResult:
        self._attempt_count += 1
        now_ts = int(self.clock().timestamp())
        logger.debug("Attempt %d: %s", self._attempt_count, attempt.window.label)
        logger.debug("GET %s %s", attempt.url,
                     raw_fetcher.mask_secret(str(attempt.params), self.config.source.auth_key))
        result = self.fetch(attempt.url, params=attempt.params, timeout=self.config.source.timeout)
        try:
            reading = self.parse_response(result.text, attempt.window, now_ts)
        except RetryableIngestError as e:
            e.latency_ms = result.latency_ms
            raise
        if self.metrics is not None:
            self.metrics.item_succeeded(attempt.window.label, item_type=self.strategy.name,
                                        latency_ms=result.latency_ms)
        return IngestResult(reading=reading, window=attempt.window,
                            latency_ms=result.latency_ms, attempts=self._attempt_count)

    def _on_failure(self, count: int, attempt: Attempt, error: RetryableIngestError):
        logger.info("Attempt %d failed (%s): %s", count, attempt.window.label, error)
        if self.metrics is not None:
            latency = getattr(error, "latency_ms", 0)
            self.metrics.item_failed(attempt.window.label, str(error),
                                     item_type=type(error).__name__, latency_ms=latency)
            self.metrics.latency_ms = latency
            self.metrics.record_retry(count, str(error), type(error).__name__,
                                      item_name=attempt.window.label)

    def check_freshness(self, reading: ResolvedReading, now_ts: int):
        """Reject observation timestamps older than the allowed age.

        Raises:
            StaleReadingError: terminal for this run
        """
        if reading.time_source != TIME_FROM_OBSERVATION:
            return
        age = now_ts - reading.timestamp
        if age > self.config.max_age_minutes * 60:
            raise StaleReadingError(
                f"reading at {reading.timestamp} is {age // 60} min old "
                f"(max {self.config.max_age_minutes})",
                timestamp=reading.timestamp,
                age_seconds=age,
            )

    def run(self) -> IngestResult:
        """Try candidates until one yields a reading.

        Raises:
            IngestExhaustedError: nothing accepted
            StaleReadingError: accepted reading too old
        """
        self._attempt_count = 0
        now = self.clock()
        result = first_accepted(self.iter_attempts(now), self._run_attempt, self._on_failure)
        self.check_freshness(result.reading, int(now.timestamp()))
        logger.info("Accepted %s after %d attempt(s): method=%s ts=%d",
                    result.window.label, result.attempts, result.reading.method,
                    result.reading.timestamp)
        return result


def transport_latency(error: Optional[Exception]) -> int:
    """Latency carried by an error, if any."""
    if isinstance(error, IngestExhaustedError):
        error = error.last_error
    if isinstance(error, RetryableIngestError):
        return int(getattr(error, "latency_ms", 0) or 0)
    return 0
