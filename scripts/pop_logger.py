#!/usr/bin/env python3
"""
Precipitation Forecast / Nowcast Logger

Fetches from the KMA short-range forecast service (VilageFcstInfoService_2.0)
and stores two things in InfluxDB:

- Forecast: PCP (mm) and POP (%) per forecast hour via getVilageFcst
- Nowcast:  RN1 (mm, last hour) via getUltraSrtNcst, walking back through
            recent 30-minute slots until one has data

Runs hourly via the scheduler.

Output (precision=s):
    forecast,source=kma-vilage,loc=<>,reg=<>,nx=<>,ny=<>
        pop_pct=<int>,pcp_mm=<float>,base_time_s=<int>
    nowcast,source=kma-ultra-ncst,loc=<>,reg=<>,nx=<>,ny=<>
        rn1_mm=<float>,base_time_s=<int>
    api_probe,service=pop_vilage|rn1_ultra,env=prod,loc=<>
        success=<int>,latency_ms=<int>[,n_points=<int>,n_pop=<int>,n_pcp=<int>,note="..."]
"""

import json
import logging
import re
import sys
import time
from dataclasses import dataclass
from typing import Optional

import requests

import influx_utils
import tz_utils
from ingest_config import IngestConfig, load_config, setup_logging
from ingest_errors import (
    ConfigError, IngestError, InfluxWriteError, NoValidRowError, TransportError,
)
from ingest_pipeline import first_accepted, transport_latency
from raw_fetcher import mask_secret
from script_metrics import ScriptMetrics
from time_windows import split_slot, time_candidates, ultra_base_time

SERVICE = "pop"
FORECAST_PATH = "VilageFcstInfoService_2.0/getVilageFcst"
NOWCAST_PATH = "VilageFcstInfoService_2.0/getUltraSrtNcst"
OK_RESULT_CODES = ("00", "NORMAL_SERVICE")

# Forecast points kept, relative to now
KEEP_PAST_SEC = 12 * 3600
KEEP_AHEAD_SEC = 72 * 3600

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")

logger = logging.getLogger(__name__)


@dataclass
class KmaResponse:
    """Parsed JSON envelope of one API call."""
    ok: bool
    items: list
    body: dict
    latency_ms: int
    url: str
    raw: str


# ============================================================================
# Value parsing
# ============================================================================

def parse_pcp_mm(value: Optional[str]) -> Optional[float]:
    """Parse a PCP forecast value ('강수없음', '1mm 미만', '30.0~50.0mm', '50.0mm 이상')."""
    s = (value or "").strip()
    if not s:
        return None
    if "없음" in s:
        return 0.0
    if "미만" in s:
        return 0.1
    match = _NUMBER_RE.search(s)
    return float(match.group(0)) if match else None


def parse_pop_pct(value: Optional[str]) -> Optional[int]:
    """Parse a POP value as an integer percentage clamped to 0-100."""
    match = re.search(r"\d+", value or "")
    if not match:
        return None
    return max(0, min(100, int(match.group(0))))


# ============================================================================
# API calls
# ============================================================================

def call_kma_json(config: IngestConfig, path: str, params: dict,
                  session: Optional[requests.Session] = None) -> KmaResponse:
    """Call a KMA JSON service, trying typ02 first and falling back to typ01."""
    client = session or requests
    query = {
        "dataType": "JSON",
        "numOfRows": "1000",
        "pageNo": "1",
        **params,
        "serviceKey": config.source.auth_key,
        "authKey": config.source.auth_key,
    }

    def try_url(url: str) -> KmaResponse:
        t0 = time.monotonic()
        try:
            response = client.get(url, params=query, timeout=config.source.timeout)
        except requests.RequestException as e:
            latency = int((time.monotonic() - t0) * 1000)
            logger.debug("Request failed %s: %s", url, e)
            return KmaResponse(False, [], {}, latency, url, str(e))
        latency = int((time.monotonic() - t0) * 1000)
        text = response.text
        try:
            payload = json.loads(text)
        except ValueError as e:
            logger.debug("JSON parse failed for %s: %s", url, e)
            return KmaResponse(False, [], {}, latency, url, text)

        envelope = payload.get("response", {}) if isinstance(payload, dict) else {}
        header = envelope.get("header") or {}
        body = envelope.get("body") or {}
        items = (body.get("items") or {}).get("item") or []
        code = header.get("resultCode")
        logger.debug("%s resultCode=%s msg=%s latency=%dms items=%d",
                     mask_secret(url, config.source.auth_key), code or "-",
                     header.get("resultMsg") or "-", latency, len(items))
        ok = response.ok and code in OK_RESULT_CODES
        return KmaResponse(ok, items, body, latency, url, text)

    out = try_url(f"{config.source.base_url}/api/typ02/openApi/{path}")
    if not out.ok:
        out = try_url(f"{config.source.base_url}/api/typ01/openApi/{path}")
    return out


def fetch_forecast(config: IngestConfig, now=None, session=None) -> dict:
    """Fetch PCP/POP per forecast hour.

    Returns:
        dict with rows (sorted by ts), base_date, base_time, latency_ms

    Raises:
        TransportError: the call failed on both API types
    """
    now = now or tz_utils.now_utc()
    base_date, base_time = ultra_base_time(now)
    out = call_kma_json(config, FORECAST_PATH,
                        {"base_date": base_date, "base_time": base_time,
                         "nx": config.nx, "ny": config.ny}, session)
    if not out.ok:
        raise TransportError(f"[vilage] call failed: {out.raw[:200]}", latency_ms=out.latency_ms)

    acc: dict = {}
    for item in out.items:
        try:
            ts = tz_utils.kst_epoch(str(item.get("fcstDate")), str(item.get("fcstTime")))
        except ValueError:
            continue
        category = str(item.get("category"))
        value = str(item.get("fcstValue", ""))
        if category == "PCP":
            parsed = parse_pcp_mm(value)
            if parsed is not None:
                acc.setdefault(ts, {})["pcp"] = parsed
        elif category == "POP":
            parsed = parse_pop_pct(value)
            if parsed is not None:
                acc.setdefault(ts, {})["pop"] = parsed

    base_s = tz_utils.kst_epoch(base_date, base_time)
    rows = [{"ts": ts, "base_s": base_s, **values} for ts, values in sorted(acc.items())]
    logger.info("Forecast rows=%d base=%s %s", len(rows), base_date, base_time)
    return {"rows": rows, "base_date": base_date, "base_time": base_time,
            "latency_ms": out.latency_ms}


def extract_rn1(out: KmaResponse, base_date: str, base_time: str) -> Optional[tuple]:
    """First RN1 value in a nowcast response as (mm, epoch seconds)."""
    for item in out.items:
        if str(item.get("category")) != "RN1":
            continue
        raw = str(item.get("obsrValue", item.get("fcstValue", "")))
        match = _NUMBER_RE.search(raw)
        if not match:
            continue
        rn1 = max(0.0, float(match.group(0)))
        y = str(item.get("baseDate") or out.body.get("baseDate") or base_date)
        h = str(item.get("baseTime") or out.body.get("baseTime") or base_time)
        try:
            return rn1, tz_utils.kst_epoch(y, h)
        except ValueError as e:
            raise NoValidRowError(f"[ultra] bad base time {y} {h}: {e}") from e
    return None


def fetch_nowcast_rn1(config: IngestConfig, now=None, session=None) -> dict:
    """Fetch RN1 from the newest 30-minute slot that has it.

    Raises:
        IngestExhaustedError: no slot produced RN1
    """
    now = now or tz_utils.now_utc()
    slots = time_candidates(now, granularity_minutes=30, lookback_steps=config.lookback_steps)

    def attempt(slot: str) -> dict:
        base_date, base_time = split_slot(slot)
        out = call_kma_json(config, NOWCAST_PATH,
                            {"base_date": base_date, "base_time": base_time,
                             "nx": config.nx, "ny": config.ny}, session)
        if not out.ok or not out.items:
            raise TransportError(f"[ultra] no items for {slot}", latency_ms=out.latency_ms)
        found = extract_rn1(out, base_date, base_time)
        if found is None:
            raise NoValidRowError(f"[ultra] RN1 missing for {slot}")
        rn1, ts = found
        return {"rn1": rn1, "ts": ts, "base_date": base_date, "base_time": base_time,
                "latency_ms": out.latency_ms}

    def on_failure(count, slot, error):
        logger.info("Nowcast slot %s failed: %s", slot, error)

    return first_accepted(slots, attempt, on_failure)


# ============================================================================
# Line building
# ============================================================================

def _series_tags(config: IngestConfig, source: str) -> dict:
    return {"source": source, "loc": config.loc, "reg": config.station,
            "nx": config.nx, "ny": config.ny}


def forecast_lines(config: IngestConfig, forecast: dict, now_s: int) -> tuple[list, dict]:
    """Forecast points within the keep window, plus counts for the probe."""
    lines = []
    counts = {"n_points": 0, "n_pop": 0, "n_pcp": 0}
    tags = _series_tags(config, "kma-vilage")
    for row in forecast["rows"]:
        if row["ts"] < now_s - KEEP_PAST_SEC or row["ts"] > now_s + KEEP_AHEAD_SEC:
            continue
        fields = {}
        if row.get("pop") is not None:
            fields["pop_pct"] = int(row["pop"])
            counts["n_pop"] += 1
        if row.get("pcp") is not None:
            fields["pcp_mm"] = round(float(row["pcp"]), 2)
            counts["n_pcp"] += 1
        fields["base_time_s"] = int(row["base_s"])
        lines.append(influx_utils.format_point("forecast", tags, fields, row["ts"]))
        counts["n_points"] += 1
    return lines, counts


def nowcast_line(config: IngestConfig, nowcast: dict) -> str:
    base_s = tz_utils.kst_epoch(nowcast["base_date"], nowcast["base_time"])
    fields = {"rn1_mm": round(float(nowcast["rn1"]), 1), "base_time_s": base_s}
    return influx_utils.format_point("nowcast", _series_tags(config, "kma-ultra-ncst"),
                                     fields, nowcast["ts"])


# ============================================================================
# Main
# ============================================================================

def run(config: IngestConfig, session=None) -> int:
    """Collect forecast and nowcast points and write them with their probes."""
    now = tz_utils.now_utc()
    now_s = int(now.timestamp())
    lines = []

    forecast_probe = ScriptMetrics("pop_vilage", loc=config.loc)
    with forecast_probe:
        try:
            forecast = fetch_forecast(config, now, session)
            points, counts = forecast_lines(config, forecast, now_s)
            lines.extend(points)
            forecast_probe.latency_ms = forecast["latency_ms"]
            for name, value in counts.items():
                forecast_probe.add_field(name, value)
        except IngestError as e:
            logger.warning("Forecast fetch failed: %s", e)
            forecast_probe.fail(str(e), latency_ms=transport_latency(e))

    nowcast_probe = ScriptMetrics("rn1_ultra", loc=config.loc)
    with nowcast_probe:
        try:
            nowcast = fetch_nowcast_rn1(config, now, session)
            lines.append(nowcast_line(config, nowcast))
            nowcast_probe.latency_ms = nowcast["latency_ms"]
        except IngestError as e:
            logger.warning("Nowcast fetch failed: %s", e)
            nowcast_probe.fail(str(e), latency_ms=transport_latency(e))

    lines.append(forecast_probe.probe_line(now_s))
    lines.append(nowcast_probe.probe_line(now_s))

    if config.debug:
        logger.debug("Sample lines:\n%s", "\n".join(lines[:4]))

    try:
        influx_utils.write_lines(config.sink, lines, session=session)
    except (InfluxWriteError, requests.RequestException) as e:
        logger.error("Influx write failed: %s", e)
        return 0

    logger.info("Influx write done - lines=%d", len(lines))
    return 0


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
    logger.info("Precipitation Logger starting (reg=%s, nx=%s, ny=%s)",
                config.station, config.nx, config.ny)
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
