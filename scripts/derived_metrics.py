#!/usr/bin/env python3
"""
Derived metrics - apparent temperature and UV index.

Feels-like temperature is picked from three mutually exclusive regimes,
evaluated in this order:

- Cold (wc):      T <= 10 C and wind > 1.34 m/s (4.8 km/h) -> wind chill
- Hot-humid (hi): T >= 27 C and RH >= 40 %              -> NWS heat index
- Default (at):   Steadman apparent temperature (vapour pressure, wind)

UV index comes from a direct UV-B index column, else an erythemal (EUV)
reading converted by /25 or x40, else a heuristic scan of the other columns.
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from table_normalizer import parse_number

METHOD_WIND_CHILL = "wc"
METHOD_HEAT_INDEX = "hi"
METHOD_APPARENT = "at"

UV_DIRECT = "uvb"
UV_EUV_DIV = "euv25"
UV_EUV_MUL = "euv40"
UV_HEURISTIC = "heur"

RH_FROM_HUMIDITY = "hm"
RH_FROM_DEWPOINT = "td"

# Magnus coefficients (Alduchov & Eskridge)
MAGNUS_A = 17.625
MAGNUS_B = 243.04


@dataclass(frozen=True)
class RegimeThresholds:
    """Regime boundaries for the feels-like engine."""
    cold_max_c: float = 10.0
    min_wind_ms: float = 1.34
    hot_min_c: float = 27.0
    hot_min_rh: float = 40.0
    correction_tolerance_c: float = 12.0


@dataclass(frozen=True)
class UvConversion:
    """Unit-conversion hypotheses for raw erythemal readings."""
    euv_divisor: float = 25.0
    euv_multiplier: float = 40.0
    max_index: float = 20.0


DEFAULT_THRESHOLDS = RegimeThresholds()
DEFAULT_UV_CONVERSION = UvConversion()


@dataclass(frozen=True)
class Derivation:
    """Output of a derive step: numeric fields, method tag and string tags."""
    fields: dict
    method: str
    tags: dict = field(default_factory=dict)


# ============================================================================
# Formulas
# ============================================================================

def c_to_f(t_c: float) -> float:
    return t_c * 9 / 5 + 32


def f_to_c(t_f: float) -> float:
    return (t_f - 32) * 5 / 9


def rh_from_dewpoint(t_c: float, td_c: float) -> float:
    """Relative humidity (%) from temperature and dew point via Magnus, clamped 0-100."""
    gamma = (MAGNUS_A * td_c) / (MAGNUS_B + td_c) - (MAGNUS_A * t_c) / (MAGNUS_B + t_c)
    return max(0.0, min(100.0, 100 * math.exp(gamma)))


def vapour_pressure_hpa(t_c: float, rh: float) -> float:
    """Water vapour pressure (hPa) from the Magnus saturation curve."""
    return rh / 100 * 6.105 * math.exp(17.27 * t_c / (237.7 + t_c))


def wind_chill_c(t_c: float, wind_ms: float, thresholds: RegimeThresholds = DEFAULT_THRESHOLDS) -> float:
    """JAG/TI wind chill. Identity above the cold limit or in near-calm air."""
    v = wind_ms * 3.6
    if t_c > thresholds.cold_max_c or v <= thresholds.min_wind_ms * 3.6:
        return t_c
    v16 = v ** 0.16
    return 13.12 + 0.6215 * t_c - 11.37 * v16 + 0.3965 * t_c * v16


def heat_index_c(t_c: float, rh: float) -> float:
    """NWS heat index (Rothfusz regression with its adjustments), in Celsius."""
    t = c_to_f(t_c)
    simple = 0.5 * (t + 61.0 + (t - 68.0) * 1.2 + rh * 0.094)
    if (simple + t) / 2 < 80:
        return f_to_c(simple)

    hi = (-42.379 + 2.04901523 * t + 10.14333127 * rh
          - 0.22475541 * t * rh - 0.00683783 * t * t
          - 0.05481717 * rh * rh + 0.00122874 * t * t * rh
          + 0.00085282 * t * rh * rh - 0.00000199 * t * t * rh * rh)

    if rh < 13 and 80 <= t <= 112:
        hi -= ((13 - rh) / 4) * math.sqrt((17 - abs(t - 95)) / 17)
    elif rh > 85 and 80 <= t <= 87:
        hi += ((rh - 85) / 10) * ((87 - t) / 5)
    return f_to_c(hi)


def apparent_temperature_c(t_c: float, rh: float, wind_ms: float) -> float:
    """Steadman apparent temperature (shade), as used by the Australian BoM."""
    return t_c + 0.33 * vapour_pressure_hpa(t_c, rh) - 0.70 * wind_ms - 4.00


# ============================================================================
# Feels-like engine
# ============================================================================

def select_regime(t_c: float, rh: Optional[float], wind_ms: float,
                  thresholds: RegimeThresholds = DEFAULT_THRESHOLDS) -> str:
    """Pick the regime tag for the given readings."""
    if t_c <= thresholds.cold_max_c and wind_ms > thresholds.min_wind_ms:
        return METHOD_WIND_CHILL
    if rh is not None and t_c >= thresholds.hot_min_c and rh >= thresholds.hot_min_rh:
        return METHOD_HEAT_INDEX
    return METHOD_APPARENT


def feels_like(t_c: float, rh: Optional[float], wind_ms: float,
               thresholds: RegimeThresholds = DEFAULT_THRESHOLDS) -> tuple[float, str]:
    """Feels-like temperature and the regime tag that produced it."""
    method = select_regime(t_c, rh, wind_ms, thresholds)
    if method == METHOD_WIND_CHILL:
        return wind_chill_c(t_c, wind_ms, thresholds), method
    if method == METHOD_HEAT_INDEX:
        return heat_index_c(t_c, rh), method
    if rh is None:
        return t_c, method
    return apparent_temperature_c(t_c, rh, wind_ms), method


def compute_feels_like(
    t_c: float,
    wind_ms: float,
    humidity: Optional[float] = None,
    dew_point: Optional[float] = None,
    thresholds: RegimeThresholds = DEFAULT_THRESHOLDS,
) -> Derivation:
    """Feels-like temperature with dew-point self-correction.

    The measured humidity is the primary input. When a dew point is also
    available and the result strays more than the tolerance from the air
    temperature, the calculation is repeated with the dew-point humidity and
    the result closer to air temperature is kept.
    """
    rh_td = rh_from_dewpoint(t_c, dew_point) if dew_point is not None else None
    if humidity is not None:
        rh, rh_src = humidity, RH_FROM_HUMIDITY
    else:
        rh, rh_src = rh_td, RH_FROM_DEWPOINT

    value, method = feels_like(t_c, rh, wind_ms, thresholds)

    if rh_src == RH_FROM_HUMIDITY and rh_td is not None:
        if abs(value - t_c) > thresholds.correction_tolerance_c:
            alt, alt_method = feels_like(t_c, rh_td, wind_ms, thresholds)
            if abs(alt - t_c) < abs(value - t_c):
                value, method, rh, rh_src = alt, alt_method, rh_td, RH_FROM_DEWPOINT

    fields = {
        "temperature": t_c,
        "wind_speed": wind_ms,
        "feels_like": round(value, 2),
    }
    if rh is not None:
        fields["humidity"] = round(rh, 1)
    if dew_point is not None:
        fields["dew_point"] = dew_point
    return Derivation(fields=fields, method=method, tags={"rh_src": rh_src})


# ============================================================================
# UV engine
# ============================================================================

def _uv_in_range(value: float, conv: UvConversion) -> bool:
    return math.isfinite(value) and 0 <= value <= conv.max_index


def convert_euv(raw: Optional[float], conv: UvConversion = DEFAULT_UV_CONVERSION) -> Optional[tuple[float, str]]:
    """Try EUV / divisor, then EUV x multiplier; first result in range wins."""
    if raw is None or raw < 0:
        return None
    divided = raw / conv.euv_divisor
    if _uv_in_range(divided, conv):
        return divided, UV_EUV_DIV
    multiplied = raw * conv.euv_multiplier
    if _uv_in_range(multiplied, conv):
        return multiplied, UV_EUV_MUL
    return None


def compute_uv_index(
    direct: Optional[float],
    euv: Optional[float],
    row: Sequence[str] = (),
    excluded_columns: Sequence[int] = (),
    conv: UvConversion = DEFAULT_UV_CONVERSION,
) -> Optional[Derivation]:
    """UV index from the best available source, or None if nothing fits.

    Priority: direct UV-B index, EUV conversion, then a heuristic that tries
    both EUV conversions on every other numeric column.
    """
    if direct is not None and direct >= 0 and _uv_in_range(direct, conv):
        return Derivation(fields={"uv_index": direct}, method=UV_DIRECT)

    converted = convert_euv(euv, conv)
    if converted is not None:
        value, method = converted
        return Derivation(fields={"uv_index": round(value, 3), "euv": euv}, method=method)

    for col, token in enumerate(row):
        if col in excluded_columns:
            continue
        raw = parse_number(token)
        if raw is None:
            continue
        converted = convert_euv(raw, conv)
        if converted is not None:
            value, tx = converted
            return Derivation(fields={"uv_index": round(value, 3)}, method=UV_HEURISTIC,
                              tags={"tx": tx})
    return None
