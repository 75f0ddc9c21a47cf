"""
Unit Conversions
================

Pure conversion helpers for telemetry units.

Functions:
- parse_unit: Resolve a vendor unit code (or alias) to a Unit
- unit_family: Conversion family a unit belongs to
- is_convertible: Whether two units share a family
- convert: Convert a value between two units of the same family

Families are linear (value * scale_to_base / scale_from_base) except
temperature, which is affine and routed through Kelvin.

Unknown codes and cross-family conversions raise NormalizationError; there is
no silent pass-through.
"""
from __future__ import annotations

import math

from app.domain.exceptions import NormalizationError
from app.enums.telemetry import Unit

# =============================================================================
# Unit codes
# =============================================================================

_ALIASES: dict[str, Unit] = {
    # Temperature
    "f": Unit.DEG_F,
    "°f": Unit.DEG_F,
    "degf": Unit.DEG_F,
    "fahrenheit": Unit.DEG_F,
    "c": Unit.DEG_C,
    "°c": Unit.DEG_C,
    "degc": Unit.DEG_C,
    "celsius": Unit.DEG_C,
    "k": Unit.KELVIN,
    "kelvin": Unit.KELVIN,
    # Relative
    "%": Unit.PERCENT,
    "pct": Unit.PERCENT,
    "percent": Unit.PERCENT,
    "%rh": Unit.PERCENT,
    "rh": Unit.PERCENT,
    # Concentration
    "ppm": Unit.PPM,
    "ppb": Unit.PPB,
    "mg_l": Unit.MG_PER_L,
    "mg/l": Unit.MG_PER_L,
    # Pressure
    "kpa": Unit.KPA,
    "psi": Unit.PSI,
    "bar": Unit.BAR,
    # Light
    "umol": Unit.UMOL,
    "µmol": Unit.UMOL,
    "umol/m2/s": Unit.UMOL,
    "lux": Unit.LUX,
    "lx": Unit.LUX,
    "footcandles": Unit.FOOTCANDLES,
    "fc": Unit.FOOTCANDLES,
    # Conductivity
    "us": Unit.MICROSIEMENS,
    "µs": Unit.MICROSIEMENS,
    "us/cm": Unit.MICROSIEMENS,
    "microsiemens": Unit.MICROSIEMENS,
    "ms_cm": Unit.MS_PER_CM,
    "ms/cm": Unit.MS_PER_CM,
    "ph": Unit.PH,
    # Volume
    "l": Unit.LITERS,
    "liter": Unit.LITERS,
    "liters": Unit.LITERS,
    "ml": Unit.MILLILITERS,
    "gal": Unit.GALLONS,
    "gallon": Unit.GALLONS,
    "gallons": Unit.GALLONS,
    # Flow
    "gpm": Unit.GPM,
    "lpm": Unit.LPM,
    "gph": Unit.GPH,
    "lph": Unit.LPH,
    # Distance
    "cm": Unit.CENTIMETERS,
    "m": Unit.METERS,
    "in": Unit.INCHES,
    "inch": Unit.INCHES,
    "inches": Unit.INCHES,
    "ft": Unit.FEET,
    "feet": Unit.FEET,
    # Power / energy
    "w": Unit.WATTS,
    "watts": Unit.WATTS,
    "kw": Unit.KILOWATTS,
    "kilowatts": Unit.KILOWATTS,
    "hp": Unit.HORSEPOWER,
    "kwh": Unit.KWH,
    "wh": Unit.WH,
    "j": Unit.JOULES,
    "joules": Unit.JOULES,
}


def parse_unit(code: str | Unit) -> Unit:
    """
    Resolve a unit code to a Unit.

    Matching is case-insensitive and ignores surrounding whitespace.

    Raises:
        NormalizationError: If the code is empty or not recognised
    """
    if isinstance(code, Unit):
        return code
    raw = (code or "").strip()
    if not raw:
        raise NormalizationError("Missing unit code")
    try:
        return Unit(raw)
    except ValueError:
        pass
    unit = _ALIASES.get(raw.lower())
    if unit is None:
        raise NormalizationError(f"Unknown unit code: {code!r}", detail={"unit": code})
    return unit


# =============================================================================
# Families
# =============================================================================

TEMPERATURE = "temperature"

# Scale of each unit relative to its family's base unit.
_LINEAR: dict[Unit, tuple[str, float]] = {
    Unit.PERCENT: ("relative", 1.0),
    Unit.PPM: ("concentration", 1.0),
    Unit.PPB: ("concentration", 0.001),
    Unit.MG_PER_L: ("mass_concentration", 1.0),
    Unit.KPA: ("pressure", 1.0),
    Unit.PSI: ("pressure", 6.89476),
    Unit.BAR: ("pressure", 100.0),
    Unit.UMOL: ("photon_flux", 1.0),
    Unit.LUX: ("illuminance", 1.0),
    Unit.FOOTCANDLES: ("illuminance", 10.7639),
    Unit.MICROSIEMENS: ("conductivity", 1.0),
    Unit.MS_PER_CM: ("conductivity", 1000.0),
    Unit.PH: ("acidity", 1.0),
    Unit.LITERS: ("volume", 1.0),
    Unit.MILLILITERS: ("volume", 0.001),
    Unit.GALLONS: ("volume", 3.78541),
    Unit.LPM: ("flow", 1.0),
    Unit.GPM: ("flow", 3.78541),
    Unit.LPH: ("flow", 1.0 / 60.0),
    Unit.GPH: ("flow", 3.78541 / 60.0),
    Unit.CENTIMETERS: ("distance", 1.0),
    Unit.METERS: ("distance", 100.0),
    Unit.INCHES: ("distance", 2.54),
    Unit.FEET: ("distance", 30.48),
    Unit.WATTS: ("power", 1.0),
    Unit.KILOWATTS: ("power", 1000.0),
    Unit.HORSEPOWER: ("power", 745.7),
    Unit.WH: ("energy", 1.0),
    Unit.KWH: ("energy", 1000.0),
    Unit.JOULES: ("energy", 1.0 / 3600.0),
}

_TEMPERATURE_UNITS = frozenset({Unit.DEG_F, Unit.DEG_C, Unit.KELVIN})


def unit_family(unit: Unit) -> str:
    """Return the conversion family name for *unit*."""
    if unit in _TEMPERATURE_UNITS:
        return TEMPERATURE
    return _LINEAR[unit][0]


def is_convertible(source: Unit, target: Unit) -> bool:
    """Whether a value in *source* can be expressed in *target*."""
    return source == target or unit_family(source) == unit_family(target)


# =============================================================================
# Conversion
# =============================================================================

def _to_kelvin(value: float, unit: Unit) -> float:
    if unit == Unit.DEG_F:
        return (value - 32.0) * 5.0 / 9.0 + 273.15
    if unit == Unit.DEG_C:
        return value + 273.15
    return value


def _from_kelvin(value: float, unit: Unit) -> float:
    if unit == Unit.DEG_F:
        return (value - 273.15) * 9.0 / 5.0 + 32.0
    if unit == Unit.DEG_C:
        return value - 273.15
    return value


def convert(value: float, source: str | Unit, target: str | Unit) -> float:
    """
    Convert *value* from *source* to *target*.

    Args:
        value: Numeric value expressed in *source*
        source: Unit (or unit code) the value is expressed in
        target: Unit (or unit code) to express it in

    Returns:
        The converted value (identity when both units are the same)

    Raises:
        NormalizationError: Unknown unit, units from different families or a
            result too large to represent
    """
    src = parse_unit(source)
    dst = parse_unit(target)
    if src == dst:
        return float(value)

    src_family = unit_family(src)
    dst_family = unit_family(dst)
    if src_family != dst_family:
        raise NormalizationError(
            f"Unsupported conversion {src.value} -> {dst.value}",
            detail={"from": src.value, "to": dst.value},
        )

    if src_family == TEMPERATURE:
        converted = _from_kelvin(_to_kelvin(float(value), src), dst)
    else:
        converted = float(value) * _LINEAR[src][1] / _LINEAR[dst][1]
    if not math.isfinite(converted):
        raise NormalizationError(
            f"Value {value!r} {src.value} overflows when converted to {dst.value}",
            detail={"from": src.value, "to": dst.value},
        )
    return converted
