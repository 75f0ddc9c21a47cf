import math

import pytest

from app.domain.exceptions import NormalizationError
from app.enums.telemetry import Unit
from app.utils.units import convert, is_convertible, parse_unit, unit_family


class TestParseUnit:
    def test_enum_values_and_aliases_resolve(self):
        assert parse_unit("degF") is Unit.DEG_F
        assert parse_unit("°C") is Unit.DEG_C
        assert parse_unit("  Celsius ") is Unit.DEG_C
        assert parse_unit("%RH") is Unit.PERCENT
        assert parse_unit(Unit.PSI) is Unit.PSI

    @pytest.mark.parametrize("code", ["", "   ", "furlongs", None])
    def test_unknown_or_missing_code_raises(self, code):
        with pytest.raises(NormalizationError):
            parse_unit(code)


class TestConvert:
    def test_same_unit_is_identity(self):
        assert convert(32, "degF", "degF") == 32.0

    def test_temperature_is_affine(self):
        assert convert(0, "degC", "degF") == pytest.approx(32.0)
        assert convert(100, "degC", "degF") == pytest.approx(212.0)
        assert convert(212, "degF", "K") == pytest.approx(373.15)

    def test_linear_families(self):
        assert convert(1, "bar", "kPa") == pytest.approx(100.0)
        assert convert(2, "mS_cm", "uS") == pytest.approx(2000.0)
        assert convert(60, "lph", "lpm") == pytest.approx(1.0)

    @pytest.mark.parametrize(
        "value,source,target",
        [(21.5, "degC", "degF"), (14.7, "psi", "kPa"), (3.0, "gal", "L"), (1.2, "kWh", "J")],
    )
    def test_round_trip_is_stable(self, value, source, target):
        back = convert(convert(value, source, target), target, source)
        assert math.isclose(back, value, rel_tol=1e-9)

    def test_cross_family_conversion_raises(self):
        with pytest.raises(NormalizationError, match="Unsupported conversion"):
            convert(10, "degC", "pct")

    def test_overflowing_result_raises(self):
        with pytest.raises(NormalizationError, match="overflows"):
            convert(1e306, "kW", "W")
        assert math.isfinite(convert(1e300, "kW", "W"))

    def test_family_helpers(self):
        assert unit_family(Unit.KELVIN) == "temperature"
        assert is_convertible(Unit.GPM, Unit.LPM)
        assert not is_convertible(Unit.GPM, Unit.GALLONS)
