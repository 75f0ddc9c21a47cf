"""
Normalization Service
=====================
Converts raw readings into canonical, quality-judged normalized readings.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from app.domain.exceptions import NormalizationError
from app.domain.telemetry.reading import NormalizedReading, RawReading
from app.domain.telemetry.stream import SensorStream, canonical_unit_for
from app.enums.telemetry import MetricType, QualityCode, Unit
from app.utils.time import Clock, ensure_utc, utc_now
from app.utils.units import convert

logger = logging.getLogger(__name__)

# Physically plausible range per metric type, in the canonical unit (inclusive).
EXPECTED_RANGES: dict[MetricType, tuple[float, float]] = {
    MetricType.TEMPERATURE: (-50.0, 150.0),
    MetricType.HUMIDITY: (0.0, 100.0),
    MetricType.CO2: (0.0, 5000.0),
    MetricType.VPD: (0.0, 5.0),
    MetricType.LIGHT_PAR: (0.0, 3000.0),
    MetricType.LIGHT_PPFD: (0.0, 3000.0),
    MetricType.EC: (0.0, 10000.0),
    MetricType.PH: (0.0, 14.0),
    MetricType.DISSOLVED_OXYGEN: (0.0, 50.0),
    MetricType.WATER_TEMP: (32.0, 120.0),
    MetricType.WATER_LEVEL: (0.0, 10000.0),
    MetricType.SOIL_MOISTURE: (0.0, 100.0),
    MetricType.SOIL_TEMP: (32.0, 120.0),
    MetricType.SOIL_EC: (0.0, 10000.0),
    MetricType.PRESSURE: (0.0, 200.0),
    MetricType.FLOW_RATE: (0.0, 1000.0),
    MetricType.FLOW_TOTAL: (0.0, 1_000_000.0),
    MetricType.POWER: (0.0, 100_000.0),
    MetricType.ENERGY: (0.0, 100_000.0),
}

DEFAULT_FUTURE_SKEW = timedelta(minutes=5)
DEFAULT_MAX_AGE = timedelta(hours=24)


class NormalizationService:
    """
    Stateless normalizer for raw telemetry.

    Provides:
    - Canonical unit resolution per metric type
    - Unit conversion (affine temperature, linear elsewhere)
    - Range and timestamp quality judgments

    Quality precedence when several checks apply:
    BAD_FUTURE_TIMESTAMP > BAD_OUT_OF_RANGE > BAD_STALE > GOOD.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        future_skew: timedelta = DEFAULT_FUTURE_SKEW,
        max_age: timedelta | None = DEFAULT_MAX_AGE,
    ) -> None:
        """
        Initialize the normalizer.

        Args:
            clock: Current-time source (injected for deterministic tests)
            future_skew: Tolerance before a source timestamp counts as future
            max_age: Age beyond which a reading is stale (None disables the check)
        """
        self._clock = clock
        self._future_skew = future_skew
        self._max_age = max_age

    @staticmethod
    def canonical_unit_for(metric_type: MetricType | str) -> Unit:
        return canonical_unit_for(metric_type)

    @staticmethod
    def expected_range(metric_type: MetricType | str) -> tuple[float, float]:
        return EXPECTED_RANGES[MetricType(metric_type)]

    @staticmethod
    def convert(value: float, source: str | Unit, target: str | Unit) -> float:
        return convert(value, source, target)

    def normalize(self, raw: RawReading, stream: SensorStream) -> NormalizedReading:
        """
        Normalize one raw reading against its target stream.

        Args:
            raw: Reading as delivered by the device
            stream: Resolved target stream (supplies metric type)

        Returns:
            NormalizedReading in the stream's canonical unit

        Raises:
            NormalizationError: Non-numeric/non-finite value, unknown unit or
                unsupported conversion
        """
        value = self._numeric(raw.value)
        canonical = convert(value, raw.unit, stream.canonical_unit)

        now = self._clock()
        source_ts = ensure_utc(raw.source_timestamp) if raw.source_timestamp else None
        ingestion_ts = ensure_utc(raw.ingestion_timestamp) if raw.ingestion_timestamp else now

        quality = self._judge(stream.metric_type, canonical, source_ts, now)
        if not quality.is_good:
            logger.debug(
                "Reading for stream %s judged %s (value=%s, source_ts=%s)",
                stream.stream_id,
                quality.value,
                canonical,
                source_ts,
            )

        return NormalizedReading(
            stream_id=stream.stream_id,
            value=canonical,
            quality_code=quality,
            ingestion_timestamp=ingestion_ts,
            source_timestamp=source_ts,
            message_id=raw.message_id or None,
            metadata=dict(raw.metadata or {}),
        )

    def _judge(
        self,
        metric_type: MetricType,
        value: float,
        source_ts: datetime | None,
        now: datetime,
    ) -> QualityCode:
        in_future = source_ts is not None and source_ts > now + self._future_skew
        low, high = EXPECTED_RANGES[metric_type]
        out_of_range = not (low <= value <= high)
        stale = (
            source_ts is not None
            and self._max_age is not None
            and source_ts < now - self._max_age
        )

        if in_future:
            return QualityCode.BAD_FUTURE_TIMESTAMP
        if out_of_range:
            return QualityCode.BAD_OUT_OF_RANGE
        if stale:
            return QualityCode.BAD_STALE
        return QualityCode.GOOD

    @staticmethod
    def _numeric(value: object) -> float:
        if isinstance(value, bool):
            raise NormalizationError("Reading value must be numeric, got bool")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise NormalizationError(f"Reading value must be numeric, got {value!r}") from None
        if not math.isfinite(number):
            raise NormalizationError(f"Reading value must be finite, got {value!r}")
        return number
