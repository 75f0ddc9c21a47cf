"""
Sensor Stream Entity
====================
Site-scoped series with a fixed metric type and a derived canonical unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.enums.telemetry import MetricType, Unit
from app.utils.time import coerce_datetime

# Canonical unit per metric type. Values of a stream are always stored in it.
CANONICAL_UNITS: dict[MetricType, Unit] = {
    MetricType.TEMPERATURE: Unit.DEG_F,
    MetricType.HUMIDITY: Unit.PERCENT,
    MetricType.CO2: Unit.PPM,
    MetricType.VPD: Unit.KPA,
    MetricType.LIGHT_PAR: Unit.UMOL,
    MetricType.LIGHT_PPFD: Unit.UMOL,
    MetricType.EC: Unit.MICROSIEMENS,
    MetricType.PH: Unit.PH,
    MetricType.DISSOLVED_OXYGEN: Unit.MG_PER_L,
    MetricType.WATER_TEMP: Unit.DEG_F,
    MetricType.WATER_LEVEL: Unit.LITERS,
    MetricType.SOIL_MOISTURE: Unit.PERCENT,
    MetricType.SOIL_TEMP: Unit.DEG_F,
    MetricType.SOIL_EC: Unit.MICROSIEMENS,
    MetricType.PRESSURE: Unit.PSI,
    MetricType.FLOW_RATE: Unit.GPM,
    MetricType.FLOW_TOTAL: Unit.GALLONS,
    MetricType.POWER: Unit.WATTS,
    MetricType.ENERGY: Unit.KWH,
}


def canonical_unit_for(metric_type: MetricType | str) -> Unit:
    """Return the canonical unit for a metric type."""
    return CANONICAL_UNITS[MetricType(metric_type)]


@dataclass
class SensorStream:
    """A named sensor series. The metric type never changes after creation."""

    stream_id: str
    site_id: str
    metric_type: MetricType
    name: str = ""
    equipment_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.metric_type = MetricType(self.metric_type)

    @property
    def canonical_unit(self) -> Unit:
        return canonical_unit_for(self.metric_type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "site_id": self.site_id,
            "equipment_id": self.equipment_id,
            "name": self.name,
            "metric_type": self.metric_type.value,
            "canonical_unit": self.canonical_unit.value,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SensorStream":
        return SensorStream(
            stream_id=data["stream_id"],
            site_id=data["site_id"],
            metric_type=MetricType(data["metric_type"]),
            name=data.get("name") or "",
            equipment_id=data.get("equipment_id"),
            is_active=bool(data.get("is_active", True)),
            created_at=coerce_datetime(data.get("created_at")),
            metadata=data.get("metadata") or {},
        )
