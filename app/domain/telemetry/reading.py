"""
Telemetry Reading Value Objects
===============================
Raw readings are transient pipeline input; normalized readings are the
immutable, append-only records the storage boundary persists.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from app.domain.exceptions import NormalizationError
from app.enums.telemetry import QualityCode, Unit
from app.utils.time import coerce_datetime


def _source_timestamp(value: Any) -> datetime | None:
    """Parse a device timestamp; only an absent one may be left unset."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    parsed = coerce_datetime(value)
    if parsed is None:
        raise NormalizationError(
            f"Unparseable source_timestamp {value!r}", detail={"source_timestamp": str(value)}
        )
    return parsed


@dataclass(frozen=True)
class RawReading:
    """Reading as delivered by a device, before normalization."""

    stream_id: str
    value: float
    unit: str | Unit
    source_timestamp: datetime | None = None
    ingestion_timestamp: datetime | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def stamped(self, ingestion_timestamp: datetime) -> "RawReading":
        """Return a copy carrying the pipeline's ingestion time."""
        return replace(self, ingestion_timestamp=ingestion_timestamp)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "RawReading":
        """
        Build a raw reading from its wire form.

        Raises:
            NormalizationError: source_timestamp is present but not ISO-8601
        """
        message_id = data.get("message_id")
        return RawReading(
            stream_id=str(data.get("stream_id") or ""),
            value=data.get("value"),
            unit=data.get("unit") or "",
            source_timestamp=_source_timestamp(data.get("source_timestamp") or data.get("timestamp")),
            ingestion_timestamp=coerce_datetime(data.get("ingestion_timestamp")),
            message_id=str(message_id) if message_id not in (None, "") else None,
            metadata=data.get("metadata") or {},
        )


@dataclass(frozen=True)
class NormalizedReading:
    """Reading expressed in the stream's canonical unit with a quality judgment."""

    stream_id: str
    value: float
    quality_code: QualityCode
    ingestion_timestamp: datetime
    source_timestamp: datetime | None = None
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def time(self) -> datetime:
        """Observation time: source timestamp when known, else ingestion time."""
        return self.source_timestamp or self.ingestion_timestamp

    @property
    def is_good(self) -> bool:
        return self.quality_code.is_good

    def to_dict(self) -> dict[str, Any]:
        return {
            "stream_id": self.stream_id,
            "value": self.value,
            "quality_code": self.quality_code.value,
            "time": self.time.isoformat(),
            "source_timestamp": self.source_timestamp.isoformat() if self.source_timestamp else None,
            "ingestion_timestamp": self.ingestion_timestamp.isoformat(),
            "message_id": self.message_id,
            "metadata": self.metadata,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "NormalizedReading":
        return NormalizedReading(
            stream_id=data["stream_id"],
            value=float(data["value"]),
            quality_code=QualityCode(data["quality_code"]),
            ingestion_timestamp=coerce_datetime(data["ingestion_timestamp"]),
            source_timestamp=coerce_datetime(data.get("source_timestamp")),
            message_id=data.get("message_id"),
            metadata=data.get("metadata") or {},
        )
