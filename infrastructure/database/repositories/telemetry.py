from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Sequence

from app.domain.exceptions import ConflictError, NotFoundError
from app.domain.telemetry.reading import NormalizedReading
from app.domain.telemetry.stream import SensorStream
from app.utils.time import storage_timestamp, utc_now
from infrastructure.database.ops.telemetry import TelemetryOperations
from infrastructure.database.utils import dump_json


@dataclass(frozen=True)
class StreamRepository:
    """Stream directory: resolve stream ids, list streams by site/equipment."""

    _backend: TelemetryOperations

    def register(self, stream: SensorStream) -> SensorStream:
        """Create a stream. Re-registering the same id is idempotent only if the metric type matches."""
        existing = self.get(stream.stream_id)
        if existing is not None:
            if existing.metric_type != stream.metric_type or existing.site_id != stream.site_id:
                raise ConflictError(
                    f"Stream {stream.stream_id} already exists with metric type {existing.metric_type.value}",
                    detail={"stream_id": stream.stream_id},
                )
            return existing
        created_at = stream.created_at or utc_now()
        self._backend.insert_stream(
            {
                "stream_id": stream.stream_id,
                "site_id": stream.site_id,
                "equipment_id": stream.equipment_id,
                "name": stream.name,
                "metric_type": stream.metric_type.value,
                "is_active": int(stream.is_active),
                "metadata": dump_json(stream.metadata or {}),
                "created_at": storage_timestamp(created_at),
            }
        )
        stream.created_at = created_at
        return stream

    def get(self, stream_id: str) -> SensorStream | None:
        row = self._backend.get_stream(stream_id)
        return SensorStream.from_dict(row) if row else None

    def get_many(self, stream_ids: Iterable[str]) -> dict[str, SensorStream]:
        rows = self._backend.get_streams(list(stream_ids))
        return {row["stream_id"]: SensorStream.from_dict(row) for row in rows}

    def list_by_site(self, site_id: str, equipment_id: str | None = None) -> list[SensorStream]:
        return [SensorStream.from_dict(row) for row in self._backend.list_streams(site_id, equipment_id)]

    def repoint(self, stream_id: str, equipment_id: str | None) -> SensorStream:
        """Move a stream to different equipment; the metric type is untouched."""
        if not self._backend.update_stream(
            stream_id, equipment_id=equipment_id, updated_at=storage_timestamp(utc_now())
        ):
            raise NotFoundError(f"Stream {stream_id} not found")
        return self.get(stream_id)

    def deactivate(self, stream_id: str) -> bool:
        return self._backend.update_stream(stream_id, is_active=0, updated_at=storage_timestamp(utc_now()))


def _reading_row(reading: NormalizedReading) -> dict:
    return {
        "stream_id": reading.stream_id,
        "time": storage_timestamp(reading.time),
        "value": reading.value,
        "quality_code": reading.quality_code.value,
        "source_timestamp": storage_timestamp(reading.source_timestamp),
        "ingestion_timestamp": storage_timestamp(reading.ingestion_timestamp),
        "message_id": reading.message_id,
        "metadata": dump_json(reading.metadata) if reading.metadata else None,
    }


@dataclass(frozen=True)
class ReadingRepository:
    """Time-series access for normalized readings."""

    _backend: TelemetryOperations

    def bulk_append(self, readings: Sequence[NormalizedReading]) -> list[bool]:
        """Store readings all-or-nothing; returns per-reading stored flags.

        A False flag means the (stream_id, message_id) pair was already stored,
        e.g. by a concurrent batch.
        """
        return self._backend.insert_readings([_reading_row(r) for r in readings])

    def existing_message_ids(self, stream_id: str, message_ids: Iterable[str]) -> set[str]:
        return self._backend.find_existing_message_ids(stream_id, message_ids)

    def get_readings(
        self,
        stream_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[NormalizedReading]:
        """Readings in [start, end] ordered oldest to newest (the newest *limit* when capped)."""
        rows = self._backend.get_readings(stream_id, storage_timestamp(start), storage_timestamp(end), limit)
        return [NormalizedReading.from_dict(row) for row in reversed(rows)]

    def get_latest(self, stream_id: str) -> NormalizedReading | None:
        row = self._backend.get_latest_reading(stream_id)
        return NormalizedReading.from_dict(row) if row else None

    def count(self, stream_id: str) -> int:
        return self._backend.count_readings(stream_id)
