"""
Ingestion Result Value Objects
==============================
Structured per-batch outcome returned to ingestion callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.enums.telemetry import IngestionErrorType


@dataclass(frozen=True)
class IngestError:
    """Why one reading in a batch was rejected."""

    index: int
    stream_id: str
    error_type: IngestionErrorType
    reason: str
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "stream_id": self.stream_id,
            "message_id": self.message_id,
            "error_type": self.error_type.value,
            "reason": self.reason,
        }


@dataclass
class IngestResult:
    """Outcome of one ingest_batch call."""

    total_received: int = 0
    accepted: int = 0
    duplicates: int = 0
    duplicate_indices: list[int] = field(default_factory=list)
    errors: list[IngestError] = field(default_factory=list)
    quality_counts: dict[str, int] = field(default_factory=dict)

    @property
    def rejected(self) -> int:
        return len(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_received": self.total_received,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "duplicate_indices": list(self.duplicate_indices),
            "rejected": self.rejected,
            "errors": [error.to_dict() for error in self.errors],
            "quality_counts": dict(self.quality_counts),
        }
