"""
Telemetry Domain
================
Sensor streams, readings, ingestion sessions and batch results.
"""

from .ingest_result import IngestError, IngestResult
from .reading import NormalizedReading, RawReading
from .session import IngestionSession
from .stream import CANONICAL_UNITS, SensorStream, canonical_unit_for

__all__ = [
    "CANONICAL_UNITS",
    "IngestError",
    "IngestResult",
    "IngestionSession",
    "NormalizedReading",
    "RawReading",
    "SensorStream",
    "canonical_unit_for",
]
