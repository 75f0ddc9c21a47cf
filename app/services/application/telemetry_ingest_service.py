"""
Telemetry Ingest Service
========================
Turns batches of raw device readings into stored, normalized readings.

Pipeline per batch::

    resolve stream -> stamp ingestion time -> normalize   (per reading)
    deduplicate -> bulk append (one transaction)          (per batch)
    error log, session counters, EventBus                 (after commit)

Per-reading failures become ``IngestError`` entries and never stop the batch.
A storage failure during the bulk append fails the whole batch and leaves
nothing written.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence

from app.domain.exceptions import NormalizationError, StorageError, ValidationError
from app.domain.telemetry.ingest_result import IngestError, IngestResult
from app.domain.telemetry.reading import NormalizedReading, RawReading
from app.domain.telemetry.session import IngestionSession
from app.enums.events import TelemetryEvent
from app.enums.telemetry import IngestionErrorType, IngestionProtocol
from app.services.utilities.deduplication_service import DeduplicationService
from app.services.utilities.normalization_service import NormalizationService
from app.utils.time import Clock, utc_now
from infrastructure.database.repositories.sessions import IngestionErrorRepository, IngestionSessionRepository
from infrastructure.database.repositories.telemetry import ReadingRepository, StreamRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 5000
DEFAULT_SESSION_STALE_AFTER = timedelta(minutes=15)
MAX_RECENT_ERRORS = 200


class TelemetryIngestService:
    """Ingestion pipeline and ingestion session bookkeeping."""

    def __init__(
        self,
        *,
        stream_repo: StreamRepository,
        reading_repo: ReadingRepository,
        session_repo: IngestionSessionRepository,
        error_repo: IngestionErrorRepository,
        normalizer: NormalizationService,
        deduplicator: DeduplicationService,
        event_bus: Any | None = None,
        clock: Clock = utc_now,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        session_stale_after: timedelta = DEFAULT_SESSION_STALE_AFTER,
    ) -> None:
        self.stream_repo = stream_repo
        self.reading_repo = reading_repo
        self.session_repo = session_repo
        self.error_repo = error_repo
        self.normalizer = normalizer
        self.deduplicator = deduplicator
        self.event_bus = event_bus
        self._clock = clock
        self.max_batch_size = max_batch_size
        self.session_stale_after = session_stale_after

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_batch(
        self,
        site_id: str,
        readings: Sequence[RawReading | Mapping[str, Any]],
        *,
        session_id: str | None = None,
    ) -> IngestResult:
        """
        Normalize, deduplicate and store a batch of readings for one site.

        Args:
            site_id: Site the caller is authenticated for
            readings: Raw readings (or their dict form) in delivery order
            session_id: Optional ingestion session to account the batch to

        Returns:
            IngestResult with accepted, duplicate and per-reading error counts

        Raises:
            ValidationError: Batch larger than ``max_batch_size``
            StorageError: The bulk append failed; nothing was stored
        """
        if len(readings) > self.max_batch_size:
            raise ValidationError(
                f"Batch of {len(readings)} readings exceeds the limit of {self.max_batch_size}",
                detail={"max_batch_size": self.max_batch_size},
            )
        result = IngestResult(total_received=len(readings))
        if not readings:
            return result

        raws: list[RawReading | None] = []
        for index, item in enumerate(readings):
            if isinstance(item, RawReading):
                raws.append(item)
                continue
            try:
                raws.append(RawReading.from_dict(dict(item)))
            except NormalizationError as exc:
                message_id = item.get("message_id")
                result.errors.append(
                    IngestError(index, str(item.get("stream_id") or ""), IngestionErrorType.NORMALIZATION,
                                str(exc), str(message_id) if message_id not in (None, "") else None)
                )
                raws.append(None)
        streams = self.stream_repo.get_many({raw.stream_id for raw in raws if raw is not None and raw.stream_id})
        now = self._clock()

        normalized: list[NormalizedReading] = []
        positions: list[int] = []
        for index, raw in enumerate(raws):
            if raw is None:
                continue
            stream = streams.get(raw.stream_id)
            if stream is None:
                result.errors.append(
                    IngestError(index, raw.stream_id, IngestionErrorType.UNKNOWN_STREAM,
                                f"Unknown stream {raw.stream_id!r}", raw.message_id)
                )
                continue
            if stream.site_id != site_id:
                result.errors.append(
                    IngestError(index, raw.stream_id, IngestionErrorType.SITE_MISMATCH,
                                f"Stream {raw.stream_id} does not belong to site {site_id}", raw.message_id)
                )
                continue
            try:
                reading = self.normalizer.normalize(raw.stamped(now), stream)
            except NormalizationError as exc:
                result.errors.append(
                    IngestError(index, raw.stream_id, IngestionErrorType.NORMALIZATION, str(exc), raw.message_id)
                )
                continue
            normalized.append(reading)
            positions.append(index)

        result.errors.sort(key=lambda error: error.index)

        deduped = self.deduplicator.deduplicate_batch(normalized)
        removed = set(deduped.removed_indices)
        survivor_positions = [positions[i] for i in range(len(normalized)) if i not in removed]
        duplicate_indices = [positions[i] for i in deduped.removed_indices]

        stored: list[NormalizedReading] = []
        if deduped.survivors:
            flags = self.reading_repo.bulk_append(deduped.survivors)
            for reading, position, inserted in zip(deduped.survivors, survivor_positions, flags):
                if inserted:
                    stored.append(reading)
                else:
                    # Lost a race with a concurrent batch carrying the same key
                    duplicate_indices.append(position)

        result.duplicate_indices = sorted(duplicate_indices)
        result.duplicates = len(result.duplicate_indices)
        result.accepted = len(stored)
        result.quality_counts = dict(Counter(r.quality_code.value for r in stored))

        self._record_errors(site_id, session_id, result.errors, now)
        if session_id:
            self._account_session(session_id, result, now)
        self.deduplicator.remember(stored)
        if stored:
            self._publish(
                TelemetryEvent.READINGS_ACCEPTED,
                {
                    "site_id": site_id,
                    "session_id": session_id,
                    "count": len(stored),
                    "stream_ids": sorted({r.stream_id for r in stored}),
                    "quality_counts": result.quality_counts,
                },
            )

        if result.errors:
            logger.info(
                "Ingested batch for site %s: %d accepted, %d duplicates, %d rejected",
                site_id,
                result.accepted,
                result.duplicates,
                result.rejected,
            )
        else:
            logger.debug("Ingested batch for site %s: %d accepted, %d duplicates",
                         site_id, result.accepted, result.duplicates)
        return result

    def _record_errors(
        self,
        site_id: str,
        session_id: str | None,
        errors: Sequence[IngestError],
        occurred_at: datetime,
    ) -> None:
        if not errors:
            return
        rows = [
            {
                "site_id": site_id,
                "session_id": session_id,
                "stream_id": error.stream_id,
                "message_id": error.message_id,
                "error_type": error.error_type.value,
                "error_message": error.reason,
                "occurred_at": occurred_at,
            }
            for error in errors
        ]
        try:
            self.error_repo.record_many(rows)
        except StorageError as exc:
            # The readings are already committed; losing the error log is not fatal
            logger.error("Failed to persist %d ingestion errors for site %s: %s", len(rows), site_id, exc)

    def _account_session(self, session_id: str, result: IngestResult, now: datetime) -> None:
        try:
            if not self.session_repo.add_counts(session_id, result.total_received, result.rejected):
                logger.warning("Ingestion session %s not found; counters not updated", session_id)
                return
            self.session_repo.heartbeat(session_id, now)
        except StorageError as exc:
            logger.error("Failed to update counters for session %s: %s", session_id, exc)

    def _publish(self, event: TelemetryEvent, payload: dict[str, Any]) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(event, payload)
        except Exception:
            logger.exception("Failed to publish %s", event.value)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def start_session(
        self,
        site_id: str,
        equipment_id: str,
        protocol: IngestionProtocol | str,
        metadata: dict[str, Any] | None = None,
    ) -> IngestionSession:
        """Open a new ingestion session for a device."""
        if not site_id or not equipment_id:
            raise ValidationError("site_id and equipment_id are required")
        try:
            protocol = IngestionProtocol(protocol)
        except ValueError:
            raise ValidationError(f"Unknown ingestion protocol: {protocol!r}") from None
        now = self._clock()
        session = IngestionSession(
            session_id=uuid.uuid4().hex,
            site_id=site_id,
            equipment_id=equipment_id,
            protocol=protocol,
            started_at=now,
            last_heartbeat_at=now,
            metadata=dict(metadata or {}),
        )
        self.session_repo.create(session)
        logger.info("Ingestion session %s started for %s/%s via %s",
                    session.session_id, site_id, equipment_id, protocol.value)
        self._publish(TelemetryEvent.SESSION_STARTED, session.to_dict())
        return session

    def heartbeat(self, session_id: str) -> bool:
        """Advance the heartbeat of an open session. False if unknown or ended."""
        return self.session_repo.heartbeat(session_id, self._clock())

    def end_session(self, session_id: str) -> bool:
        """
        Close a session. Ending an already-ended session keeps its original
        end time and returns False.
        """
        ended = self.session_repo.end(session_id, self._clock())
        if ended:
            logger.info("Ingestion session %s ended", session_id)
            self._publish(TelemetryEvent.SESSION_ENDED, {"session_id": session_id, "reason": "closed"})
        return ended

    def reap_stale(self, threshold: timedelta | None = None) -> int:
        """
        Close open sessions whose last heartbeat is older than *threshold*.

        Returns:
            Number of sessions closed by this call (0 on a repeat run)
        """
        now = self._clock()
        cutoff = now - (threshold if threshold is not None else self.session_stale_after)
        closed = self.session_repo.end_stale(cutoff, now)
        if closed:
            logger.info("Reaped %d stale ingestion sessions (heartbeat before %s)", closed, cutoff.isoformat())
        return closed

    def get_session(self, session_id: str) -> IngestionSession | None:
        return self.session_repo.get(session_id)

    def list_active_sessions(self, site_id: str | None = None) -> list[IngestionSession]:
        return self.session_repo.list_open(site_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recent_errors(self, site_id: str, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent ingestion errors for a site, newest first (limit clamped to 1..200)."""
        limit = max(1, min(int(limit), MAX_RECENT_ERRORS))
        return self.error_repo.recent(site_id, limit)

    def get_readings(
        self,
        stream_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[NormalizedReading]:
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end")
        return self.reading_repo.get_readings(stream_id, start, end, limit)

    def get_latest_reading(self, stream_id: str) -> NormalizedReading | None:
        return self.reading_repo.get_latest(stream_id)
