"""
Deduplication Service
=====================
Drops readings whose (stream_id, message_id) has already been stored, and
repeats of the same key within one batch.

Storage is the authority: the readings table carries a unique constraint on
(stream_id, message_id), so a racing batch that slips past this service is
still rejected at insert time. The TTL cache is only a fast path for
recently accepted keys.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from app.domain.telemetry.reading import NormalizedReading
from app.utils.cache import TTLCache
from infrastructure.database.repositories.telemetry import ReadingRepository

logger = logging.getLogger(__name__)

DedupKey = tuple[str, str]


@dataclass
class DedupResult:
    """Readings that survived deduplication, in their original batch order."""

    survivors: list[NormalizedReading] = field(default_factory=list)
    removed_count: int = 0
    removed_indices: list[int] = field(default_factory=list)


class DeduplicationService:
    """Message-id based duplicate detection for telemetry readings."""

    def __init__(self, reading_repo: ReadingRepository, *, cache: TTLCache | None = None) -> None:
        self.reading_repo = reading_repo
        self._cache = cache

    @staticmethod
    def _key(reading: NormalizedReading) -> DedupKey | None:
        if not reading.message_id:
            return None
        return (reading.stream_id, reading.message_id)

    def is_duplicate(self, stream_id: str, message_id: str | None) -> bool:
        """True if a reading with this key is already stored. Missing ids are never duplicates."""
        if not message_id:
            return False
        if self._cache is not None and self._cache.has((stream_id, message_id)):
            return True
        return message_id in self.reading_repo.existing_message_ids(stream_id, [message_id])

    def get_duplicates(self, stream_id: str, message_ids: Iterable[str | None]) -> set[str]:
        """Subset of *message_ids* already stored for the stream."""
        found = self.get_duplicates_by_stream({stream_id: message_ids})
        return {message_id for _, message_id in found}

    def get_duplicates_by_stream(self, ids_by_stream: Mapping[str, Iterable[str | None]]) -> set[DedupKey]:
        """
        Look up stored keys for several streams at once.

        Cached keys are answered from memory; the rest go to storage in one
        query per stream.
        """
        duplicates: set[DedupKey] = set()
        for stream_id, message_ids in ids_by_stream.items():
            pending: list[str] = []
            for message_id in dict.fromkeys(m for m in message_ids if m):
                if self._cache is not None and self._cache.has((stream_id, message_id)):
                    duplicates.add((stream_id, message_id))
                else:
                    pending.append(message_id)
            if pending:
                stored = self.reading_repo.existing_message_ids(stream_id, pending)
                duplicates.update((stream_id, message_id) for message_id in stored)
        return duplicates

    def deduplicate_batch(self, readings: Sequence[NormalizedReading]) -> DedupResult:
        """
        Remove already-stored readings and in-batch repeats.

        The first occurrence of a key wins; batch order is preserved.
        """
        ids_by_stream: dict[str, list[str]] = defaultdict(list)
        for reading in readings:
            key = self._key(reading)
            if key is not None:
                ids_by_stream[key[0]].append(key[1])
        stored = self.get_duplicates_by_stream(ids_by_stream) if ids_by_stream else set()

        result = DedupResult()
        seen: set[DedupKey] = set()
        for index, reading in enumerate(readings):
            key = self._key(reading)
            if key is not None and (key in stored or key in seen):
                result.removed_count += 1
                result.removed_indices.append(index)
                continue
            if key is not None:
                seen.add(key)
            result.survivors.append(reading)

        if result.removed_count:
            logger.debug("Dropped %d duplicate readings of %d", result.removed_count, len(readings))
        return result

    def remember(self, readings: Iterable[NormalizedReading]) -> None:
        """Record keys of readings that were just stored."""
        if self._cache is None:
            return
        self._cache.set_many((key, True) for key in map(self._key, readings) if key is not None)
