from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app.domain.telemetry.reading import NormalizedReading
from app.enums.telemetry import QualityCode
from app.services.utilities.deduplication_service import DeduplicationService
from app.utils.cache import TTLCache

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def reading(stream_id="temp-1", message_id=None, value=70.0):
    return NormalizedReading(
        stream_id=stream_id,
        value=value,
        quality_code=QualityCode.GOOD,
        ingestion_timestamp=T0,
        message_id=message_id,
    )


@pytest.fixture()
def seeded_readings(seed, reading_repo):
    seed.stream("temp-1")
    seed.stream("temp-2")
    reading_repo.bulk_append([reading("temp-1", "m-1"), reading("temp-2", "m-9")])
    return reading_repo


class TestDeduplicateBatch:
    def test_first_occurrence_wins_and_order_is_kept(self, deduplicator, seeded_readings):
        batch = [reading(message_id="a", value=1), reading(message_id="b", value=2), reading(message_id="a", value=3)]
        result = deduplicator.deduplicate_batch(batch)
        assert [r.value for r in result.survivors] == [1, 2]
        assert result.removed_count == 1
        assert result.removed_indices == [2]

    def test_already_stored_keys_are_dropped(self, deduplicator, seeded_readings):
        result = deduplicator.deduplicate_batch([reading(message_id="m-1"), reading(message_id="m-2")])
        assert [r.message_id for r in result.survivors] == ["m-2"]

    def test_key_is_scoped_to_stream(self, deduplicator, seeded_readings):
        result = deduplicator.deduplicate_batch([reading("temp-2", "m-1"), reading("temp-1", "m-9")])
        assert result.removed_count == 0

    def test_readings_without_message_id_are_never_duplicates(self, deduplicator, seeded_readings):
        result = deduplicator.deduplicate_batch([reading(), reading()])
        assert len(result.survivors) == 2

    def test_empty_batch(self, deduplicator):
        assert deduplicator.deduplicate_batch([]).survivors == []


class TestLookups:
    def test_is_duplicate(self, deduplicator, seeded_readings):
        assert deduplicator.is_duplicate("temp-1", "m-1")
        assert not deduplicator.is_duplicate("temp-1", "m-404")
        assert not deduplicator.is_duplicate("temp-1", None)

    def test_get_duplicates_by_stream(self, deduplicator, seeded_readings):
        found = deduplicator.get_duplicates_by_stream({"temp-1": ["m-1", "m-9"], "temp-2": ["m-9", None]})
        assert found == {("temp-1", "m-1"), ("temp-2", "m-9")}
        assert deduplicator.get_duplicates("temp-1", ["m-1", "x"]) == {"m-1"}

    def test_remembered_keys_skip_storage(self):
        repo = MagicMock()
        repo.existing_message_ids.return_value = set()
        service = DeduplicationService(repo, cache=TTLCache())
        service.remember([reading(message_id="m-5")])

        assert service.is_duplicate("temp-1", "m-5")
        repo.existing_message_ids.assert_not_called()

    def test_without_cache_storage_is_always_asked(self):
        repo = MagicMock()
        repo.existing_message_ids.return_value = {"m-5"}
        service = DeduplicationService(repo)
        service.remember([reading(message_id="m-5")])

        assert service.is_duplicate("temp-1", "m-5")
        repo.existing_message_ids.assert_called_once_with("temp-1", ["m-5"])
