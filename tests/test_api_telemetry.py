"""Telemetry API tests: read-only endpoints over ingested readings."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.domain.telemetry.stream import SensorStream
from app.utils.time import utc_now
from conftest import SITE_ID, raw


@pytest.fixture()
def stream(container):
    return container.stream_repo.register(SensorStream("temp-1", SITE_ID, "temperature"))


def test_latest_reading(client, container, stream):
    container.ingest_service.ingest_batch(SITE_ID, [raw("temp-1", 70, message_id="m-1")])

    resp = client.get("/api/telemetry/streams/temp-1/latest")

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["value"] == 70.0
    assert data["quality_code"] == "good"
    assert data["message_id"] == "m-1"


def test_latest_reading_missing(client, stream):
    resp = client.get("/api/telemetry/streams/temp-1/latest")
    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False


def test_readings_in_range(client, container, stream):
    now = utc_now()
    container.ingest_service.ingest_batch(
        SITE_ID,
        [raw("temp-1", 60 + i, at=now - timedelta(minutes=i)) for i in range(1, 4)],
    )
    start = (now - timedelta(minutes=2, seconds=30)).isoformat()

    resp = client.get("/api/telemetry/streams/temp-1/readings", query_string={"start": start})

    data = resp.get_json()["data"]
    assert data["count"] == 2
    assert [r["value"] for r in data["readings"]] == [62.0, 61.0]


def test_readings_limit_and_bad_range(client, container, stream):
    now = utc_now()
    assert client.get("/api/telemetry/streams/temp-1/readings?limit=0").status_code == 200

    resp = client.get(
        "/api/telemetry/streams/temp-1/readings",
        query_string={"start": now.isoformat(), "end": (now - timedelta(hours=1)).isoformat()},
    )
    assert resp.status_code == 400

    resp = client.get("/api/telemetry/streams/temp-1/readings?start=yesterday-ish")
    assert resp.status_code == 400


def test_recent_errors(client, container, stream):
    container.ingest_service.ingest_batch(SITE_ID, [raw("missing", 1), raw("temp-1", 70, "furlongs")])

    data = client.get(f"/api/telemetry/sites/{SITE_ID}/errors?limit=1").get_json()["data"]

    assert data["count"] == 1
    assert data["errors"][0]["error_type"] in {"unknown_stream", "normalization"}
