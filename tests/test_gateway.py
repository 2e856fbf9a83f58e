"""Tests for the sidring conversion gateway.

Exercises the HTTP layer through the real application factory; no
network, no configuration file.
"""

from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from sidring.app import create_app
from sidring.config import SidringConfig

OBJECT_ID = "73d664e4-0886-4a73-b745-c694da45ddb4"
OBJECT_SID = "S-1-12-1-1943430372-1249052806-2496021943-3034400218"


@pytest.fixture
def client():
    with TestClient(create_app(SidringConfig())) as c:
        yield c


@pytest.fixture
def authed_client():
    with TestClient(create_app(SidringConfig(api_key="old-key, new-key"))) as c:
        yield c


class TestMeta:
    def test_health(self, client):
        r = client.get("/api/v1/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "service": "sidring"}

    def test_version(self, client):
        r = client.get("/api/v1/version")
        assert r.status_code == 200
        assert r.json()["gateway"] == "0.1.0"
        assert r.json()["sid_prefix"] == "S-1-12-1-"


class TestSingleConversion:
    def test_object_id_to_sid(self, client):
        r = client.get(f"/api/v1/sids/{OBJECT_ID}")
        assert r.status_code == 200
        assert r.json() == {"object_id": OBJECT_ID, "sid": OBJECT_SID}

    def test_sid_to_object_id(self, client):
        r = client.get(f"/api/v1/object-ids/{OBJECT_SID}")
        assert r.status_code == 200
        assert r.json() == {"sid": OBJECT_SID, "object_id": OBJECT_ID}

    def test_uppercase_object_id(self, client):
        r = client.get(f"/api/v1/sids/{OBJECT_ID.upper()}")
        assert r.status_code == 200
        assert r.json()["sid"] == OBJECT_SID

    def test_bad_object_id_400(self, client):
        r = client.get("/api/v1/sids/not-a-guid")
        assert r.status_code == 400
        assert r.json()["reason"] == "invalid guid text"

    @pytest.mark.parametrize(
        "sid, reason",
        [
            ("S-1-5-21-123-456", "bad prefix"),
            ("S-1-12-1-1-2-3", "wrong component count"),
            ("S-1-12-1-1-2-3-4294967296", "invalid integer component"),
        ],
    )
    def test_bad_sid_400(self, client, sid, reason):
        r = client.get(f"/api/v1/object-ids/{sid}")
        assert r.status_code == 400
        assert r.json() == {"detail": reason, "reason": reason}


class TestBatchConversion:
    def test_mixed_batch_keeps_order(self, client):
        r = client.post(
            "/api/v1/convert",
            json={"values": [OBJECT_ID, OBJECT_SID, "S-1-12-1-0-0-0-0"]},
        )
        assert r.status_code == 200
        body = r.json()
        assert body["errors"] == 0
        assert [x["output"] for x in body["results"]] == [
            OBJECT_SID,
            OBJECT_ID,
            "00000000-0000-0000-0000-000000000000",
        ]
        assert [x["direction"] for x in body["results"]] == ["encode", "decode", "decode"]

    def test_failures_reported_inline(self, client):
        r = client.post(
            "/api/v1/convert",
            json={"values": ["S-1-12-1-1-2-3", "garbage", OBJECT_ID]},
        )
        assert r.status_code == 200
        body = r.json()
        assert body["errors"] == 2
        first, second, third = body["results"]
        assert first["error"] == "wrong component count"
        assert first["output"] is None
        assert second["error"] == "invalid guid text"
        assert third["output"] == OBJECT_SID
        assert third["error"] is None

    def test_empty_batch(self, client):
        r = client.post("/api/v1/convert", json={"values": []})
        assert r.status_code == 200
        assert r.json() == {"results": [], "errors": 0}

    def test_missing_values_422(self, client):
        r = client.post("/api/v1/convert", json={})
        assert r.status_code == 422

    def test_batch_limit_413(self):
        app = create_app(SidringConfig(max_batch=2))
        with TestClient(app) as c:
            r = c.post("/api/v1/convert", json={"values": [OBJECT_ID] * 3})
        assert r.status_code == 413


class TestAuth:
    def test_dev_mode_no_key_allows_all(self, client):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get(f"/api/v1/sids/{OBJECT_ID}").status_code == 200

    def test_rejects_missing_key(self, authed_client):
        r = authed_client.get("/api/v1/health")
        assert r.status_code == 401
        assert "Invalid or missing" in r.json()["detail"]

    def test_rejects_wrong_key(self, authed_client):
        r = authed_client.get("/api/v1/health", headers={"X-API-Key": "wrong-key"})
        assert r.status_code == 401

    @pytest.mark.parametrize("key", ["old-key", "new-key"])
    def test_accepts_any_configured_key(self, authed_client, key):
        r = authed_client.get("/api/v1/health", headers={"X-API-Key": key})
        assert r.status_code == 200

    def test_enforced_on_convert(self, authed_client):
        r = authed_client.post("/api/v1/convert", json={"values": [OBJECT_ID]})
        assert r.status_code == 401


class TestAudit:
    def test_request_is_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="sidring.audit"):
            client.get("/api/v1/health")
        assert any("GET /api/v1/health 200" in rec.getMessage() for rec in caplog.records)
