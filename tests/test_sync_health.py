"""
Tests for knowledge-source sync health.

Ensures stale and failing sources are visible through /api/sources/health.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api.services.sync_health import (
    SyncStatus,
    get_all_source_health,
    get_source_health,
    get_sync_summary,
    record_sync_log,
)
from tests.fakes import add_source

pytestmark = pytest.mark.unit

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestRecordSyncLog:
    def test_success_log(self, store):
        row = record_sync_log(store, "ks-1", SyncStatus.SUCCESS, 4)

        assert row["status"] == "success"
        assert row["items_processed"] == 4
        assert row["error_message"] is None

    def test_error_log(self, store):
        row = record_sync_log(store, "ks-1", SyncStatus.ERROR, 0, "Gmail API down")

        assert row["status"] == "error"
        assert row["error_message"] == "Gmail API down"


class TestSourceHealth:
    def test_recent_sync_not_stale(self, store):
        source = store.get_source(add_source(store, "Inbox", "email", 15, NOW - timedelta(minutes=20))["id"])
        record_sync_log(store, source.id, SyncStatus.SUCCESS, 2)

        health = get_source_health(store, source, NOW)

        assert not health.is_stale
        assert health.last_status == SyncStatus.SUCCESS
        assert health.last_items_processed == 2
        assert health.minutes_since_sync == pytest.approx(20)

    def test_stale_after_twice_interval(self, store):
        source = store.get_source(add_source(store, "Inbox", "email", 15, NOW - timedelta(minutes=31))["id"])

        assert get_source_health(store, source, NOW).is_stale

    def test_never_synced_is_stale(self, store):
        source = store.get_source(add_source(store, "Inbox", "email", 15)["id"])

        health = get_source_health(store, source, NOW)

        assert health.is_stale
        assert health.last_sync is None
        assert health.last_status is None

    def test_manual_and_zero_interval_never_stale(self, store):
        manual = store.get_source(add_source(store, "Notes", "manual", 60)["id"])
        paused = store.get_source(add_source(store, "Paused", "email", 0)["id"])

        assert not get_source_health(store, manual, NOW).is_stale
        assert not get_source_health(store, paused, NOW).is_stale

    def test_disabled_never_stale(self, store):
        source = store.get_source(add_source(store, "Off", "email", 15, enabled=False)["id"])
        assert not get_source_health(store, source, NOW).is_stale

    def test_latest_log_wins(self, store):
        source = store.get_source(add_source(store, "Inbox", "email", 15, NOW)["id"])
        record_sync_log(store, source.id, SyncStatus.ERROR, 0, "timeout")
        record_sync_log(store, source.id, SyncStatus.SUCCESS, 1)

        health = get_source_health(store, source, NOW)

        assert health.last_status == SyncStatus.SUCCESS
        assert health.last_error is None


class TestSyncSummary:
    def test_summary(self, store):
        ok = add_source(store, "Inbox", "email", 15, NOW - timedelta(minutes=5))
        record_sync_log(store, ok["id"], SyncStatus.SUCCESS, 1)
        bad = add_source(store, "Drive", "document", 15, NOW - timedelta(minutes=5))
        record_sync_log(store, bad["id"], SyncStatus.ERROR, 0, "403")
        add_source(store, "New", "email", 15)

        summary = get_sync_summary(get_all_source_health(store, NOW))

        assert summary["total_sources"] == 3
        assert summary["failed_sources"] == ["Drive"]
        assert summary["stale_sources"] == ["New"]
        assert summary["never_run_sources"] == ["New"]
        assert summary["all_healthy"] is False

    def test_all_healthy(self):
        assert get_sync_summary([])["all_healthy"] is True


class TestSourcesHealthEndpoint:
    def test_endpoint(self, store):
        from api.main import app

        add_source(store, "Inbox", "email", 15)
        with patch("api.routes.sources.get_crm_store", return_value=store):
            response = TestClient(app).get("/api/sources/health")

        assert response.status_code == 200
        data = response.json()
        assert data["sources"][0]["name"] == "Inbox"
        assert data["sources"][0]["is_stale"] is True
        assert data["summary"]["total_sources"] == 1
