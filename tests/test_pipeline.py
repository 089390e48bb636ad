"""
Tests for startup wiring and the app entry point.
"""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from api.services.drive import DriveFetcher
from api.services.extraction import IntelligenceExtractor
from api.services.gmail import GmailFetcher
from api.services.pipeline import build_pipeline, get_manual_processor, get_scheduler, reset_scheduler
from api.services.processors import DocumentProcessor, EmailProcessor, ManualProcessor

pytestmark = pytest.mark.unit


def test_registry_has_every_source_type(store, test_settings):
    scheduler = build_pipeline(store, test_settings)

    assert scheduler.registry.source_types == ["document", "email", "manual"]
    assert isinstance(scheduler.registry.get("email"), EmailProcessor)
    assert isinstance(scheduler.registry.get("document"), DocumentProcessor)
    assert isinstance(get_manual_processor(scheduler), ManualProcessor)


def test_default_collaborators(store, test_settings):
    scheduler = build_pipeline(store, test_settings)

    email = scheduler.registry.get("email")
    document = scheduler.registry.get("document")
    assert isinstance(email.fetcher, GmailFetcher)
    assert isinstance(document.fetcher, DriveFetcher)
    # one auth service shared by both Google fetchers
    assert email.fetcher.service.auth is document.fetcher.service.auth
    assert isinstance(email.handler.extractor, IntelligenceExtractor)
    assert email.handler.extractor.api_key == "test-key-for-testing"


def test_get_scheduler_singleton(store):
    reset_scheduler()
    with patch("api.services.pipeline.get_crm_store", return_value=store):
        assert get_scheduler() is get_scheduler()


def test_health_endpoint():
    from api.main import app

    fake = MagicMock(anthropic_configured=True, google_configured=False, cron_secret="secret")
    with patch("api.main.settings", fake):
        response = TestClient(app).get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "client-intel"
    assert data["status"] == "degraded"
    assert data["checks"] == {
        "api_key_configured": True,
        "google_configured": False,
        "cron_secret_configured": True,
    }
