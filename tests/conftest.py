"""
Pytest configuration and shared fixtures for Client Intel tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that exercise the whole pipeline against a SQLite file
- integration: Tests requiring real Google / Anthropic credentials

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest

from api.services.crm_store import CRMStore
from tests.fakes import FakeAlertSender, FakeExtractor, FakeFetcher


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slower end-to-end pipeline tests")
    config.addinivalue_line("markers", "integration: Integration tests (real external APIs)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    yield
    from tests.reset_singletons import reset_all_singletons
    reset_all_singletons()


@pytest.fixture
def store(tmp_path) -> CRMStore:
    """A fresh SQLite-backed store per test."""
    return CRMStore(db_path=str(tmp_path / "crm.db"))


@pytest.fixture
def test_settings(tmp_path):
    """
    Settings for testing.

    Uses temporary paths and dummy credentials to avoid touching real data.
    """
    from config.settings import Settings

    return Settings(
        CLIENTINTEL_DB_PATH=tmp_path / "crm.db",
        CRON_SECRET="test-cron-secret",
        ANTHROPIC_API_KEY="test-key-for-testing",
    )


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def email_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def document_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def alert_sender() -> FakeAlertSender:
    return FakeAlertSender()


@pytest.fixture
def scheduler(store, test_settings, fake_extractor, email_fetcher, document_fetcher, alert_sender):
    """A fully wired scheduler with fake collaborators."""
    from api.services.pipeline import build_pipeline

    return build_pipeline(
        store,
        test_settings,
        extractor=fake_extractor,
        email_fetcher=email_fetcher,
        document_fetcher=document_fetcher,
        alert_sender=alert_sender,
    )
