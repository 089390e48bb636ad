"""
Tests for the sync scheduler.

Acceptance Criteria:
- Sources are processed only when due; interval 0 is never auto-synced
- A source whose type has no processor gets a per-source error
- A processor that raises is logged, alerted, and doesn't stop the run
- Failing to load sources aborts the whole run with an ops alert
- End to end: a matched email becomes intelligence, tasks and a sync log
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from api.services.crm_types import KnowledgeSource, ProcessResult
from api.services.processors import ProcessorRegistry
from api.services.crm_store import StoreError
from api.services.sync_scheduler import RunAbortedError, SyncScheduler, is_due
from tests.fakes import add_client, add_member, add_source, make_extracted, make_item

pytestmark = pytest.mark.unit

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class RecordingProcessor:
    def __init__(self, result=None, error=None):
        self.result = result or ProcessResult()
        self.error = error
        self.calls = []

    async def __call__(self, source, clients):
        self.calls.append(source.name)
        if self.error:
            raise self.error
        return self.result


def _sync_logs(store, source_id):
    return store.select("sync_logs", order_by="created_at", knowledge_source_id=source_id)


class TestIsDue:
    def _source(self, interval, last_synced_at):
        return KnowledgeSource(
            id="s", name="s", source_type="email",
            sync_interval_minutes=interval, last_synced_at=last_synced_at,
        )

    def test_due_after_interval(self):
        assert is_due(self._source(10, NOW - timedelta(minutes=15)), NOW)

    def test_not_due_within_interval(self):
        assert not is_due(self._source(10, NOW - timedelta(minutes=5)), NOW)

    def test_due_exactly_at_interval(self):
        assert is_due(self._source(10, NOW - timedelta(minutes=10)), NOW)

    def test_never_synced_is_due(self):
        assert is_due(self._source(10, None), NOW)

    def test_synced_ten_minutes_ago(self):
        last = NOW - timedelta(minutes=10)
        assert not is_due(self._source(15, last), NOW)
        assert is_due(self._source(5, last), NOW)

    def test_zero_interval_never_due(self):
        assert not is_due(self._source(0, None), NOW)

    def test_manual_source_never_due(self):
        source = KnowledgeSource(id="s", name="s", source_type="manual", sync_interval_minutes=10)
        assert not is_due(source, NOW)


class TestSchedulerRun:
    @pytest.mark.asyncio
    async def test_skips_sources_not_due(self, store, alert_sender):
        processor = RecordingProcessor(ProcessResult(processed=2))
        registry = ProcessorRegistry()
        registry.register("email", processor)
        add_source(store, "Fresh", "email", 10, last_synced_at=NOW - timedelta(minutes=5))
        add_source(store, "Stale", "email", 10, last_synced_at=NOW - timedelta(minutes=15))

        report = await SyncScheduler(store, registry, alert_sender).run(now=NOW)

        assert processor.calls == ["Stale"]
        assert report.results["Fresh"].skipped
        assert report.results["Stale"].processed == 2
        assert report.to_dict()["results"]["Fresh"] == {"processed": 0, "errors": 0, "skipped": True}

    @pytest.mark.asyncio
    async def test_success_stamps_last_synced_and_logs(self, store, alert_sender):
        registry = ProcessorRegistry()
        registry.register("email", RecordingProcessor(ProcessResult(processed=3)))
        source = add_source(store, "Inbox", "email", 10)

        await SyncScheduler(store, registry, alert_sender).run(now=NOW)

        assert store.get_source(source["id"]).last_synced_at == NOW
        logs = _sync_logs(store, source["id"])
        assert len(logs) == 1
        assert logs[0]["status"] == "success"
        assert logs[0]["items_processed"] == 3
        assert logs[0]["error_message"] is None

    @pytest.mark.asyncio
    async def test_item_errors_logged_as_error(self, store, alert_sender):
        registry = ProcessorRegistry()
        registry.register("email", RecordingProcessor(
            ProcessResult(processed=1, errors=1, error_messages=["Email m2: bad json"])
        ))
        source = add_source(store, "Inbox", "email", 10)

        report = await SyncScheduler(store, registry, alert_sender).run(now=NOW)

        log = _sync_logs(store, source["id"])[0]
        assert log["status"] == "error"
        assert log["error_message"] == f"[{report.run_id}] Email m2: bad json"
        assert report.results["Inbox"].errors == 1
        # item errors are counted, not alerted, and the source still counts as synced
        assert alert_sender.alerts == []
        assert store.get_source(source["id"]).last_synced_at == NOW

    @pytest.mark.asyncio
    async def test_unregistered_source_type(self, store, alert_sender):
        source = add_source(store, "Slack", "slack", 10)

        report = await SyncScheduler(store, ProcessorRegistry(), alert_sender).run(now=NOW)

        result = report.results["Slack"]
        assert result.errors == 1
        assert result.error_message == "No processor registered for source type: slack"
        assert _sync_logs(store, source["id"])[0]["status"] == "error"
        assert store.get_source(source["id"]).last_synced_at is None

    @pytest.mark.asyncio
    async def test_processor_exception_alerts_and_continues(self, store, alert_sender):
        broken = RecordingProcessor(error=RuntimeError("Gmail API down"))
        healthy = RecordingProcessor(ProcessResult(processed=1))
        registry = ProcessorRegistry()
        registry.register("email", broken)
        registry.register("document", healthy)
        email = add_source(store, "Inbox", "email", 10)
        add_source(store, "Transcripts", "document", 10)

        report = await SyncScheduler(store, registry, alert_sender).run(now=NOW)

        assert healthy.calls == ["Transcripts"]
        assert report.success
        assert report.results["Inbox"].errors == 1
        assert report.results["Inbox"].error_message == "Gmail API down"
        assert report.results["Transcripts"].processed == 1

        assert len(alert_sender.alerts) == 1
        alert = alert_sender.alerts[0]
        assert alert["event"] == "source_processor_failed"
        assert alert["severity"] == "error"
        assert alert["details"]["source_id"] == email["id"]
        assert alert["details"]["run_id"] == report.run_id

        log = _sync_logs(store, email["id"])[0]
        assert log["status"] == "error"
        assert "Gmail API down" in log["error_message"]
        assert store.get_source(email["id"]).last_synced_at is None

    @pytest.mark.asyncio
    async def test_disabled_sources_ignored(self, store, alert_sender):
        processor = RecordingProcessor()
        registry = ProcessorRegistry()
        registry.register("email", processor)
        add_source(store, "Off", "email", 10, enabled=False)

        report = await SyncScheduler(store, registry, alert_sender).run(now=NOW)

        assert processor.calls == []
        assert report.results == {}

    @pytest.mark.asyncio
    async def test_run_aborts_when_sources_unavailable(self, store, alert_sender):
        scheduler = SyncScheduler(store, ProcessorRegistry(), alert_sender)

        with patch.object(store, "list_enabled_sources", side_effect=StoreError("database is locked")):
            with pytest.raises(RunAbortedError) as exc_info:
                await scheduler.run(now=NOW)

        assert "database is locked" in str(exc_info.value)
        assert alert_sender.alerts[0]["event"] == "process_sources_failed"
        assert alert_sender.alerts[0]["details"]["run_id"] == exc_info.value.run_id


class TestEndToEnd:
    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_matched_email_to_tasks(self, store, scheduler, fake_extractor, email_fetcher, alert_sender):
        """
        Never-synced hourly source, one positive email from a client domain
        with one action item assigned to a team member.
        """
        acme = add_client(store, "Acme Corp", "acme.com")
        store.insert("client_health", {"client_id": acme["id"], "status": "healthy"})
        sarah = add_member(store, "Sarah Chen", "sarah@firm.com")
        source = add_source(store, "Client inbox", "email", 60)
        email_fetcher.items = [make_item("msg-1", "Subject: Budget approved", sender="Jane <jane@acme.com>")]
        fake_extractor.responder = lambda content_type, text: make_extracted(
            sentiment="positive",
            topics=["renewal"],
            action_items=[{"description": "Send the renewal paperwork", "assignee": "Sarah", "due_date": None}],
        )

        report = await scheduler.run(now=NOW)

        assert report.results["Client inbox"].processed == 1
        assert report.results["Client inbox"].errors == 0

        intel = store.find_intelligence("email", "msg-1")
        assert intel.client_id == acme["id"]

        tasks = store.select("tasks", intelligence_id=intel.id)
        assert len(tasks) == 1
        assert tasks[0]["assignee_id"] == sarah["id"]
        assert tasks[0]["client_id"] == acme["id"]

        assert store.count("health_alerts") == 0
        health = store.get_client_health(acme["id"])
        assert health.status.value == "healthy"
        assert health.last_positive_signal is not None
        assert store.find_queue_item("email", "msg-1").status.value == "completed"

        logs = _sync_logs(store, source["id"])
        assert [(l["status"], l["items_processed"]) for l in logs] == [("success", 1)]
        assert store.get_source(source["id"]).last_synced_at == NOW
        assert alert_sender.alerts == []

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_budget_topic_raises_risk_alert(self, store, scheduler, fake_extractor, email_fetcher):
        acme = add_client(store, "Acme Corp", "acme.com")
        add_source(store, "Client inbox", "email", 10)
        email_fetcher.items = [make_item("msg-1", "Need to revisit budget", sender="jane@acme.com")]
        fake_extractor.responder = lambda c, t: make_extracted(topics=["budget"])

        await scheduler.run(now=NOW)

        alert = store.select_one("health_alerts", client_id=acme["id"])
        assert alert["alert_type"] == "risk_topic"
        assert store.get_client_health(acme["id"]).status.value == "at_risk"

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_rerun_does_not_duplicate(self, store, scheduler, fake_extractor, email_fetcher):
        add_client(store, "Acme Corp", "acme.com")
        add_source(store, "Client inbox", "email", 10)
        email_fetcher.items = [make_item("msg-1", sender="jane@acme.com")]

        await scheduler.run(now=NOW)
        report = await scheduler.run(now=NOW + timedelta(minutes=11))

        assert report.results["Client inbox"].processed == 0
        assert store.count("intelligence") == 1
        assert len(fake_extractor.calls) == 1

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_manual_source_never_auto_synced(self, store, scheduler, fake_extractor):
        source = add_source(store, "Notes", "manual", 10)

        report = await scheduler.run(now=NOW)

        assert report.results["Notes"].skipped
        assert report.results["Notes"].errors == 0
        assert fake_extractor.calls == []
        assert _sync_logs(store, source["id"]) == []
        assert store.get_source(source["id"]).last_synced_at is None
