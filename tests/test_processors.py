"""
Tests for source processors and the per-item processing protocol.

Acceptance Criteria:
- Re-ingesting an item never creates a second intelligence row
- A failed item is retried on the next run without duplicating its queue row
- One bad item in a batch doesn't affect the others
- Email senders are matched to clients; documents stay unresolved
- Manual sources are a no-op for scheduled runs
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from api.services.crm_store import StoreError
from api.services.crm_types import (
    HealthStatus,
    ItemFailure,
    ItemSuccess,
    KnowledgeSource,
    QueueStatus,
    SourceType,
)
from api.services.extraction import ContentType
from api.services.intelligence_actions import IntelligenceActionPipeline
from api.services.processors import (
    DocumentProcessor,
    EmailProcessor,
    ItemHandler,
    ManualProcessor,
    ProcessorRegistry,
    build_note_item,
    note_content_id,
    summarize_outcomes,
    sync_cutoff,
)
from api.services.resilience import ServiceUnavailableError
from tests.fakes import FakeExtractor, FakeFetcher, add_client, add_source, make_extracted, make_item

pytestmark = pytest.mark.unit

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def handler(store, fake_extractor):
    return ItemHandler(store, fake_extractor, IntelligenceActionPipeline(store, default_satisfaction_score=5))


def _source(store, name="Inbox", source_type="email", **kwargs) -> KnowledgeSource:
    row = add_source(store, name, source_type, **kwargs)
    return store.get_source(row["id"])


class TestSyncCutoff:
    def test_uses_last_synced_at(self):
        synced = NOW - timedelta(hours=3)
        source = KnowledgeSource(id="s", name="s", source_type="email", last_synced_at=synced)
        assert sync_cutoff(source, NOW) == synced

    def test_never_synced_looks_back_one_interval(self):
        source = KnowledgeSource(id="s", name="s", source_type="email", sync_interval_minutes=30)
        assert sync_cutoff(source, NOW) == NOW - timedelta(minutes=30)


class TestItemHandler:
    @pytest.mark.asyncio
    async def test_success_stores_intelligence_and_completes(self, store, handler):
        outcome = await handler.process(
            make_item("msg-1", "body"), SourceType.EMAIL, ContentType.EMAIL,
            knowledge_source_id="ks-1", resolve_client=lambda item: "client-1",
        )

        assert isinstance(outcome, ItemSuccess)
        assert not outcome.already_processed
        intel = store.find_intelligence("email", "msg-1")
        assert intel.id == outcome.intelligence_id
        assert intel.client_id == "client-1"
        assert intel.knowledge_source_id == "ks-1"
        assert intel.raw_ai_response["summary"] == intel.summary
        queue_item = store.find_queue_item("email", "msg-1")
        assert queue_item.status == QueueStatus.COMPLETED
        assert queue_item.client_id == "client-1"

    @pytest.mark.asyncio
    async def test_reingestion_is_idempotent(self, store, handler, fake_extractor):
        item = make_item("msg-1", "body")
        await handler.process(item, SourceType.EMAIL, ContentType.EMAIL)
        second = await handler.process(item, SourceType.EMAIL, ContentType.EMAIL)

        assert isinstance(second, ItemSuccess)
        assert second.already_processed
        assert store.count("intelligence", source="email", source_id="msg-1") == 1
        assert len(fake_extractor.calls) == 1

    @pytest.mark.asyncio
    async def test_unparseable_response_marks_failed(self, store):
        extractor = FakeExtractor(lambda content_type, text: None)
        handler = ItemHandler(store, extractor, IntelligenceActionPipeline(store, 5))

        outcome = await handler.process(make_item("msg-1"), SourceType.EMAIL, ContentType.EMAIL)

        assert isinstance(outcome, ItemFailure)
        assert store.find_intelligence("email", "msg-1") is None
        queue_item = store.find_queue_item("email", "msg-1")
        assert queue_item.status == QueueStatus.FAILED
        assert "No intelligence produced" in queue_item.error_message

    @pytest.mark.asyncio
    async def test_failed_item_retried_without_duplicate(self, store):
        attempts = []

        def responder(content_type, text):
            attempts.append(text)
            return RuntimeError("model timeout") if len(attempts) == 1 else make_extracted()

        handler = ItemHandler(store, FakeExtractor(responder), IntelligenceActionPipeline(store, 5))
        item = make_item("msg-1")

        first = await handler.process(item, SourceType.EMAIL, ContentType.EMAIL)
        second = await handler.process(item, SourceType.EMAIL, ContentType.EMAIL)

        assert isinstance(first, ItemFailure)
        assert first.reason == "model timeout"
        assert isinstance(second, ItemSuccess)
        assert store.count("processing_queue", source="email", source_id="msg-1") == 1
        assert store.find_queue_item("email", "msg-1").status == QueueStatus.COMPLETED
        assert store.count("intelligence") == 1

    @pytest.mark.asyncio
    async def test_service_unavailable_propagates(self, store):
        extractor = FakeExtractor(lambda c, t: ServiceUnavailableError("Anthropic", "API key not configured"))
        handler = ItemHandler(store, extractor, IntelligenceActionPipeline(store, 5))

        with pytest.raises(ServiceUnavailableError):
            await handler.process(make_item("msg-1"), SourceType.EMAIL, ContentType.EMAIL)

        assert store.find_queue_item("email", "msg-1").status == QueueStatus.FAILED

    @pytest.mark.asyncio
    async def test_intelligence_already_stored_by_overlapping_run(self, store, handler):
        """A row that appears between claim and insert is reported as already processed."""
        original_claim = handler.queue.claim

        def claim_then_race(source, source_id, knowledge_source_id, raw_content):
            queue_item = original_claim(source, source_id, knowledge_source_id, raw_content)
            store.insert("intelligence", {
                "source": source, "source_id": source_id, "summary": "other run", "sentiment": "neutral",
            })
            return queue_item

        handler.queue.claim = claim_then_race

        outcome = await handler.process(make_item("msg-1"), SourceType.EMAIL, ContentType.EMAIL)

        assert isinstance(outcome, ItemSuccess)
        assert outcome.already_processed
        assert store.count("intelligence") == 1
        assert store.count("tasks") == 0

    @pytest.mark.asyncio
    async def test_actions_run_when_queue_completion_fails(self, store, handler, fake_extractor):
        acme = add_client(store, "Acme Corp", "acme.com")
        fake_extractor.responder = lambda c, t: make_extracted(
            sentiment="negative",
            action_items=[{"description": "Call Jane back", "assignee": None, "due_date": None}],
        )
        item = make_item("msg-1", sender="jane@acme.com")

        with patch.object(handler.queue, "complete", side_effect=StoreError("database is locked")):
            outcome = await handler.process(
                item, SourceType.EMAIL, ContentType.EMAIL, resolve_client=lambda i: acme["id"],
            )

        assert isinstance(outcome, ItemSuccess)
        assert not outcome.already_processed
        assert store.count("tasks") == 1
        assert store.count("health_alerts") == 1
        assert store.get_client_health(acme["id"]).status == HealthStatus.AT_RISK

        again = await handler.process(item, SourceType.EMAIL, ContentType.EMAIL)
        assert again.already_processed
        assert store.count("intelligence") == 1
        assert store.count("tasks") == 1


class TestSummarizeOutcomes:
    def test_counts_and_messages(self):
        result = summarize_outcomes([
            ItemSuccess("a", "i1"),
            ItemSuccess("b", already_processed=True),
            ItemFailure("c", "bad json"),
        ], "Email")

        assert result.processed == 1
        assert result.skipped == 1
        assert result.errors == 1
        assert result.error_messages == ["Email c: bad json"]


class TestEmailProcessor:
    @pytest.mark.asyncio
    async def test_matches_sender_to_client(self, store, handler):
        acme = add_client(store, "Acme", "acme.com")
        fetcher = FakeFetcher([make_item("msg-1", "hi", sender="Jane <jane@acme.com>")])
        processor = EmailProcessor(fetcher, handler)
        source = _source(store, configuration={"label": "clients"})

        result = await processor(source, store.list_clients())

        assert result.processed == 1
        assert result.errors == 0
        assert store.find_intelligence("email", "msg-1").client_id == acme["id"]
        since, configuration = fetcher.calls[0]
        assert configuration == {"label": "clients"}

    @pytest.mark.asyncio
    async def test_unmatched_sender_still_stored(self, store, handler):
        processor = EmailProcessor(FakeFetcher([make_item("msg-1", sender="who@nowhere.net")]), handler)

        result = await processor(_source(store), store.list_clients())

        assert result.processed == 1
        assert store.find_intelligence("email", "msg-1").client_id is None

    @pytest.mark.asyncio
    async def test_batch_isolation(self, store):
        """Item 3 of 5 fails; the other four are stored."""
        def responder(content_type, text):
            return ValueError("garbled") if text == "body-2" else make_extracted()

        handler = ItemHandler(store, FakeExtractor(responder), IntelligenceActionPipeline(store, 5))
        items = [make_item(f"msg-{i}", f"body-{i}") for i in range(5)]
        processor = EmailProcessor(FakeFetcher(items), handler)

        result = await processor(_source(store), [])

        assert result.processed == 4
        assert result.errors == 1
        assert result.error_messages == ["Email msg-2: garbled"]
        assert store.count("intelligence") == 4
        assert store.find_queue_item("email", "msg-2").status == QueueStatus.FAILED

    @pytest.mark.asyncio
    async def test_second_run_skips_processed(self, store, handler, fake_extractor):
        items = [make_item("msg-1"), make_item("msg-2")]
        processor = EmailProcessor(FakeFetcher(items), handler)
        source = _source(store)

        await processor(source, [])
        result = await processor(source, [])

        assert result.processed == 0
        assert result.skipped == 2
        assert len(fake_extractor.calls) == 2

    @pytest.mark.asyncio
    async def test_fetch_error_propagates(self, store, handler):
        processor = EmailProcessor(FakeFetcher(error=RuntimeError("Gmail down")), handler)

        with pytest.raises(RuntimeError, match="Gmail down"):
            await processor(_source(store), [])

    @pytest.mark.asyncio
    async def test_cutoff_from_last_sync(self, store, handler):
        synced = NOW - timedelta(hours=1)
        fetcher = FakeFetcher([])
        await EmailProcessor(fetcher, handler)(_source(store, last_synced_at=synced), [])

        assert fetcher.calls[0][0] == synced


class TestDocumentProcessor:
    @pytest.mark.asyncio
    async def test_client_left_unresolved(self, store, handler, fake_extractor):
        add_client(store, "Acme", "acme.com")
        fetcher = FakeFetcher([make_item("doc-1", "Title: Acme QBR\n\ntranscript", sender="jane@acme.com")])
        processor = DocumentProcessor(fetcher, handler)

        result = await processor(_source(store, "Transcripts", "document"), store.list_clients())

        assert result.processed == 1
        intel = store.find_intelligence("document", "doc-1")
        assert intel.client_id is None
        assert fake_extractor.calls[0][0] == "transcript"
        # Unresolved intelligence produces no tasks or alerts
        assert store.count("tasks") == 0
        assert store.count("health_alerts") == 0


class TestManualProcessor:
    @pytest.mark.asyncio
    async def test_scheduled_run_is_noop(self, store):
        result = await ManualProcessor()(_source(store, "Notes", "manual"), [])

        assert result.processed == 0
        assert result.errors == 0
        assert store.count("intelligence") == 0

    @pytest.mark.asyncio
    async def test_submit_note(self, store, handler, fake_extractor):
        client = add_client(store, "Acme", "acme.com")
        processor = ManualProcessor(handler)

        item, outcome = await processor.submit_note("Call went well.", title="Weekly sync", client_id=client["id"])

        assert isinstance(outcome, ItemSuccess)
        intel = store.find_intelligence("manual", item.id)
        assert intel.client_id == client["id"]
        assert fake_extractor.calls[0] == ("note", "Title: Weekly sync\n\nCall went well.")

    @pytest.mark.asyncio
    async def test_duplicate_note_already_processed(self, store, handler):
        processor = ManualProcessor(handler)

        await processor.submit_note("Same note", client_id="c1")
        _, outcome = await processor.submit_note("Same note", client_id="c1")

        assert outcome.already_processed
        assert store.count("intelligence") == 1

    @pytest.mark.asyncio
    async def test_submit_without_handler(self):
        with pytest.raises(RuntimeError):
            await ManualProcessor().submit_note("text")

    def test_note_ids(self):
        assert note_content_id("hello", "c1") == note_content_id("  hello  ", "c1")
        assert note_content_id("hello", "c1") != note_content_id("hello", "c2")
        assert note_content_id("hello").startswith("note-")
        assert build_note_item("body").text == "body"


class TestProcessorRegistry:
    def test_register_and_lookup(self):
        registry = ProcessorRegistry()
        processor = ManualProcessor()
        registry.register(SourceType.MANUAL, processor)

        assert registry.get("manual") is processor
        assert SourceType.MANUAL in registry
        assert registry.get("slack") is None
        assert registry.source_types == ["manual"]
