"""
Shared machinery for source processors.

ItemHandler runs one content item through the processing-queue protocol:
claim -> match -> extract -> store intelligence -> complete -> actions,
returning an ItemSuccess or ItemFailure instead of raising. FetchingProcessor
drives a fetcher and the handler sequentially over one knowledge source.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from api.services.crm_store import CRMStore, DuplicateRowError
from api.services.crm_types import (
    Client,
    ContentItem,
    Intelligence,
    ItemFailure,
    ItemOutcome,
    ItemSuccess,
    KnowledgeSource,
    ProcessResult,
    SourceType,
    utcnow,
)
from api.services.extraction import ContentType, ExtractedIntelligence
from api.services.intelligence_actions import IntelligenceActionPipeline
from api.services.processing_queue import ProcessingQueue
from api.services.resilience import ServiceUnavailableError

logger = logging.getLogger(__name__)

ClientResolver = Callable[[ContentItem], Optional[str]]


class ExtractionError(Exception):
    """The extractor produced no usable intelligence for an item."""


class ContentFetcher(Protocol):
    async def fetch_since(self, since: datetime, configuration: dict) -> list[ContentItem]: ...


class Extractor(Protocol):
    async def extract(
        self,
        content_type: ContentType,
        raw_text: str,
        instruction: Optional[str] = None,
    ) -> Optional[ExtractedIntelligence]: ...


def sync_cutoff(source: KnowledgeSource, now: Optional[datetime] = None) -> datetime:
    """Fetch content newer than the last sync, or one interval back if never synced."""
    if source.last_synced_at is not None:
        return source.last_synced_at
    now = now or utcnow()
    return now - timedelta(minutes=source.sync_interval_minutes)


def summarize_outcomes(outcomes: list[ItemOutcome], label: str) -> ProcessResult:
    """Fold per-item outcomes into a source-level result."""
    result = ProcessResult()
    for outcome in outcomes:
        if isinstance(outcome, ItemFailure):
            result.errors += 1
            result.error_messages.append(f"{label} {outcome.item_id}: {outcome.reason}")
        elif outcome.already_processed:
            result.skipped += 1
        else:
            result.processed += 1
    return result


class ItemHandler:
    """Processes single content items idempotently."""

    def __init__(
        self,
        store: CRMStore,
        extractor: Extractor,
        actions: IntelligenceActionPipeline,
        queue: Optional[ProcessingQueue] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.actions = actions
        self.queue = queue or ProcessingQueue(store)

    async def process(
        self,
        item: ContentItem,
        source_type: SourceType,
        content_type: ContentType,
        knowledge_source_id: Optional[str] = None,
        resolve_client: Optional[ClientResolver] = None,
    ) -> ItemOutcome:
        """
        Run one item through claim, extraction and storage.

        Raises:
            ServiceUnavailableError: The extractor can't be reached at all; the
                item is marked failed first and the caller decides what to do
        """
        source = SourceType(source_type).value
        queue_item = self.queue.claim(source, item.id, knowledge_source_id, item.text)
        if queue_item is None:
            return ItemSuccess(item_id=item.id, already_processed=True)

        client_id = None
        try:
            client_id = resolve_client(item) if resolve_client else None
            extracted = await self.extractor.extract(content_type, item.text)
            if extracted is None:
                raise ExtractionError("No intelligence produced (model response failed validation)")

            intelligence, created = self._store_intelligence(
                source, item.id, knowledge_source_id, client_id, extracted
            )
        except ServiceUnavailableError as e:
            self.queue.fail(queue_item.id, str(e))
            raise
        except Exception as e:
            logger.warning(f"Failed to process {source} item {item.id}: {e}")
            self.queue.fail(queue_item.id, str(e) or type(e).__name__)
            return ItemFailure(item_id=item.id, reason=str(e) or type(e).__name__)

        # Intelligence is persisted from here on; later runs skip this item,
        # so the actions must run even if the queue row can't be updated.
        try:
            self.queue.complete(queue_item.id, client_id)
        except Exception as e:
            logger.error(
                f"Stored intelligence {intelligence.id} but could not complete queue item "
                f"{queue_item.id}: {e}"
            )

        if not created:
            return ItemSuccess(item_id=item.id, intelligence_id=intelligence.id, already_processed=True)

        await self.actions.run(intelligence)
        logger.info(f"Processed {source} item {item.id} -> intelligence {intelligence.id}")
        return ItemSuccess(item_id=item.id, intelligence_id=intelligence.id)

    def _store_intelligence(
        self,
        source: str,
        source_id: str,
        knowledge_source_id: Optional[str],
        client_id: Optional[str],
        extracted: ExtractedIntelligence,
    ) -> tuple[Intelligence, bool]:
        """Insert the intelligence row. Returns (row, created); an existing row for the key wins."""
        try:
            row = self.store.insert("intelligence", {
                "client_id": client_id,
                "source": source,
                "source_id": source_id,
                "knowledge_source_id": knowledge_source_id,
                "summary": extracted.summary,
                "key_points": extracted.key_points,
                "sentiment": extracted.sentiment,
                "action_items": [a.model_dump() for a in extracted.action_items],
                "people_mentioned": extracted.people_mentioned,
                "topics": extracted.topics,
                "raw_ai_response": extracted.model_dump(),
            })
            return Intelligence.from_row(row), True
        except DuplicateRowError:
            # An overlapping run stored this item first
            existing = self.store.find_intelligence(source, source_id)
            if existing is None:
                raise
            return existing, False


class FetchingProcessor:
    """
    Processor for sources backed by a ContentFetcher.

    Subclasses set the source/content types, a label for error messages, and
    optionally override resolve_client.
    """

    source_type: SourceType
    content_type: ContentType
    item_label = "Item"

    def __init__(self, fetcher: ContentFetcher, handler: ItemHandler):
        self.fetcher = fetcher
        self.handler = handler

    def resolve_client(self, item: ContentItem, clients: list[Client]) -> Optional[str]:
        return None

    async def __call__(
        self,
        source: KnowledgeSource,
        clients: list[Client],
        now: Optional[datetime] = None,
    ) -> ProcessResult:
        cutoff = sync_cutoff(source, now)
        items = await self.fetcher.fetch_since(cutoff, source.configuration or {})
        logger.info(f"Source '{source.name}': {len(items)} item(s) since {cutoff.isoformat()}")

        def resolve(content: ContentItem) -> Optional[str]:
            return self.resolve_client(content, clients)

        outcomes = []
        for item in items:
            outcomes.append(await self.handler.process(
                item,
                source_type=self.source_type,
                content_type=self.content_type,
                knowledge_source_id=source.id,
                resolve_client=resolve,
            ))

        return summarize_outcomes(outcomes, self.item_label)
