"""
Manual note processor.

Manual notes arrive through POST /api/intelligence/notes and are processed
on submission, so a scheduled run has nothing to fetch. The processor is
registered so manual sources resolve to a no-op instead of an unknown type.
"""
import hashlib
from datetime import datetime
from typing import Optional

from api.services.crm_types import (
    Client,
    ContentItem,
    ItemOutcome,
    KnowledgeSource,
    ProcessResult,
    SourceType,
    utcnow,
)
from api.services.extraction import ContentType
from api.services.processors.base import ItemHandler
from api.services.processors.registry import ProcessorRegistry


def note_content_id(content: str, client_id: Optional[str] = None) -> str:
    """Stable dedupe key for a note: identical text for the same client is one item."""
    digest = hashlib.sha256(f"{client_id or ''}\n{content.strip()}".encode("utf-8")).hexdigest()
    return f"note-{digest[:32]}"


def build_note_item(content: str, title: Optional[str] = None, client_id: Optional[str] = None,
                    created_at: Optional[datetime] = None) -> ContentItem:
    text = f"Title: {title}\n\n{content.strip()}" if title else content.strip()
    return ContentItem(
        id=note_content_id(content, client_id),
        occurred_at=created_at or utcnow(),
        text=text,
        title=title,
    )


class ManualProcessor:
    """No-op for scheduled runs; also handles note submissions."""

    source_type = SourceType.MANUAL

    def __init__(self, handler: Optional[ItemHandler] = None):
        self.handler = handler

    async def __call__(self, source: KnowledgeSource, clients: list[Client]) -> ProcessResult:
        return ProcessResult()

    async def submit_note(
        self,
        content: str,
        title: Optional[str] = None,
        client_id: Optional[str] = None,
        knowledge_source_id: Optional[str] = None,
    ) -> tuple[ContentItem, ItemOutcome]:
        """Process one note right away. Returns the normalized item and its outcome."""
        if self.handler is None:
            raise RuntimeError("ManualProcessor was built without an ItemHandler")

        item = build_note_item(content, title=title, client_id=client_id)
        outcome = await self.handler.process(
            item,
            source_type=SourceType.MANUAL,
            content_type=ContentType.NOTE,
            knowledge_source_id=knowledge_source_id,
            resolve_client=lambda _item: client_id,
        )
        return item, outcome


def register(registry: ProcessorRegistry, handler: Optional[ItemHandler] = None) -> ManualProcessor:
    processor = ManualProcessor(handler)
    registry.register(SourceType.MANUAL, processor)
    return processor
