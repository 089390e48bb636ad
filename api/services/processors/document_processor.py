"""
Document processor.

Fetches recently modified documents (meeting transcripts, mostly) and
extracts intelligence from them. Documents have no sender, so the client is
left unresolved for manual triage through the queue API.
"""
from api.services.crm_types import SourceType
from api.services.extraction import ContentType
from api.services.processors.base import ContentFetcher, FetchingProcessor, ItemHandler
from api.services.processors.registry import ProcessorRegistry


class DocumentProcessor(FetchingProcessor):
    source_type = SourceType.DOCUMENT
    content_type = ContentType.TRANSCRIPT
    item_label = "Document"


def register(registry: ProcessorRegistry, fetcher: ContentFetcher, handler: ItemHandler) -> DocumentProcessor:
    processor = DocumentProcessor(fetcher, handler)
    registry.register(SourceType.DOCUMENT, processor)
    return processor
