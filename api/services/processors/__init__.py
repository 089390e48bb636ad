"""
Source processors.

Each processor module exposes register(registry, ...) which the startup
wiring in api.services.pipeline calls explicitly.
"""
from api.services.processors.base import (
    ContentFetcher,
    ExtractionError,
    FetchingProcessor,
    ItemHandler,
    summarize_outcomes,
    sync_cutoff,
)
from api.services.processors.document_processor import DocumentProcessor
from api.services.processors.email_processor import EmailProcessor
from api.services.processors.manual_processor import ManualProcessor, build_note_item, note_content_id
from api.services.processors.registry import ProcessorRegistry, SourceProcessor

__all__ = [
    "ContentFetcher",
    "ExtractionError",
    "FetchingProcessor",
    "ItemHandler",
    "summarize_outcomes",
    "sync_cutoff",
    "DocumentProcessor",
    "EmailProcessor",
    "ManualProcessor",
    "build_note_item",
    "note_content_id",
    "ProcessorRegistry",
    "SourceProcessor",
]
