"""
Email processor.

Fetches messages received since the last sync, matches each sender to a
client, extracts intelligence and stores it.
"""
from typing import Optional

from api.services.crm_types import Client, ContentItem, SourceType
from api.services.extraction import ContentType
from api.services.matching import find_client_for_email
from api.services.processors.base import ContentFetcher, FetchingProcessor, ItemHandler
from api.services.processors.registry import ProcessorRegistry


class EmailProcessor(FetchingProcessor):
    source_type = SourceType.EMAIL
    content_type = ContentType.EMAIL
    item_label = "Email"

    def resolve_client(self, item: ContentItem, clients: list[Client]) -> Optional[str]:
        client = find_client_for_email(item.sender, clients)
        return client.id if client else None


def register(registry: ProcessorRegistry, fetcher: ContentFetcher, handler: ItemHandler) -> EmailProcessor:
    processor = EmailProcessor(fetcher, handler)
    registry.register(SourceType.EMAIL, processor)
    return processor
