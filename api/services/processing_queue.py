"""
Processing queue: the idempotency ledger for ingested content.

One row per (source, source_id). A content item moves
processing -> completed | failed, and a failed or stuck item is reset in
place on the next attempt rather than duplicated.

Claiming an item follows a fixed order:
1. An intelligence row for the key already exists -> skip, nothing to do
2. A completed queue item exists -> skip
3. A failed/processing queue item exists -> reset it to processing
4. Otherwise create a new processing item
"""
import logging
from typing import Optional

from api.services.crm_store import CRMStore, DuplicateRowError
from api.services.crm_types import ProcessingQueueItem, QueueStatus, utcnow

logger = logging.getLogger(__name__)

TABLE = "processing_queue"


class ProcessingQueue:
    """Ledger operations over the processing_queue table."""

    def __init__(self, store: CRMStore):
        self.store = store

    def claim(
        self,
        source: str,
        source_id: str,
        knowledge_source_id: Optional[str],
        raw_content: str,
    ) -> Optional[ProcessingQueueItem]:
        """
        Claim a content item for processing.

        Returns:
            The queue item now in "processing" status, or None if the item
            has already been fully processed and should be skipped
        """
        if self.store.find_intelligence(source, source_id) is not None:
            logger.debug(f"Skipping {source}:{source_id}, intelligence already exists")
            return None

        existing = self.store.find_queue_item(source, source_id)
        if existing is None:
            try:
                row = self.store.insert(TABLE, {
                    "source": source,
                    "source_id": source_id,
                    "knowledge_source_id": knowledge_source_id,
                    "raw_content": raw_content,
                    "status": QueueStatus.PROCESSING,
                })
                return ProcessingQueueItem.from_row(row)
            except DuplicateRowError:
                # Another run created the row between the lookup and the insert
                existing = self.store.find_queue_item(source, source_id)
                if existing is None:
                    raise

        if existing.status == QueueStatus.COMPLETED:
            logger.debug(f"Skipping {source}:{source_id}, queue item {existing.id} already completed")
            return None

        logger.info(f"Retrying {existing.status.value} queue item {existing.id} for {source}:{source_id}")
        row = self.store.update(TABLE, existing.id, {
            "status": QueueStatus.PROCESSING,
            "error_message": None,
            "processed_at": None,
            "raw_content": raw_content,
            "knowledge_source_id": knowledge_source_id,
        })
        return ProcessingQueueItem.from_row(row)

    def complete(self, item_id: str, client_id: Optional[str]) -> Optional[ProcessingQueueItem]:
        row = self.store.update(TABLE, item_id, {
            "status": QueueStatus.COMPLETED,
            "client_id": client_id,
            "error_message": None,
            "processed_at": utcnow(),
        })
        return ProcessingQueueItem.from_row(row) if row else None

    def fail(self, item_id: str, error_message: str) -> Optional[ProcessingQueueItem]:
        row = self.store.update(TABLE, item_id, {
            "status": QueueStatus.FAILED,
            "error_message": error_message,
            "processed_at": utcnow(),
        })
        return ProcessingQueueItem.from_row(row) if row else None

    def get(self, item_id: str) -> Optional[ProcessingQueueItem]:
        row = self.store.select_one(TABLE, id=item_id)
        return ProcessingQueueItem.from_row(row) if row else None

    def recent(self, limit: int = 100, status: Optional[QueueStatus] = None) -> list[ProcessingQueueItem]:
        """Most recent items, newest first."""
        filters = {"status": status} if status else {}
        rows = self.store.select(TABLE, order_by="created_at DESC", limit=limit, **filters)
        return [ProcessingQueueItem.from_row(r) for r in rows]

    def assign_client(self, item_id: str, client_id: str) -> Optional[ProcessingQueueItem]:
        """
        Manually attach a client to a queue item and its intelligence row.

        Returns:
            The updated item, or None if it doesn't exist
        """
        item = self.get(item_id)
        if item is None:
            return None

        row = self.store.update(TABLE, item_id, {"client_id": client_id})
        updated = self.store.update_where(
            "intelligence",
            {"client_id": client_id},
            source=item.source,
            source_id=item.source_id,
        )
        logger.info(f"Assigned client {client_id} to queue item {item_id} ({updated} intelligence row(s))")
        return ProcessingQueueItem.from_row(row)
