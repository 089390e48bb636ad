"""
Processing queue API routes.

Lists recent queue items and lets a user assign a client to content the
matcher couldn't place (transcripts, unknown senders).
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from api.services.crm_store import get_crm_store
from api.services.crm_types import ProcessingQueueItem, QueueStatus
from api.services.processing_queue import ProcessingQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["queue"])

RECENT_LIMIT = 100


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class AssignClientRequest(BaseModel):
    client_id: Optional[str] = None


class QueueItemResponse(BaseModel):
    id: str
    source: str
    source_id: str
    knowledge_source_id: Optional[str]
    status: str
    client_id: Optional[str]
    error_message: Optional[str]
    created_at: Optional[str]
    processed_at: Optional[str]

    @classmethod
    def from_item(cls, item: ProcessingQueueItem) -> "QueueItemResponse":
        return cls(
            id=item.id,
            source=item.source,
            source_id=item.source_id,
            knowledge_source_id=item.knowledge_source_id,
            status=item.status.value,
            client_id=item.client_id,
            error_message=item.error_message,
            created_at=item.created_at.isoformat() if item.created_at else None,
            processed_at=item.processed_at.isoformat() if item.processed_at else None,
        )


class QueueListResponse(BaseModel):
    items: list[QueueItemResponse]
    total: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=QueueListResponse)
async def list_queue(status: Optional[QueueStatus] = Query(default=None, description="Filter by status")):
    """The most recent queue items, newest first."""
    queue = ProcessingQueue(get_crm_store())
    items = queue.recent(limit=RECENT_LIMIT, status=status)
    return QueueListResponse(
        items=[QueueItemResponse.from_item(i) for i in items],
        total=len(items),
    )


@router.patch("/{item_id}", response_model=QueueItemResponse)
async def assign_client(item_id: str, body: AssignClientRequest):
    """Assign a client to a queue item and its intelligence."""
    if not body.client_id:
        raise HTTPException(status_code=400, detail="client_id is required")

    store = get_crm_store()
    if store.get_client(body.client_id) is None:
        raise HTTPException(status_code=404, detail=f"Client '{body.client_id}' not found")

    item = ProcessingQueue(store).assign_client(item_id, body.client_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Queue item '{item_id}' not found")

    return QueueItemResponse.from_item(item)
