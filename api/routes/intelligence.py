"""
Intelligence API routes.

- GET  /api/intelligence        browse stored intelligence
- POST /api/intelligence/notes  submit a manual note for extraction
"""
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.services.crm_store import get_crm_store
from api.services.crm_types import Intelligence, ItemFailure, Sentiment, SourceType
from api.services.pipeline import get_manual_processor, get_scheduler
from api.services.resilience import ServiceUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/intelligence", tags=["intelligence"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------

class NoteRequest(BaseModel):
    content: str = Field(..., min_length=1, description="Note text")
    title: Optional[str] = Field(default=None, description="Optional note title")
    client_id: Optional[str] = Field(default=None, description="Client the note is about")


class IntelligenceListResponse(BaseModel):
    items: list[dict]
    total: int
    page: int
    per_page: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("", response_model=IntelligenceListResponse)
async def list_intelligence(
    client_id: Optional[str] = Query(default=None, description="Filter by client"),
    source: Optional[SourceType] = Query(default=None, description="Filter by source type"),
    sentiment: Optional[Sentiment] = Query(default=None, description="Filter by sentiment"),
    page: int = Query(default=1, ge=1, description="Page number"),
    per_page: int = Query(default=20, ge=1, le=100, description="Items per page"),
):
    """List intelligence, newest first."""
    store = get_crm_store()
    filters = {
        key: value
        for key, value in {"client_id": client_id, "source": source, "sentiment": sentiment}.items()
        if value is not None
    }
    rows = store.select(
        "intelligence",
        order_by="created_at DESC",
        limit=per_page,
        offset=(page - 1) * per_page,
        **filters,
    )
    return IntelligenceListResponse(
        items=[Intelligence.from_row(r).to_dict() for r in rows],
        total=store.count("intelligence", **filters),
        page=page,
        per_page=per_page,
    )


@router.post("/notes", status_code=201)
async def submit_note(body: NoteRequest):
    """
    Extract intelligence from a manual note.

    Returns 201 with the new intelligence, 200 with the existing record when
    the same note was already processed, or 422 when nothing could be extracted.
    """
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="content cannot be blank")

    store = get_crm_store()
    if body.client_id and store.get_client(body.client_id) is None:
        raise HTTPException(status_code=404, detail=f"Client '{body.client_id}' not found")

    manual_source = store.select_one("knowledge_sources", source_type=SourceType.MANUAL.value)
    processor = get_manual_processor(get_scheduler())

    try:
        item, outcome = await processor.submit_note(
            content,
            title=body.title,
            client_id=body.client_id,
            knowledge_source_id=manual_source["id"] if manual_source else None,
        )
    except ServiceUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if isinstance(outcome, ItemFailure):
        raise HTTPException(status_code=422, detail=outcome.reason)

    intelligence = store.find_intelligence(SourceType.MANUAL.value, item.id)
    if intelligence is None:
        raise HTTPException(status_code=409, detail="Note was already processed")

    if outcome.already_processed:
        return JSONResponse(status_code=200, content=intelligence.to_dict())
    return intelligence.to_dict()
