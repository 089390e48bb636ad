"""
Knowledge source health API route.
"""
import logging

from fastapi import APIRouter

from api.services.crm_store import get_crm_store
from api.services.sync_health import get_all_source_health, get_sync_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sources", tags=["sources"])


@router.get("/health")
async def sources_health():
    """Sync status for every knowledge source, plus a summary."""
    health = get_all_source_health(get_crm_store())
    return {
        "sources": [h.to_dict() for h in health],
        "summary": get_sync_summary(health),
    }
