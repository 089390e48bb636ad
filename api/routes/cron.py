"""
Cron API route.

GET /api/cron/process-sources runs one scheduler pass over every enabled
knowledge source. Callers authenticate with `Authorization: Bearer <CRON_SECRET>`.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from api.services.ops_alerts import send_ops_alert
from api.services.pipeline import get_scheduler
from api.services.sync_scheduler import RunAbortedError
from api.utils.security import bearer_token, constant_time_equal
from config.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/process-sources")
async def process_sources(authorization: Optional[str] = Header(default=None)):
    """
    Process all due knowledge sources.

    Returns per-source results; individual source failures are reported in
    the body, only a failure to start the run is a 500.
    """
    if not constant_time_equal(bearer_token(authorization), settings.cron_secret):
        logger.warning("Rejected process-sources call with invalid credentials")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        scheduler = get_scheduler()
    except Exception as e:
        logger.error(f"Could not build the processing pipeline: {e}")
        await send_ops_alert(
            "process_sources_failed",
            "error",
            f"Could not build the processing pipeline: {e}",
            {"error_type": type(e).__name__},
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    try:
        report = await scheduler.run()
    except RunAbortedError as e:
        logger.error(f"Process-sources run {e.run_id} aborted: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return report.to_dict()
