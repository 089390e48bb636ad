"""
Client Intel API Routes Package.

This package contains all FastAPI route handlers organized by domain.
Use this module to import routers for registration with the FastAPI app.

Example:
    from api.routes import cron_router, queue_router

    app.include_router(cron_router)
    app.include_router(queue_router)
"""

# ============================================================================
# Pipeline Routers
# ============================================================================

from api.routes.cron import router as cron_router
from api.routes.queue import router as queue_router

# ============================================================================
# Data & Monitoring Routers
# ============================================================================

from api.routes.intelligence import router as intelligence_router
from api.routes.sources import router as sources_router


__all__ = [
    # Pipeline
    "cron_router",
    "queue_router",
    # Data & monitoring
    "intelligence_router",
    "sources_router",
]
