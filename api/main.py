"""
Client Intel - Client intelligence ingestion service
FastAPI Application Entry Point

Run with:

    uvicorn api.main:app --host 0.0.0.0 --port 8000

Scheduled ingestion is triggered externally (cron, launchd, a hosted
scheduler) by calling GET /api/cron/process-sources with the CRON_SECRET
bearer token, or by running scripts/process_sources.py directly.
"""
# Load environment variables from .env file first, before any imports
from dotenv import load_dotenv
load_dotenv()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from api.routes import cron_router, queue_router, intelligence_router, sources_router
from api.services.pipeline import get_scheduler
from config.settings import settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the ingestion pipeline once at startup."""
    app.state.scheduler = get_scheduler()
    logger.info(
        f"Ingestion pipeline ready (processors: {', '.join(app.state.scheduler.registry.source_types)})"
    )

    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; /api/cron/process-sources will reject every call")
    if not settings.anthropic_configured:
        logger.warning("ANTHROPIC_API_KEY is not set; extraction will fail")
    if not settings.google_configured:
        logger.warning("Google OAuth is not configured; email and document sources will fail")

    yield  # Application runs here

    logger.info("Client Intel shutting down")


app = FastAPI(
    title="Client Intel",
    description="Ingests client communications, extracts intelligence and drives follow-up",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cron_router)
app.include_router(queue_router)
app.include_router(intelligence_router)
app.include_router(sources_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with clear messages."""
    errors = exc.errors()

    # Sanitize errors for JSON serialization (convert bytes to string)
    sanitized_errors = []
    for error in errors:
        sanitized = dict(error)
        if "input" in sanitized and isinstance(sanitized["input"], bytes):
            sanitized["input"] = sanitized["input"].decode("utf-8", errors="replace")
        sanitized.pop("ctx", None)
        sanitized_errors.append(sanitized)

    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "detail": sanitized_errors}
    )


@app.get("/health")
async def health_check():
    """Health check endpoint that verifies critical configuration."""
    checks = {
        "api_key_configured": settings.anthropic_configured,
        "google_configured": settings.google_configured,
        "cron_secret_configured": bool(settings.cron_secret.strip()),
    }

    all_healthy = all(checks.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "service": "client-intel",
        "checks": checks,
    }
