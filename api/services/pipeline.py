"""
Startup wiring for the ingestion pipeline.

Builds the extractor, fetchers, action pipeline and processor registry once
and returns the SyncScheduler that owns them.
"""
import logging
from typing import Optional

from api.services.crm_store import CRMStore, get_crm_store
from api.services.crm_types import SourceType
from api.services.drive import DriveFetcher, DriveService
from api.services.extraction import IntelligenceExtractor
from api.services.gmail import GmailFetcher, GmailService
from api.services.google_auth import GoogleAuthService
from api.services.intelligence_actions import IntelligenceActionPipeline
from api.services.ops_alerts import OpsAlertSender, send_ops_alert
from api.services.processors import (
    ContentFetcher,
    ItemHandler,
    ManualProcessor,
    ProcessorRegistry,
    document_processor,
    email_processor,
    manual_processor,
)
from api.services.processors.base import Extractor
from api.services.sync_scheduler import SyncScheduler
from config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def build_pipeline(
    store: CRMStore,
    settings: Settings,
    extractor: Optional[Extractor] = None,
    email_fetcher: Optional[ContentFetcher] = None,
    document_fetcher: Optional[ContentFetcher] = None,
    alert_sender: Optional[OpsAlertSender] = None,
) -> SyncScheduler:
    """
    Construct a ready-to-run scheduler.

    Collaborators default to the real Anthropic and Google implementations
    configured from `settings`; tests pass fakes.
    """
    if extractor is None:
        extractor = IntelligenceExtractor(
            api_key=settings.anthropic_api_key,
            model=settings.extraction_model,
            max_tokens=settings.extraction_max_tokens,
        )

    if email_fetcher is None or document_fetcher is None:
        auth = GoogleAuthService(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            refresh_token=settings.google_refresh_token,
        )
        email_fetcher = email_fetcher or GmailFetcher(GmailService(auth=auth))
        document_fetcher = document_fetcher or DriveFetcher(DriveService(auth=auth))

    actions = IntelligenceActionPipeline(store, settings.default_satisfaction_score)
    handler = ItemHandler(store, extractor, actions)

    registry = ProcessorRegistry()
    email_processor.register(registry, email_fetcher, handler)
    document_processor.register(registry, document_fetcher, handler)
    manual_processor.register(registry, handler)
    logger.info(f"Registered processors: {', '.join(registry.source_types)}")

    return SyncScheduler(store, registry, alert_sender or send_ops_alert)


def get_manual_processor(scheduler: SyncScheduler) -> ManualProcessor:
    processor = scheduler.registry.get(SourceType.MANUAL)
    if not isinstance(processor, ManualProcessor):
        raise LookupError("No manual processor registered")
    return processor


# Singleton instance
_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> SyncScheduler:
    """Get or create the process-wide scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = build_pipeline(get_crm_store(), default_settings)
    return _scheduler


def reset_scheduler() -> None:
    """Reset the singleton (for testing)."""
    global _scheduler
    _scheduler = None
