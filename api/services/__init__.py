"""
Client Intel Services Package.

This package contains all business logic and data access services.
Use this module to import commonly-used services.

Example:
    from api.services import (
        get_crm_store,
        build_pipeline,
        IntelligenceActionPipeline,
    )

Key service modules:
- crm_store: SQLite datastore and typed accessors
- processing_queue: idempotency ledger for ingested content
- extraction: Claude-backed intelligence extraction
- matching: sender -> client resolution
- intelligence_actions: tasks, health alerts and health updates
- sync_scheduler: one pass over all due knowledge sources
"""

# ============================================================================
# Storage
# ============================================================================

from api.services.crm_store import (
    CRMStore,
    StoreError,
    get_crm_store,
)

from api.services.processing_queue import ProcessingQueue

# ============================================================================
# Ingestion Pipeline
# ============================================================================

from api.services.extraction import (
    ContentType,
    ExtractedIntelligence,
    IntelligenceExtractor,
    parse_intelligence_response,
)

from api.services.matching import find_client_for_email

from api.services.intelligence_actions import (
    IntelligenceActionPipeline,
    fuzzy_match_member,
)

from api.services.sync_scheduler import (
    RunAbortedError,
    SyncScheduler,
)

from api.services.pipeline import (
    build_pipeline,
    get_scheduler,
)

# ============================================================================
# Shared Utilities (re-exported from api.utils)
# ============================================================================

from api.utils import make_aware, get_crm_db_path


__all__ = [
    # Storage
    "CRMStore",
    "StoreError",
    "get_crm_store",
    "ProcessingQueue",
    # Pipeline
    "ContentType",
    "ExtractedIntelligence",
    "IntelligenceExtractor",
    "parse_intelligence_response",
    "find_client_for_email",
    "IntelligenceActionPipeline",
    "fuzzy_match_member",
    "RunAbortedError",
    "SyncScheduler",
    "build_pipeline",
    "get_scheduler",
    # Shared utilities
    "make_aware",
    "get_crm_db_path",
]
