"""
Sync Health Monitoring Service.

Writes one sync log per knowledge-source sync and reports, per source, when
it last synced, how the last run went, and whether it has gone stale.
A source is stale when it is auto-synced and hasn't synced within twice its
interval (or never has).
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from api.services.crm_store import CRMStore
from api.services.crm_types import KnowledgeSource, utcnow

logger = logging.getLogger(__name__)

# Multiple of the sync interval after which a source counts as stale
STALE_INTERVAL_FACTOR = 2


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class SyncHealth:
    """Health status for a knowledge source."""
    source_id: str
    name: str
    source_type: str
    enabled: bool
    sync_interval_minutes: int
    last_sync: Optional[datetime]
    last_status: Optional[SyncStatus]
    last_error: Optional[str]
    last_items_processed: int
    minutes_since_sync: Optional[float]
    is_stale: bool

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "name": self.name,
            "source_type": self.source_type,
            "enabled": self.enabled,
            "sync_interval_minutes": self.sync_interval_minutes,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
            "last_items_processed": self.last_items_processed,
            "minutes_since_sync": round(self.minutes_since_sync, 1) if self.minutes_since_sync is not None else None,
            "is_stale": self.is_stale,
        }


def record_sync_log(
    store: CRMStore,
    knowledge_source_id: str,
    status: SyncStatus,
    items_processed: int = 0,
    error_message: Optional[str] = None,
) -> dict:
    """Record the outcome of one source sync."""
    row = store.insert("sync_logs", {
        "knowledge_source_id": knowledge_source_id,
        "status": SyncStatus(status),
        "items_processed": items_processed,
        "error_message": error_message,
    })
    if status == SyncStatus.ERROR:
        logger.error(f"Sync failed for source {knowledge_source_id}: {error_message}")
    else:
        logger.info(f"Sync completed for source {knowledge_source_id}: {items_processed} item(s)")
    return row


def get_source_health(
    store: CRMStore,
    source: KnowledgeSource,
    now: Optional[datetime] = None,
) -> SyncHealth:
    """Get health status for one knowledge source."""
    now = now or utcnow()
    logs = store.select(
        "sync_logs",
        order_by="created_at DESC",
        limit=1,
        knowledge_source_id=source.id,
    )
    last_log = logs[0] if logs else None

    last_sync = source.last_synced_at
    minutes_since = (now - last_sync).total_seconds() / 60 if last_sync else None

    is_stale = False
    if source.enabled and source.auto_synced:
        is_stale = (
            minutes_since is None
            or minutes_since > source.sync_interval_minutes * STALE_INTERVAL_FACTOR
        )

    return SyncHealth(
        source_id=source.id,
        name=source.name,
        source_type=source.source_type,
        enabled=source.enabled,
        sync_interval_minutes=source.sync_interval_minutes,
        last_sync=last_sync,
        last_status=SyncStatus(last_log["status"]) if last_log else None,
        last_error=last_log["error_message"] if last_log else None,
        last_items_processed=int(last_log["items_processed"] or 0) if last_log else 0,
        minutes_since_sync=minutes_since,
        is_stale=is_stale,
    )


def get_all_source_health(store: CRMStore, now: Optional[datetime] = None) -> list[SyncHealth]:
    """Get health status for every configured knowledge source."""
    sources = [
        KnowledgeSource.from_row(r)
        for r in store.select("knowledge_sources", order_by="created_at")
    ]
    return [get_source_health(store, source, now) for source in sources]


def get_sync_summary(health: list[SyncHealth]) -> dict:
    """Summarize health across sources."""
    stale = [h for h in health if h.is_stale]
    failed = [h for h in health if h.last_status == SyncStatus.ERROR]
    never_run = [h for h in health if h.last_sync is None]

    return {
        "total_sources": len(health),
        "stale": len(stale),
        "failed": len(failed),
        "never_run": len(never_run),
        "stale_sources": [h.name for h in stale],
        "failed_sources": [h.name for h in failed],
        "never_run_sources": [h.name for h in never_run],
        "all_healthy": not stale and not failed,
    }
