"""
Sync scheduler: one pass over every enabled knowledge source.

Per source, in listing order:
1. skip when not due (synced within its interval, or interval 0)
2. look up the processor for its source_type; unknown types are a
   per-source error
3. run the processor, then stamp last_synced_at and write a sync log
4. a processor that raises gets an error sync log and an ops alert, and the
   run moves on to the next source

Failing to load sources or clients aborts the whole run (RunAbortedError)
after an ops alert.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from api.services.crm_store import CRMStore
from api.services.crm_types import KnowledgeSource, utcnow
from api.services.ops_alerts import OpsAlertSender, send_ops_alert
from api.services.processors.registry import ProcessorRegistry
from api.services.sync_health import SyncStatus, record_sync_log

logger = logging.getLogger(__name__)


class RunAbortedError(Exception):
    """The run failed before any source was processed."""

    def __init__(self, run_id: str, message: str):
        self.run_id = run_id
        super().__init__(message)


def is_due(source: KnowledgeSource, now: datetime) -> bool:
    """
    Whether a source should sync at `now`.

    Manual sources and a zero interval are never synced automatically. Any
    other source that has never synced is always due.
    """
    if not source.auto_synced:
        return False
    if source.last_synced_at is None:
        return True
    return now - source.last_synced_at >= timedelta(minutes=source.sync_interval_minutes)


@dataclass
class SourceRunResult:
    processed: int = 0
    errors: int = 0
    skipped: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"processed": self.processed, "errors": self.errors}
        if self.skipped:
            data["skipped"] = True
        if self.error_message:
            data["error_message"] = self.error_message
        return data


@dataclass
class RunReport:
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: dict[str, SourceRunResult] = field(default_factory=dict)
    success: bool = True

    @property
    def total_processed(self) -> int:
        return sum(r.processed for r in self.results.values())

    @property
    def total_errors(self) -> int:
        return sum(r.errors for r in self.results.values())

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": {name: result.to_dict() for name, result in self.results.items()},
        }


class SyncScheduler:
    """Runs due knowledge sources through their registered processors."""

    def __init__(
        self,
        store: CRMStore,
        registry: ProcessorRegistry,
        alert_sender: OpsAlertSender = send_ops_alert,
    ):
        self.store = store
        self.registry = registry
        self.alert_sender = alert_sender

    async def run(self, now: Optional[datetime] = None) -> RunReport:
        """
        Execute one scheduler pass.

        Args:
            now: Reference time for due checks and last_synced_at (defaults to the current time)

        Raises:
            RunAbortedError: Sources or clients couldn't be loaded
        """
        run_id = str(uuid.uuid4())
        report = RunReport(run_id=run_id, started_at=now or utcnow())
        logger.info(f"Process-sources run {run_id} started")

        try:
            sources = self.store.list_enabled_sources()
            clients = self.store.list_clients()
        except Exception as e:
            logger.error(f"Process-sources run {run_id} failed before processing: {e}")
            await self.alert_sender(
                "process_sources_failed",
                "error",
                f"Run aborted before processing any source: {e}",
                {"run_id": run_id, "error_type": type(e).__name__},
            )
            raise RunAbortedError(run_id, str(e)) from e

        for source in sources:
            report.results[source.name] = await self._run_source(run_id, source, clients, now)

        report.finished_at = utcnow()
        logger.info(
            f"Process-sources run {run_id} finished: {len(sources)} source(s), "
            f"{report.total_processed} processed, {report.total_errors} error(s)"
        )
        return report

    async def _run_source(self, run_id, source, clients, now) -> SourceRunResult:
        checked_at = now or utcnow()
        if not is_due(source, checked_at):
            logger.info(f"Skipping source '{source.name}': not due")
            return SourceRunResult(skipped=True)

        processor = self.registry.get(source.source_type)
        if processor is None:
            message = f"No processor registered for source type: {source.source_type}"
            logger.error(f"[{run_id}] {source.name}: {message}")
            record_sync_log(self.store, source.id, SyncStatus.ERROR, 0, f"[{run_id}] {message}")
            return SourceRunResult(errors=1, error_message=message)

        try:
            result = await processor(source, clients)

            self.store.mark_source_synced(source.id, checked_at)
            record_sync_log(
                self.store,
                source.id,
                SyncStatus.ERROR if result.errors else SyncStatus.SUCCESS,
                result.processed,
                f"[{run_id}] " + "; ".join(result.error_messages) if result.error_messages else None,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"[{run_id}] Processor failed for {source.name}: {message}")
            record_sync_log(self.store, source.id, SyncStatus.ERROR, 0, f"[{run_id}] {message}")
            await self.alert_sender(
                "source_processor_failed",
                "error",
                f"Processor failed for source '{source.name}': {message}",
                {
                    "run_id": run_id,
                    "source_id": source.id,
                    "source_name": source.name,
                    "source_type": source.source_type,
                },
            )
            return SourceRunResult(errors=1, error_message=message)

        return SourceRunResult(
            processed=result.processed,
            errors=result.errors,
            error_message="; ".join(result.error_messages) or None,
        )
