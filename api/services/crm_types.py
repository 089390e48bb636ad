"""
Domain records for the client intelligence pipeline.

Rows come out of CRMStore as plain dicts (JSON columns already decoded);
from_row() turns them into these dataclasses and to_dict() goes back.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from api.utils.datetime_utils import parse_timestamp


class SourceType(str, Enum):
    """Knowledge source types with a processor implementation."""
    EMAIL = "email"
    DOCUMENT = "document"
    MANUAL = "manual"


class QueueStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    MIXED = "mixed"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    AT_RISK = "at_risk"
    CHURNING = "churning"


class AlertType(str, Enum):
    SENTIMENT_DROP = "sentiment_drop"
    RISK_TOPIC = "risk_topic"
    MISSED_RENEWAL = "missed_renewal"
    NO_RECENT_CONTACT = "no_recent_contact"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _serialize(data: dict) -> dict:
    """Enums to values, datetimes to ISO strings."""
    out = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
        else:
            out[key] = _enum_value(value)
    return out


@dataclass
class ClientContact:
    name: str
    email: str
    role: Optional[str] = None


@dataclass
class Client:
    """A customer account, the Matcher's resolution target."""
    id: str
    name: str
    domain: str = ""
    contacts: list[ClientContact] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    status: str = "active"

    @classmethod
    def from_row(cls, row: dict) -> "Client":
        contacts = [
            ClientContact(
                name=c.get("name", ""),
                email=c.get("email", ""),
                role=c.get("role"),
            )
            for c in (row.get("contacts") or [])
            if isinstance(c, dict)
        ]
        return cls(
            id=row["id"],
            name=row["name"],
            domain=row.get("domain") or "",
            contacts=contacts,
            tags=row.get("tags") or [],
            status=row.get("status") or "active",
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TeamMember:
    id: str
    name: str
    email: str = ""
    role: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "TeamMember":
        return cls(id=row["id"], name=row["name"], email=row.get("email") or "", role=row.get("role"))


@dataclass
class KnowledgeSource:
    """Configuration for one ingestion channel."""
    id: str
    name: str
    source_type: str
    enabled: bool = True
    configuration: dict = field(default_factory=dict)
    sync_interval_minutes: int = 60
    last_synced_at: Optional[datetime] = None

    @property
    def auto_synced(self) -> bool:
        """Manual sources and a zero interval are never picked up by the scheduler."""
        return self.sync_interval_minutes > 0 and self.source_type != SourceType.MANUAL.value

    @classmethod
    def from_row(cls, row: dict) -> "KnowledgeSource":
        return cls(
            id=row["id"],
            name=row["name"],
            source_type=row["source_type"],
            enabled=bool(row.get("enabled", True)),
            configuration=row.get("configuration") or {},
            sync_interval_minutes=int(row.get("sync_interval_minutes") or 0),
            last_synced_at=parse_timestamp(row.get("last_synced_at")),
        )

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


@dataclass
class ActionItem:
    description: str
    assignee: Optional[str] = None
    due_date: Optional[str] = None


@dataclass
class ProcessingQueueItem:
    """Idempotency ledger row for one (source, source_id) content item."""
    id: str
    source: str
    source_id: str
    knowledge_source_id: Optional[str]
    raw_content: str = ""
    status: QueueStatus = QueueStatus.PROCESSING
    client_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "ProcessingQueueItem":
        return cls(
            id=row["id"],
            source=row["source"],
            source_id=row["source_id"],
            knowledge_source_id=row.get("knowledge_source_id"),
            raw_content=row.get("raw_content") or "",
            status=QueueStatus(row["status"]),
            client_id=row.get("client_id"),
            error_message=row.get("error_message"),
            created_at=parse_timestamp(row.get("created_at")),
            processed_at=parse_timestamp(row.get("processed_at")),
        )

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


@dataclass
class Intelligence:
    """A structured insight extracted from one content item."""
    id: str
    client_id: Optional[str]
    source: str
    source_id: str
    knowledge_source_id: Optional[str]
    summary: str
    key_points: list[str] = field(default_factory=list)
    sentiment: Sentiment = Sentiment.NEUTRAL
    action_items: list[ActionItem] = field(default_factory=list)
    people_mentioned: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    raw_ai_response: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "Intelligence":
        return cls(
            id=row["id"],
            client_id=row.get("client_id"),
            source=row["source"],
            source_id=row["source_id"],
            knowledge_source_id=row.get("knowledge_source_id"),
            summary=row.get("summary") or "",
            key_points=row.get("key_points") or [],
            sentiment=Sentiment(row.get("sentiment") or "neutral"),
            action_items=[
                ActionItem(
                    description=a.get("description", ""),
                    assignee=a.get("assignee"),
                    due_date=a.get("due_date"),
                )
                for a in (row.get("action_items") or [])
            ],
            people_mentioned=row.get("people_mentioned") or [],
            topics=row.get("topics") or [],
            raw_ai_response=row.get("raw_ai_response") or {},
            created_at=parse_timestamp(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        return _serialize(asdict(self))


@dataclass
class ClientHealth:
    id: str
    client_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    satisfaction_score: int = 5
    last_positive_signal: Optional[datetime] = None
    last_negative_signal: Optional[datetime] = None
    notes: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "ClientHealth":
        return cls(
            id=row["id"],
            client_id=row["client_id"],
            status=HealthStatus(row.get("status") or "healthy"),
            satisfaction_score=int(row.get("satisfaction_score") or 5),
            last_positive_signal=parse_timestamp(row.get("last_positive_signal")),
            last_negative_signal=parse_timestamp(row.get("last_negative_signal")),
            notes=row.get("notes"),
        )


@dataclass
class ContentItem:
    """
    One normalized piece of fetched content.

    `id` is the provider's stable identifier and the dedupe key; `text` is
    ready to be concatenated into an extraction prompt.
    """
    id: str
    occurred_at: datetime
    text: str
    sender: Optional[str] = None
    title: Optional[str] = None
    raw: dict = field(default_factory=dict)


@dataclass
class ProcessResult:
    """Per-source outcome of one processor invocation."""
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    error_messages: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ItemSuccess:
    item_id: str
    intelligence_id: Optional[str] = None
    already_processed: bool = False


@dataclass
class ItemFailure:
    item_id: str
    reason: str


ItemOutcome = Union[ItemSuccess, ItemFailure]
