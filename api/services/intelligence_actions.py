"""
Intelligence-to-action pipeline.

Runs after every newly stored intelligence row:
- create one task per action item (client-linked intelligence only)
- raise health alerts and update the client's health record

The two steps are independent and best-effort: a failure in one is logged
and doesn't prevent the other, and never fails the ingested item.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from api.services.crm_store import CRMStore
from api.services.crm_types import (
    AlertSeverity,
    AlertType,
    HealthStatus,
    Intelligence,
    Sentiment,
    TeamMember,
    utcnow,
)
from config.settings import settings

logger = logging.getLogger(__name__)

RISK_WORDS = (
    "budget",
    "concern",
    "delay",
    "cancel",
    "churn",
    "unhappy",
    "complaint",
    "risk",
    "issue",
    "problem",
    "frustrated",
    "disappointed",
)

SUMMARY_EXCERPT_LENGTH = 100


def fuzzy_match_member(assignee: Optional[str], members: list[TeamMember]) -> Optional[str]:
    """
    Resolve a free-text assignee name to a team member id.

    A member matches when either name contains the other (case-insensitive),
    or when the assignee text contains the member's first name. Members are
    tried in order and the first match wins, so short names can be ambiguous
    ("Al" matches both "Alice" and "Albert"; whichever is listed first).

    Returns:
        Member id, or None if nobody matches
    """
    if not assignee or not assignee.strip():
        return None

    wanted = assignee.strip().lower()
    for member in members:
        member_name = (member.name or "").strip().lower()
        if not member_name:
            continue
        if wanted in member_name or member_name in wanted:
            return member.id
        first_name = member_name.split()[0]
        if first_name in wanted:
            return member.id
    return None


def find_risky_topics(topics: list[str]) -> list[str]:
    """Topics containing any risk word, case-insensitive substring match."""
    return [
        topic for topic in topics
        if any(word in topic.lower() for word in RISK_WORDS)
    ]


@dataclass
class HealthEvaluation:
    """Pure outcome of evaluating one intelligence row's health signals."""
    alerts: list[dict] = field(default_factory=list)
    risky_topics: list[str] = field(default_factory=list)
    positive: bool = False
    negative: bool = False


def evaluate_signals(intelligence: Intelligence) -> HealthEvaluation:
    """
    Decide which alerts fire and which signals apply, without touching storage.

    Both triggers can fire for the same intelligence.
    """
    evaluation = HealthEvaluation()
    sentiment = Sentiment(intelligence.sentiment)

    if sentiment == Sentiment.NEGATIVE:
        excerpt = intelligence.summary[:SUMMARY_EXCERPT_LENGTH]
        evaluation.alerts.append({
            "alert_type": AlertType.SENTIMENT_DROP,
            "severity": AlertSeverity.WARNING,
            "message": f'Negative sentiment detected: "{excerpt}"',
        })

    evaluation.risky_topics = find_risky_topics(intelligence.topics)
    if evaluation.risky_topics:
        evaluation.alerts.append({
            "alert_type": AlertType.RISK_TOPIC,
            "severity": AlertSeverity.WARNING,
            "message": f"Risk topics detected: {', '.join(evaluation.risky_topics)}",
        })

    evaluation.positive = sentiment == Sentiment.POSITIVE
    evaluation.negative = sentiment == Sentiment.NEGATIVE or bool(evaluation.risky_topics)
    return evaluation


@dataclass
class ActionReport:
    tasks_created: int = 0
    alerts_created: int = 0
    health_updated: bool = False


class IntelligenceActionPipeline:
    """Turns stored intelligence into tasks, health alerts and health updates."""

    def __init__(self, store: CRMStore, default_satisfaction_score: Optional[int] = None):
        self.store = store
        self.default_satisfaction_score = (
            default_satisfaction_score
            if default_satisfaction_score is not None
            else settings.default_satisfaction_score
        )

    def create_tasks(self, intelligence: Intelligence) -> int:
        """Insert one auto task per action item. Returns the number created."""
        if not intelligence.client_id or not intelligence.action_items:
            return 0

        members = self.store.list_team_members()
        created = 0
        for item in intelligence.action_items:
            self.store.insert("tasks", {
                "client_id": intelligence.client_id,
                "title": item.description,
                "description": None,
                "status": "todo",
                "priority": "medium",
                "assignee_id": fuzzy_match_member(item.assignee, members),
                "due_date": item.due_date,
                "intelligence_id": intelligence.id,
                "source": "auto",
            })
            created += 1

        logger.info(f"Created {created} task(s) from intelligence {intelligence.id}")
        return created

    def evaluate_health(self, intelligence: Intelligence, now: Optional[datetime] = None) -> tuple[int, bool]:
        """
        Raise alerts and update the client's health record.

        Returns:
            (alerts created, whether a health row was written)
        """
        if not intelligence.client_id:
            return 0, False

        now = now or utcnow()
        evaluation = evaluate_signals(intelligence)

        for alert in evaluation.alerts:
            self.store.insert("health_alerts", {
                **alert,
                "client_id": intelligence.client_id,
                "intelligence_id": intelligence.id,
                "acknowledged": False,
            })

        health = self.store.get_client_health(intelligence.client_id)
        if health is not None:
            changes = {}
            if evaluation.positive:
                changes["last_positive_signal"] = now
            if evaluation.negative:
                changes["last_negative_signal"] = now
                # Only healthy escalates; at_risk/churning are left alone and nothing de-escalates
                if health.status == HealthStatus.HEALTHY:
                    changes["status"] = HealthStatus.AT_RISK
            if changes:
                self.store.update("client_health", health.id, changes)
            health_written = bool(changes)
        elif evaluation.negative:
            self.store.insert("client_health", {
                "client_id": intelligence.client_id,
                "status": HealthStatus.AT_RISK,
                "satisfaction_score": self.default_satisfaction_score,
                "last_negative_signal": now,
            })
            health_written = True
        else:
            health_written = False

        if evaluation.alerts:
            logger.info(
                f"Raised {len(evaluation.alerts)} health alert(s) for client {intelligence.client_id}"
            )
        return len(evaluation.alerts), health_written

    async def run(self, intelligence: Intelligence) -> ActionReport:
        """Run both steps for a freshly stored intelligence row."""
        report = ActionReport()

        try:
            report.tasks_created = self.create_tasks(intelligence)
        except Exception as e:
            logger.error(f"Task creation failed for intelligence {intelligence.id}: {e}")

        try:
            report.alerts_created, report.health_updated = self.evaluate_health(intelligence)
        except Exception as e:
            logger.error(f"Health evaluation failed for intelligence {intelligence.id}: {e}")

        return report
