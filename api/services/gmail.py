"""
Gmail integration service.

Fetches messages received since a cutoff and normalizes them into
ContentItems for the email processor.
"""
import asyncio
import base64
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from googleapiclient.discovery import build

from api.services.crm_types import ContentItem
from api.services.google_auth import GoogleAuthService, get_google_auth
from api.services.resilience import RetryConfig, provider_retry_config, with_retry_sync
from config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    """Represents an email message."""
    message_id: str
    thread_id: str
    subject: str
    from_header: str
    sender: str
    sender_name: str
    date: datetime
    snippet: str
    body: Optional[str] = None
    to: Optional[str] = None
    cc: Optional[str] = None
    labels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dict for storage as raw queue content."""
        return {
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "from": self.from_header,
            "sender": self.sender,
            "sender_name": self.sender_name,
            "date": self.date.isoformat(),
            "snippet": self.snippet,
            "body": self.body,
            "to": self.to,
            "cc": self.cc,
            "labels": self.labels,
        }

    def to_content_item(self) -> ContentItem:
        text = (
            f"From: {self.from_header}\n"
            f"To: {self.to or ''}\n"
            f"Subject: {self.subject}\n"
            f"Date: {self.date.isoformat()}\n\n"
            f"{self.body if self.body is not None else self.snippet}"
        )
        return ContentItem(
            id=self.message_id,
            occurred_at=self.date,
            text=text,
            sender=self.from_header,
            title=self.subject,
            raw=self.to_dict(),
        )


def build_gmail_query(
    after: Optional[datetime] = None,
    query: Optional[str] = None,
    label: Optional[str] = None,
) -> str:
    """
    Build Gmail search query string.

    Args:
        after: Only messages received after this instant (epoch-second precision)
        query: Extra Gmail search terms from the source configuration
        label: Restrict to a Gmail label

    Returns:
        Gmail query string
    """
    parts = []

    if after:
        parts.append(f"after:{int(after.timestamp())}")

    if label:
        parts.append(f"label:{label}")

    if query:
        parts.append(query.strip())

    return " ".join(parts)


def parse_sender(from_header: str) -> tuple[str, str]:
    """
    Parse From header into name and email.

    Args:
        from_header: Raw From header value

    Returns:
        Tuple of (sender_name, sender_email)
    """
    # Pattern: "Name <email@example.com>" or just "email@example.com"
    match = re.match(r'^"?([^"<]*)"?\s*<([^>]+)>$', from_header.strip())
    if match:
        name = match.group(1).strip()
        address = match.group(2).strip()
        return name or address, address

    return from_header.strip(), from_header.strip()


class GmailService:
    """Gmail service for listing and retrieving messages."""

    def __init__(
        self,
        auth: Optional[GoogleAuthService] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize Gmail service.

        Args:
            auth: Google auth service (defaults to the shared one)
            retry_config: Retry policy for each API request
        """
        self.auth = auth or get_google_auth()
        self.retry_config = retry_config
        self._service = None

    @property
    def service(self):
        """Get or create Gmail API service with timeout."""
        if self._service is None:
            import httplib2
            from google_auth_httplib2 import AuthorizedHttp

            credentials = self.auth.get_credentials()

            # Create HTTP client with 30 second timeout
            http = httplib2.Http(timeout=30)
            authorized_http = AuthorizedHttp(credentials, http=http)

            self._service = build("gmail", "v1", http=authorized_http, cache_discovery=False)
        return self._service

    def _execute(self, request):
        return with_retry_sync(request.execute, self.retry_config or provider_retry_config())

    def fetch_new_emails(
        self,
        after: datetime,
        query: Optional[str] = None,
        label: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> list[EmailMessage]:
        """
        Fetch messages received after a cutoff, with full bodies.

        List and get errors propagate once retries are exhausted; messages
        that can't be parsed are skipped.
        """
        q = build_gmail_query(after=after, query=query, label=label)
        result = self._execute(
            self.service.users().messages().list(
                userId="me",
                q=q,
                maxResults=max_results or settings.gmail_page_size,
            )
        )

        messages = []
        for ref in result.get("messages", []) or []:
            message_id = ref.get("id")
            if not message_id:
                continue
            raw = self._execute(
                self.service.users().messages().get(userId="me", id=message_id, format="full")
            )
            message = self._parse_message(raw)
            if message:
                messages.append(message)

        logger.info(f"Fetched {len(messages)} Gmail messages for query {q!r}")
        return messages

    def _parse_message(self, msg: dict) -> Optional[EmailMessage]:
        """
        Parse raw Gmail API message into EmailMessage.

        Args:
            msg: Raw message dict from API

        Returns:
            EmailMessage or None if parsing fails
        """
        try:
            payload = msg.get("payload", {}) or {}
            headers = {}
            for header in payload.get("headers", []) or []:
                headers.setdefault(header.get("name", "").lower(), header.get("value", ""))

            from_header = headers.get("from", "")
            sender_name, sender = parse_sender(from_header)

            try:
                date = parsedate_to_datetime(headers.get("date", ""))
                if date.tzinfo is None:
                    date = date.replace(tzinfo=timezone.utc)
            except (TypeError, ValueError):
                date = datetime.now(timezone.utc)

            return EmailMessage(
                message_id=msg["id"],
                thread_id=msg.get("threadId", ""),
                subject=headers.get("subject", ""),
                from_header=from_header,
                sender=sender,
                sender_name=sender_name,
                date=date,
                snippet=msg.get("snippet", ""),
                body=self._extract_body(payload),
                to=headers.get("to", ""),
                cc=headers.get("cc") or None,
                labels=msg.get("labelIds", []) or [],
            )

        except (KeyError, AttributeError, TypeError) as e:
            logger.warning(f"Failed to parse message {msg.get('id') if isinstance(msg, dict) else msg}: {e}")
            return None

    def _extract_body(self, payload: dict) -> Optional[str]:
        """
        Extract email body from payload.

        Prefers text/plain anywhere in the part tree, falls back to text/html.
        """
        body_data = (payload.get("body") or {}).get("data")
        if body_data and payload.get("mimeType", "text/plain") in ("text/plain", "text/html"):
            decoded = _decode_part(body_data)
            if decoded is not None:
                return decoded

        for mime_type in ("text/plain", "text/html"):
            found = _find_part(payload.get("parts", []) or [], mime_type)
            if found is not None:
                return found

        return None


def _decode_part(data: str) -> Optional[str]:
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return None


def _find_part(parts: list[dict], mime_type: str) -> Optional[str]:
    for part in parts:
        if part.get("mimeType") == mime_type:
            data = (part.get("body") or {}).get("data")
            if data:
                decoded = _decode_part(data)
                if decoded is not None:
                    return decoded
        nested = _find_part(part.get("parts", []) or [], mime_type)
        if nested is not None:
            return nested
    return None


class GmailFetcher:
    """ContentFetcher over a Gmail inbox."""

    def __init__(self, service: Optional[GmailService] = None):
        self._service = service

    @property
    def service(self) -> GmailService:
        if self._service is None:
            self._service = GmailService()
        return self._service

    async def fetch_since(self, since: datetime, configuration: dict) -> list[ContentItem]:
        """Fetch emails newer than `since`. Source configuration keys: query, label, max_results."""
        emails = await asyncio.to_thread(
            self.service.fetch_new_emails,
            since,
            configuration.get("query"),
            configuration.get("label"),
            configuration.get("max_results"),
        )
        return [email.to_content_item() for email in emails]
