"""
Google Drive integration service.

Lists Google Docs modified since a cutoff (typically meeting transcripts)
and exports their text for the document processor.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from api.services.crm_types import ContentItem
from api.services.google_auth import GoogleAuthService, get_google_auth
from api.services.resilience import RetryConfig, provider_retry_config, with_retry_sync
from config.settings import settings

logger = logging.getLogger(__name__)


# MIME types for Google-native formats
MIME_GOOGLE_DOC = "application/vnd.google-apps.document"
MIME_GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
MIME_GOOGLE_SLIDES = "application/vnd.google-apps.presentation"

# Export format per readable Google-native type
EXPORT_FORMATS = {
    MIME_GOOGLE_DOC: "text/plain",
    MIME_GOOGLE_SHEET: "text/csv",
    MIME_GOOGLE_SLIDES: "text/plain",
}


def get_drive_link(file_id: str, mime_type: str = MIME_GOOGLE_DOC) -> str:
    """
    Generate the web link for a Drive file.

    Args:
        file_id: Drive file ID
        mime_type: File MIME type

    Returns:
        Web URL to access the file
    """
    if mime_type == MIME_GOOGLE_DOC:
        return f"https://docs.google.com/document/d/{file_id}"
    elif mime_type == MIME_GOOGLE_SHEET:
        return f"https://docs.google.com/spreadsheets/d/{file_id}"
    elif mime_type == MIME_GOOGLE_SLIDES:
        return f"https://docs.google.com/presentation/d/{file_id}"
    else:
        return f"https://drive.google.com/file/d/{file_id}"


@dataclass
class DriveFile:
    """Represents a Google Doc with its exported text."""
    file_id: str
    name: str
    mime_type: str
    modified_time: datetime
    created_time: datetime
    web_link: Optional[str] = None
    content: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "name": self.name,
            "mime_type": self.mime_type,
            "modified_time": self.modified_time.isoformat(),
            "created_time": self.created_time.isoformat(),
            "web_link": self.web_link or get_drive_link(self.file_id, self.mime_type),
        }

    def to_content_item(self) -> ContentItem:
        return ContentItem(
            id=self.file_id,
            occurred_at=self.created_time,
            text=f"Title: {self.name}\n\n{self.content or ''}",
            title=self.name,
            raw=self.to_dict(),
        )


def build_drive_query(
    after: datetime,
    folder_id: Optional[str] = None,
    name_contains: Optional[str] = None,
    mime_types: Optional[list[str]] = None,
) -> str:
    """
    Build a Drive files.list query for documents modified after a cutoff.

    Args:
        after: Only files modified strictly after this instant
        folder_id: Restrict to one parent folder
        name_contains: Restrict to names containing this text
        mime_types: Google-native types to include (default: Docs only)

    Returns:
        Drive query string
    """
    cutoff = after.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    types = [m for m in (mime_types or [MIME_GOOGLE_DOC]) if m in EXPORT_FORMATS] or [MIME_GOOGLE_DOC]
    if len(types) == 1:
        type_clause = f"mimeType = '{types[0]}'"
    else:
        type_clause = "(" + " or ".join(f"mimeType = '{m}'" for m in types) + ")"

    query_parts = [
        type_clause,
        f"modifiedTime > '{cutoff}'",
        "trashed = false",
    ]

    if folder_id:
        query_parts.append(f"'{_escape(folder_id)}' in parents")

    if name_contains:
        query_parts.append(f"name contains '{_escape(name_contains)}'")

    return " and ".join(query_parts)


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _parse_time(value: Optional[str]) -> datetime:
    try:
        # Parse ISO format with Z suffix
        return datetime.fromisoformat((value or "").replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)


class DriveService:
    """
    Google Drive service for listing recent documents and exporting their text.
    """

    def __init__(
        self,
        auth: Optional[GoogleAuthService] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.auth = auth or get_google_auth()
        self.retry_config = retry_config
        self._service = None

    @property
    def service(self):
        """Get or create Drive API service."""
        if self._service is None:
            credentials = self.auth.get_credentials()
            self._service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return self._service

    def _execute(self, request):
        return with_retry_sync(request.execute, self.retry_config or provider_retry_config())

    def fetch_recent_documents(
        self,
        after: datetime,
        configuration: Optional[dict] = None,
    ) -> list[DriveFile]:
        """
        List documents modified after `after` and export each as text.

        Args:
            after: Cutoff instant
            configuration: Source configuration; keys folder_id, name_contains,
                mime_types, max_results

        A listing failure propagates. A document whose export fails or comes
        back empty is skipped.
        """
        configuration = configuration or {}
        query = build_drive_query(
            after,
            folder_id=configuration.get("folder_id"),
            name_contains=configuration.get("name_contains"),
            mime_types=configuration.get("mime_types"),
        )
        result = self._execute(
            self.service.files().list(
                q=query,
                fields="files(id, name, mimeType, createdTime, modifiedTime, webViewLink)",
                orderBy="modifiedTime desc",
                pageSize=configuration.get("max_results") or settings.drive_page_size,
            )
        )

        documents = []
        for file_data in result.get("files", []) or []:
            file_id = file_data.get("id")
            if not file_id:
                continue

            mime_type = file_data.get("mimeType") or MIME_GOOGLE_DOC
            content = self.get_document_text(file_id, mime_type)
            if not content:
                continue

            documents.append(DriveFile(
                file_id=file_id,
                name=file_data.get("name") or "Untitled",
                mime_type=mime_type,
                modified_time=_parse_time(file_data.get("modifiedTime")),
                created_time=_parse_time(file_data.get("createdTime")),
                web_link=file_data.get("webViewLink"),
                content=content,
            ))

        logger.info(f"Fetched {len(documents)} Drive documents for query {query!r}")
        return documents

    def get_document_text(self, file_id: str, mime_type: str = MIME_GOOGLE_DOC) -> Optional[str]:
        """
        Export a Google-native document as text (Sheets as CSV).

        Returns:
            Document text, or None if it couldn't be read
        """
        export_format = EXPORT_FORMATS.get(mime_type)
        if export_format is None:
            logger.warning(f"Cannot extract text from {mime_type}")
            return None

        try:
            content = self._execute(
                self.service.files().export(fileId=file_id, mimeType=export_format)
            )
        except HttpError as e:
            logger.error(f"Failed to read Drive document {file_id}: {e}")
            return None
        return content.decode("utf-8") if isinstance(content, bytes) else content


class DriveFetcher:
    """ContentFetcher over Google Drive documents."""

    def __init__(self, service: Optional[DriveService] = None):
        self._service = service

    @property
    def service(self) -> DriveService:
        if self._service is None:
            self._service = DriveService()
        return self._service

    async def fetch_since(self, since: datetime, configuration: dict) -> list[ContentItem]:
        """Fetch documents modified after `since`."""
        documents = await asyncio.to_thread(self.service.fetch_recent_documents, since, configuration)
        return [doc.to_content_item() for doc in documents]
