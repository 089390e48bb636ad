"""
Google OAuth authentication service.

Builds credentials for Gmail and Drive from a long-lived refresh token held in
settings, so scheduled runs never need a browser.
"""
import logging
import threading
from typing import Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from api.services.resilience import ServiceUnavailableError
from config.settings import settings

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/drive.readonly",
]


class GoogleAuthService:
    """
    Google OAuth authentication service.

    Handles:
    - Building credentials from client id/secret + refresh token
    - Automatic access token refresh
    - Reporting missing or revoked credentials as ServiceUnavailableError
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.google_client_id
        self.client_secret = client_secret if client_secret is not None else settings.google_client_secret
        self.refresh_token = refresh_token if refresh_token is not None else settings.google_refresh_token
        self._credentials: Optional[Credentials] = None
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def get_credentials(self) -> Credentials:
        """
        Get valid Google credentials, refreshing the access token when needed.

        Raises:
            ServiceUnavailableError: If credentials are missing or the refresh token was revoked
        """
        if not self.is_configured:
            raise ServiceUnavailableError(
                "Google",
                "Missing OAuth credentials. Check GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET "
                "and GOOGLE_REFRESH_TOKEN in your .env file.",
            )

        with self._lock:
            if self._credentials is None:
                self._credentials = Credentials(
                    token=None,
                    refresh_token=self.refresh_token,
                    client_id=self.client_id,
                    client_secret=self.client_secret,
                    token_uri=TOKEN_URI,
                    scopes=SCOPES,
                )

            if not self._credentials.valid:
                try:
                    logger.info("Refreshing Google access token")
                    self._credentials.refresh(Request())
                except RefreshError as e:
                    self._credentials = None
                    raise ServiceUnavailableError("Google", f"Token refresh failed (may be revoked): {e}") from e

            return self._credentials


# Singleton instance
_auth_service: Optional[GoogleAuthService] = None


def get_google_auth() -> GoogleAuthService:
    """Get or create the Google auth service."""
    global _auth_service
    if _auth_service is None:
        _auth_service = GoogleAuthService()
    return _auth_service


def reset_google_auth() -> None:
    """Reset the singleton (for testing)."""
    global _auth_service
    _auth_service = None
