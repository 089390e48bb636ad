"""
Client Intelligence Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Paths (use CLIENTINTEL_ prefix)
    database_path: Path = Field(
        default=Path("./data/crm.db"),
        alias="CLIENTINTEL_DB_PATH",
        description="SQLite database holding sources, queue, intelligence and health"
    )

    # Server
    port: int = Field(default=8000, alias="CLIENTINTEL_PORT")
    host: str = Field(default="0.0.0.0", alias="CLIENTINTEL_HOST")

    # Shared secret for the cron trigger. Empty means every caller is rejected.
    cron_secret: str = Field(default="", alias="CRON_SECRET")

    # API Keys (no prefix - standard env var names)
    anthropic_api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")

    # Extraction model
    extraction_model: str = Field(
        default="claude-sonnet-4-5-20250929",
        alias="CLIENTINTEL_EXTRACTION_MODEL"
    )
    extraction_max_tokens: int = Field(default=2048, alias="CLIENTINTEL_EXTRACTION_MAX_TOKENS")

    # Editable extraction instructions. Empty uses the built-in default; the JSON
    # format block appended after the instruction is never configurable.
    email_instruction: str = Field(default="", alias="EMAIL_SYSTEM_PROMPT")
    transcript_instruction: str = Field(default="", alias="TRANSCRIPT_SYSTEM_PROMPT")
    note_instruction: str = Field(default="", alias="NOTE_SYSTEM_PROMPT")

    # Google OAuth (server-side refresh token, shared by Gmail and Drive)
    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    google_refresh_token: str = Field(default="", alias="GOOGLE_REFRESH_TOKEN")

    # Provider page sizes
    gmail_page_size: int = Field(default=50, alias="CLIENTINTEL_GMAIL_PAGE_SIZE")
    drive_page_size: int = Field(default=25, alias="CLIENTINTEL_DRIVE_PAGE_SIZE")

    # Retry ceiling for provider fetch calls (Gmail / Drive)
    provider_retry_attempts: int = Field(default=4, alias="CLIENTINTEL_PROVIDER_RETRY_ATTEMPTS")
    provider_retry_max_delay: float = Field(
        default=5.0,
        alias="CLIENTINTEL_PROVIDER_RETRY_MAX_DELAY",
        description="Upper bound on a single backoff delay (seconds)"
    )

    # Notifications
    ops_alert_webhook_url: str = Field(
        default="",
        alias="OPS_ALERT_WEBHOOK_URL",
        description="Webhook receiving processor and run failure alerts"
    )

    # Health scoring
    default_satisfaction_score: int = Field(
        default=5,
        alias="CLIENTINTEL_DEFAULT_SATISFACTION",
        description="Satisfaction score (1-10) for health rows created by a negative signal"
    )

    @property
    def google_configured(self) -> bool:
        """Check if Google OAuth credentials are configured."""
        return bool(
            self.google_client_id and self.google_client_secret and self.google_refresh_token
        )

    @property
    def anthropic_configured(self) -> bool:
        return bool(self.anthropic_api_key and self.anthropic_api_key.strip())


settings = Settings()
