"""
Intelligence extraction service.

Sends one piece of raw content (email, meeting transcript, manual note) to
Claude with a content-type-specific instruction and validates the JSON that
comes back.

Failure modes are kept apart on purpose:
- the network call is retried (resilience.with_retry) and raises once
  attempts are exhausted
- an unparseable or schema-mismatched response is logged and returned as
  None, never retried

NOTE: anthropic library is imported lazily to speed up test collection.
"""
import logging
import re
from dataclasses import replace
from enum import Enum
from typing import Any, Literal, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, ValidationError

from api.services.resilience import (
    CLAUDE_API_RETRY,
    RetryConfig,
    ServiceUnavailableError,
    with_retry,
)
from config.settings import settings

if TYPE_CHECKING:
    import anthropic

logger = logging.getLogger(__name__)


class ContentType(str, Enum):
    EMAIL = "email"
    TRANSCRIPT = "transcript"
    NOTE = "note"


class ExtractedActionItem(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    description: str
    assignee: Optional[str]
    due_date: Optional[str]


class ExtractedIntelligence(BaseModel):
    """Validated model output. Every field is required; nullable ones must still be present."""
    model_config = ConfigDict(extra="ignore", strict=True)

    summary: str
    key_points: list[str]
    sentiment: Literal["positive", "neutral", "negative", "mixed"]
    action_items: list[ExtractedActionItem]
    people_mentioned: list[str]
    topics: list[str]
    client_name_guess: Optional[str]


DEFAULT_INSTRUCTIONS = {
    ContentType.EMAIL: (
        "You are an intelligence analyst for a professional services firm. "
        "Analyze the following email and extract structured intelligence."
    ),
    ContentType.TRANSCRIPT: (
        "You are an intelligence analyst for a professional services firm. "
        "Analyze the following meeting transcript and extract structured intelligence."
    ),
    ContentType.NOTE: (
        "You are an intelligence analyst for a professional services firm. "
        "Analyze the following account note written by a team member and extract structured intelligence."
    ),
}

_SUBJECTS = {
    ContentType.EMAIL: ("the email", "names of people referenced", "EMAIL"),
    ContentType.TRANSCRIPT: ("the meeting", "names of participants and people referenced", "TRANSCRIPT"),
    ContentType.NOTE: ("the note", "names of people referenced", "NOTE"),
}


def format_block(content_type: ContentType) -> str:
    """The fixed JSON contract appended after the (editable) instruction."""
    subject, people, label = _SUBJECTS[content_type]
    return f"""
Return ONLY valid JSON matching this exact shape:
{{
  "summary": "2-3 sentence summary of {subject}",
  "key_points": ["array of key takeaways"],
  "sentiment": "positive" | "neutral" | "negative" | "mixed",
  "action_items": [{{"description": "...", "assignee": "name or null", "due_date": "ISO date or null"}}],
  "people_mentioned": ["{people}"],
  "topics": ["business topics discussed"],
  "client_name_guess": "best guess at the client/company name, or null"
}}

{label}:
"""


def configured_instruction(content_type: ContentType) -> str:
    """Instruction override from settings, falling back to the built-in default."""
    override = {
        ContentType.EMAIL: settings.email_instruction,
        ContentType.TRANSCRIPT: settings.transcript_instruction,
        ContentType.NOTE: settings.note_instruction,
    }[content_type]
    return override.strip() or DEFAULT_INSTRUCTIONS[content_type]


def build_prompt(content_type: ContentType, raw_text: str, instruction: Optional[str] = None) -> str:
    instruction = instruction or configured_instruction(content_type)
    return f"{instruction}{format_block(content_type)}{raw_text}"


_FENCE_OPEN = re.compile(r"```json\n?")
_FENCE_ANY = re.compile(r"```\n?")


def strip_code_fences(text: str) -> str:
    return _FENCE_ANY.sub("", _FENCE_OPEN.sub("", text)).strip()


def parse_intelligence_response(text: str) -> Optional[ExtractedIntelligence]:
    """
    Parse and validate a model response.

    Tolerates ```json fences. Returns None (and logs) for anything that isn't
    a JSON object matching the schema; a partially valid object is still None.
    """
    try:
        return ExtractedIntelligence.model_validate_json(strip_code_fences(text or ""))
    except ValidationError as e:
        logger.error(
            f"Failed to parse model response ({e.error_count()} validation errors): {(text or '')[:200]!r}"
        )
        return None


def _with_connection_retry(config: RetryConfig) -> RetryConfig:
    """Extend a retry policy so SDK transport failures are always retried."""
    should_retry = config.should_retry

    def _should_retry_model_call(error: BaseException) -> bool:
        import anthropic
        if isinstance(error, anthropic.APIConnectionError):
            return True
        return should_retry(error)

    return replace(config, should_retry=_should_retry_model_call)


class IntelligenceExtractor:
    """Extracts structured intelligence from raw text using Claude."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        """
        Initialize extractor.

        Args:
            api_key: Anthropic API key (defaults to settings)
            model: Claude model id (defaults to settings)
            max_tokens: Response token limit (defaults to settings)
            retry_config: Retry policy around the API call
        """
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.extraction_model
        self.max_tokens = max_tokens or settings.extraction_max_tokens
        self.retry_config = _with_connection_retry(retry_config or CLAUDE_API_RETRY)
        self._client: Any = None

    @property
    def client(self) -> "anthropic.AsyncAnthropic":
        """Lazy-load the Anthropic client."""
        if self._client is None:
            if not self.api_key or not self.api_key.strip():
                raise ServiceUnavailableError(
                    "Anthropic", "API key not configured. Set ANTHROPIC_API_KEY in your .env file."
                )
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def complete(self, prompt: str) -> str:
        """Send a prompt and return the concatenated text blocks of the reply."""
        client = self.client

        async def _call():
            return await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )

        response = await with_retry(_call, self.retry_config)
        return "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

    async def extract(
        self,
        content_type: ContentType,
        raw_text: str,
        instruction: Optional[str] = None,
    ) -> Optional[ExtractedIntelligence]:
        """
        Extract intelligence from one content item.

        Returns None if the response can't be validated. API errors that
        survive retry propagate to the caller.
        """
        content_type = ContentType(content_type)
        prompt = build_prompt(content_type, raw_text, instruction)
        logger.debug(f"Extracting {content_type.value} intelligence ({len(raw_text)} chars) with {self.model}")
        text = await self.complete(prompt)
        return parse_intelligence_response(text)
