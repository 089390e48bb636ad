"""
Resilience utilities for the ingestion pipeline.

Provides:
- Bounded exponential-backoff retry for async and sync operations
- Transient vs. fatal error classification
- Service error types shared by fetchers and the extractor
"""
import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERROR_CODES = {
    "429", "500", "502", "503", "504",
    "ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EPIPE", "EAI_AGAIN",
}

TRANSIENT_MESSAGE_MARKERS = (
    "rate limit",
    "quota",
    "temporar",
    "timeout",
    "timed out",
    "unavailable",
    "too many requests",
)


def is_retryable_status(status_code: int) -> bool:
    """
    Check if HTTP status code is retryable.

    Args:
        status_code: HTTP status code

    Returns:
        True if the error is transient and retryable
    """
    return status_code == 429 or status_code >= 500


def _error_status(error: BaseException) -> Optional[int]:
    """Pull an HTTP-ish status out of the error shapes our clients raise."""
    candidates = [
        getattr(error, "status", None),
        getattr(error, "status_code", None),
        getattr(getattr(error, "response", None), "status_code", None),
        getattr(getattr(error, "response", None), "status", None),
        # googleapiclient HttpError keeps the httplib2 response on .resp
        getattr(getattr(error, "resp", None), "status", None),
    ]
    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def is_rate_limit_or_transient_error(error: BaseException) -> bool:
    """
    Default retry predicate.

    Retries 429/5xx statuses, known transient error codes, builtin connection
    and timeout errors, and messages that read like rate limiting or outages.
    """
    status = _error_status(error)
    if status is not None and is_retryable_status(status):
        return True

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    code = getattr(error, "code", None)
    if code is not None and str(code).upper() in TRANSIENT_ERROR_CODES:
        return True

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 4
    base_delay: float = 0.4  # seconds
    max_delay: float = 5.0  # seconds
    jitter: bool = True
    should_retry: Callable[[BaseException], bool] = field(
        default=is_rate_limit_or_transient_error
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff before the retry following failed attempt number `attempt` (1-based)."""
        backoff = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        if self.jitter:
            backoff *= 0.8 + random.random() * 0.4
        return backoff


DEFAULT_RETRY_CONFIG = RetryConfig()


class ServiceUnavailableError(Exception):
    """Raised when an external service is unavailable or not configured."""

    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """
    Run an async operation with bounded exponential-backoff retry.

    Non-retryable errors and the error from the final attempt are re-raised
    unchanged.

    Args:
        operation: Zero-argument callable returning an awaitable
        config: Retry configuration (defaults: 4 attempts, 0.4s base, 5s cap)
        on_retry: Optional callback on each retry (attempt, exception)
    """
    cfg = config or DEFAULT_RETRY_CONFIG
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            attempt += 1
            if attempt >= cfg.max_attempts or not cfg.should_retry(e):
                if attempt > 1:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                raise

            delay = cfg.delay_for(attempt)
            logger.warning(
                f"Retry {attempt}/{cfg.max_attempts - 1} after {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, e)
            await asyncio.sleep(delay)


def with_retry_sync(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Blocking counterpart of with_retry, for Google API client calls."""
    cfg = config or DEFAULT_RETRY_CONFIG
    attempt = 0

    while True:
        try:
            return operation()
        except Exception as e:
            attempt += 1
            if attempt >= cfg.max_attempts or not cfg.should_retry(e):
                if attempt > 1:
                    logger.error(f"Giving up after {attempt} attempts: {e}")
                raise

            delay = cfg.delay_for(attempt)
            logger.warning(
                f"Retry {attempt}/{cfg.max_attempts - 1} after {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s..."
            )
            if on_retry:
                on_retry(attempt, e)
            time.sleep(delay)


def retry_async(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
):
    """
    Decorator form of with_retry for async functions.

    Args:
        config: Retry configuration
        on_retry: Optional callback on each retry (attempt, exception)
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await with_retry(lambda: func(*args, **kwargs), config, on_retry)
        return wrapper
    return decorator


def provider_retry_config() -> RetryConfig:
    """Retry ceiling for Gmail / Drive fetch calls, from settings."""
    from config.settings import settings
    return RetryConfig(
        max_attempts=settings.provider_retry_attempts,
        base_delay=0.4,
        max_delay=settings.provider_retry_max_delay,
    )


# Pre-configured retry config for the extraction model call
CLAUDE_API_RETRY = RetryConfig(
    max_attempts=4,
    base_delay=0.4,
    max_delay=5.0,
)
