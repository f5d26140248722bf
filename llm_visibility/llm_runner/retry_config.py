"""
Retry configuration for Gemini API calls.

Centralized tenacity configuration shared by the Gemini client. The number
of attempts is configurable because the pipeline's default is a single
attempt per completion: a failed run is dropped, not retried. Raising
run_settings.request_max_attempts turns on transport-level retries with
exponential backoff.

Example:
    >>> from llm_visibility.llm_runner.retry_config import create_retry_decorator
    >>> @create_retry_decorator(max_attempts=3)
    ... async def call_api():
    ...     # Retried on 429, 5xx, connect errors and timeouts
    ...     ...
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

# Default attempts when a caller does not choose (1 initial + 2 retries)
MAX_ATTEMPTS = 3

# Backoff bounds between attempts (seconds)
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 60

# 429: rate limit, 500-504: server errors
RETRY_STATUS_CODES = frozenset([429, 500, 502, 503, 504])

# 400: bad request, 401/403: key rejected or API not enabled, 404: unknown model
NO_RETRY_STATUS_CODES = frozenset([400, 401, 403, 404])

# Per-attempt HTTP timeout in seconds
REQUEST_TIMEOUT = 30.0

# ============================================================================
# RETRY DECORATOR FACTORY
# ============================================================================


def create_retry_decorator(max_attempts: int = MAX_ATTEMPTS):
    """
    Create a tenacity retry decorator for Gemini API calls.

    Args:
        max_attempts: Total attempts including the first one. 1 disables
            retries entirely.

    Returns:
        Retry decorator that retries on httpx.HTTPStatusError,
        httpx.ConnectError and httpx.TimeoutException and re-raises the last
        exception once attempts are exhausted.

    Raises:
        ValueError: If max_attempts < 1

    Note:
        The caller checks NO_RETRY_STATUS_CODES and raises a non-httpx
        exception for those, so permanent errors are never retried.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")

    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=MIN_WAIT_SECONDS,
            max=MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception_type(
            (
                httpx.HTTPStatusError,
                httpx.ConnectError,
                httpx.TimeoutException,
            )
        ),
        reraise=True,
    )
