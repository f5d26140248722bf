"""
Tests for llm_runner/retry_config.py module.

Test coverage:
- Constants validation
- Decorator factory argument checks
- Retry on transient httpx errors, no retry on anything else
- Max attempts enforcement (including the single-attempt mode)
"""

import httpx
import pytest
from tenacity import wait_none

from llm_visibility.llm_runner.retry_config import (
    MAX_ATTEMPTS,
    NO_RETRY_STATUS_CODES,
    RETRY_STATUS_CODES,
    create_retry_decorator,
)


def _status_error(status):
    request = httpx.Request("POST", "https://example.com")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("boom", request=request, response=response)


def _counting(decorator, errors):
    """Wrap a coroutine that raises the given errors in turn, then returns 'ok'."""
    calls = {"n": 0}

    async def call():
        calls["n"] += 1
        if errors:
            raise errors.pop(0)
        return "ok"

    wrapped = decorator(call)
    wrapped.retry.wait = wait_none()
    return wrapped, calls


def test_default_attempts():
    assert MAX_ATTEMPTS == 3


def test_retry_and_no_retry_codes_are_disjoint():
    assert not RETRY_STATUS_CODES & NO_RETRY_STATUS_CODES
    assert 429 in RETRY_STATUS_CODES
    assert 403 in NO_RETRY_STATUS_CODES


@pytest.mark.parametrize("attempts", [0, -1])
def test_rejects_invalid_attempts(attempts):
    with pytest.raises(ValueError, match="max_attempts must be >= 1"):
        create_retry_decorator(attempts)


@pytest.mark.asyncio
async def test_retries_transient_errors_until_success():
    wrapped, calls = _counting(
        create_retry_decorator(3),
        [_status_error(503), httpx.ConnectError("down")],
    )

    assert await wrapped() == "ok"
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_reraises_last_error_when_exhausted():
    wrapped, calls = _counting(
        create_retry_decorator(2),
        [httpx.ReadTimeout("slow"), _status_error(429), _status_error(500)],
    )

    with pytest.raises(httpx.HTTPStatusError):
        await wrapped()
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_single_attempt_never_retries():
    wrapped, calls = _counting(create_retry_decorator(1), [_status_error(503)])

    with pytest.raises(httpx.HTTPStatusError):
        await wrapped()
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_other_exceptions_are_not_retried():
    wrapped, calls = _counting(create_retry_decorator(3), [RuntimeError("bug")])

    with pytest.raises(RuntimeError):
        await wrapped()
    assert calls["n"] == 1
