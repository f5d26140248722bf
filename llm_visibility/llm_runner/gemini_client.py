"""
Google Gemini API client for LLM Visibility.

One client class serves both roles the pipeline needs:

- generate_answer(): grounded completion (tools=[{"google_search": {}}]),
  returning the answer text plus groundingMetadata sources
- generate_structured(): JSON output constrained by a responseSchema, used
  for competitor analysis

Errors surface as LLMProviderError subclasses once the configured attempts
are exhausted. API keys are sent as the ?key= query parameter and are never
logged.

Example:
    >>> client = GeminiClient("gemini-3-flash-preview", api_key="AIza...",
    ...     tools=[{"google_search": {}}])
    >>> response = await client.generate_answer("Best fintech apps in Saudi Arabia?")
    >>> [c["uri"] for c in response.grounding_chunks]
"""

import json
import logging
from typing import Any

import httpx

from llm_visibility.config.constants import MAX_PROMPT_LENGTH
from llm_visibility.exceptions import (
    LLMAuthenticationError,
    LLMProviderError,
    LLMRateLimitError,
    LLMResponseError,
    LLMTimeoutError,
)
from llm_visibility.llm_runner.models import LLMResponse
from llm_visibility.llm_runner.retry_config import (
    MAX_ATTEMPTS,
    NO_RETRY_STATUS_CODES,
    REQUEST_TIMEOUT,
    create_retry_decorator,
)
from llm_visibility.utils.time import utc_timestamp

# Format: {base}/models/{model}:generateContent?key={api_key}
GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# Finish reasons that mean the candidate has no usable content
BLOCKED_FINISH_REASONS = frozenset(
    ["SAFETY", "RECITATION", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"]
)

logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Google Gemini API client.

    Attributes:
        model_name: Gemini model identifier (e.g., "gemini-2.5-flash-lite")
        api_key: Google API key (NEVER logged)
        system_prompt: Optional system instruction sent with every request
        tools: Tool declarations for grounded answers
        max_attempts: HTTP attempts per call (1 = no retry)

    Retry behavior:
        - Retries on: 429, 500, 502, 503, 504, connect errors, timeouts
        - Fails immediately on: 400, 401, 403, 404
        - Timeout: 30s per attempt
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        system_prompt: str | None = None,
        tools: list[dict] | None = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        """
        Raises:
            ValueError: If model_name or api_key is empty, or max_attempts < 1
        """
        # Validate inputs (never log api_key)
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")

        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.tools = tools
        self.max_attempts = max_attempts
        self._post_with_retry = create_retry_decorator(max_attempts)(self._post)

        if tools and not any("google_search" in t for t in tools if isinstance(t, dict)):
            logger.warning(
                f"Tools provided but no google_search found. Model: {model_name}"
            )

        logger.debug(
            f"Initialized Gemini client: model={model_name}, "
            f"grounded={bool(tools)}, max_attempts={max_attempts}"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate_answer(self, prompt: str) -> LLMResponse:
        """
        Run a grounded completion.

        Returns:
            LLMResponse with answer text, token usage and grounding sources

        Raises:
            ValueError: If prompt is empty or too long
            LLMAuthenticationError: On 401/403
            LLMRateLimitError: On 429 after all attempts
            LLMTimeoutError: On timeout after all attempts
            LLMResponseError: On other HTTP errors or unusable payloads
            LLMProviderError: On connection failures
        """
        payload = self._build_payload(prompt)
        if self.tools:
            payload["tools"] = self.tools

        data = await self._request(payload)

        answer_text = self._extract_answer_text(data)
        tokens_used, prompt_tokens, completion_tokens = self._extract_token_usage(data)
        grounding_chunks, web_search_queries = self._extract_grounding_metadata(data)

        return LLMResponse(
            answer_text=answer_text,
            tokens_used=tokens_used,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            provider="google",
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
            grounding_chunks=grounding_chunks,
            web_search_queries=web_search_queries,
        )

    async def generate_structured(
        self, prompt: str, response_schema: dict[str, Any]
    ) -> Any:
        """
        Run a schema-constrained completion and decode the JSON it returns.

        Tools are never sent: Gemini does not combine search grounding with
        a responseSchema.

        Raises:
            LLMResponseError: If the output is not valid JSON
            (plus the same provider errors as generate_answer)
        """
        payload = self._build_payload(prompt)
        payload["generationConfig"] = {
            "responseMimeType": "application/json",
            "responseSchema": response_schema,
        }

        data = await self._request(payload)
        text = self._extract_answer_text(data)

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise LLMResponseError(
                f"Gemini structured output is not valid JSON: model={self.model_name}, "
                f"error={e}"
            ) from e

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _build_payload(self, prompt: str) -> dict[str, Any]:
        if not prompt or prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH:,} characters "
                f"(received {len(prompt):,} characters)."
            )

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        }
        if self.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": self.system_prompt}]}
        return payload

    async def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with retries, translating transport errors to LLMProviderError."""
        try:
            response = await self._post_with_retry(payload)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = self._extract_error_detail(e.response)
            if status == 429:
                raise LLMRateLimitError(
                    f"Gemini rate limit: model={self.model_name}, detail={detail}"
                ) from e
            raise LLMResponseError(
                f"Gemini API error: status={status}, model={self.model_name}, "
                f"detail={detail}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(
                f"Gemini API timeout after {REQUEST_TIMEOUT}s: model={self.model_name}"
            ) from e
        except httpx.ConnectError as e:
            raise LLMProviderError(
                f"Gemini API connection error: model={self.model_name}, error={e}"
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise LLMResponseError(f"Failed to parse Gemini response JSON: {e}") from e

        if not isinstance(data, dict):
            raise LLMResponseError("Gemini response is not a JSON object")
        return data

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        """Single HTTP attempt. httpx errors propagate so tenacity can retry them."""
        api_url = f"{GEMINI_API_BASE_URL}/models/{self.model_name}:generateContent"

        # Log request (NEVER log api_key or params)
        logger.debug(f"Sending request to Gemini: model={self.model_name}")

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(
                    api_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    params={"key": self.api_key},
                )

                if response.status_code in NO_RETRY_STATUS_CODES:
                    detail = self._extract_error_detail(response)
                    error_cls = (
                        LLMAuthenticationError
                        if response.status_code in (401, 403)
                        else LLMResponseError
                    )
                    raise error_cls(
                        f"Gemini API error (non-retryable): "
                        f"status={response.status_code}, "
                        f"model={self.model_name}, "
                        f"detail={detail}"
                    )

                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.warning(
                f"Gemini API HTTP error: status={e.response.status_code}, "
                f"model={self.model_name}"
            )
            raise

        except httpx.ConnectError:
            logger.warning(f"Gemini API connection error: model={self.model_name}")
            raise

        except httpx.TimeoutException:
            logger.warning(f"Gemini API timeout: model={self.model_name}")
            raise

        return response

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _extract_answer_text(self, data: dict[str, Any]) -> str:
        """
        Concatenate the text parts of the first candidate.

        Grounded answers often arrive split across several parts.

        Raises:
            LLMResponseError: If the response has no usable text
        """
        candidates = data.get("candidates")
        if not candidates or not isinstance(candidates, list):
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise LLMResponseError(f"Gemini blocked the prompt: blockReason={block_reason}")
            raise LLMResponseError("Gemini response missing 'candidates' array")

        candidate = candidates[0]
        if not isinstance(candidate, dict):
            raise LLMResponseError("Invalid candidate structure")

        finish_reason = candidate.get("finishReason")
        if finish_reason in BLOCKED_FINISH_REASONS:
            raise LLMResponseError(
                f"Gemini API blocked content due to safety filters: "
                f"finishReason={finish_reason}"
            )

        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not parts or not isinstance(parts, list):
            raise LLMResponseError(
                f"Candidate missing content parts. finishReason={finish_reason or 'UNKNOWN'}"
            )

        texts = [
            str(part["text"])
            for part in parts
            if isinstance(part, dict) and part.get("text") is not None
        ]
        if not texts:
            raise LLMResponseError("Candidate content has no text parts")

        if finish_reason and finish_reason != "STOP":
            # MAX_TOKENS and similar still carry usable (truncated) text
            logger.warning(
                f"Gemini returned finishReason={finish_reason} for model={self.model_name}; "
                f"answer may be incomplete"
            )

        return "".join(texts)

    def _extract_grounding_metadata(
        self, data: dict[str, Any]
    ) -> tuple[list[dict[str, Any]], list[str]]:
        """
        Return (grounding_chunks, web_search_queries) from the first candidate.

        Example grounding metadata structure:
            {
                "webSearchQueries": ["query1"],
                "groundingChunks": [{"web": {"uri": "https://...", "title": "..."}}]
            }

        Missing metadata yields ([], []): the model decided not to search.
        """
        candidates = data.get("candidates")
        if not candidates or not isinstance(candidates[0], dict):
            return [], []

        metadata = candidates[0].get("groundingMetadata")
        if not isinstance(metadata, dict):
            logger.debug("No grounding metadata in response")
            return [], []

        chunks = []
        for chunk in metadata.get("groundingChunks") or []:
            if isinstance(chunk, dict) and isinstance(chunk.get("web"), dict):
                chunks.append(dict(chunk["web"]))

        queries = [
            str(q) for q in metadata.get("webSearchQueries") or [] if isinstance(q, str)
        ]

        logger.debug(
            f"Extracted grounding metadata: {len(queries)} queries, {len(chunks)} sources"
        )
        return chunks, queries

    def _extract_token_usage(self, data: dict[str, Any]) -> tuple[int, int, int]:
        """Return (total, prompt, candidates) token counts, zeros if missing."""
        usage = data.get("usageMetadata")
        if not usage or not isinstance(usage, dict):
            logger.debug(f"Gemini response missing 'usageMetadata' for model={self.model_name}")
            return 0, 0, 0

        prompt_tokens = int(usage.get("promptTokenCount") or 0)
        candidates_tokens = int(usage.get("candidatesTokenCount") or 0)
        total_tokens = int(usage.get("totalTokenCount") or prompt_tokens + candidates_tokens)

        return total_tokens, prompt_tokens, candidates_tokens

    def _extract_error_detail(self, response: httpx.Response) -> str:
        """Error message from the response body (never includes the key)."""
        try:
            error = response.json().get("error", {})
            return str(error.get("message", "Unknown error"))
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code}"
