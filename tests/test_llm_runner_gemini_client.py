"""
Tests for llm_runner.gemini_client module.

Tests cover:
- GeminiClient initialization and validation
- Grounded answers: text parts, token usage and grounding sources
- Structured output: responseSchema payload and JSON decoding
- Retry logic on transient failures (429, 5xx) when attempts > 1
- Immediate failure on non-retryable errors (400, 401, 403, 404)
- Safety-filter handling and truncated (MAX_TOKENS) answers
- API keys never appear in logs
"""

import json
import logging

import pytest
from tenacity import wait_none

from llm_visibility.exceptions import (
    LLMAuthenticationError,
    LLMRateLimitError,
    LLMResponseError,
)
from llm_visibility.extractor.schemas import COMPETITOR_ANALYSIS_SCHEMA
from llm_visibility.llm_runner.gemini_client import GEMINI_API_BASE_URL, GeminiClient
from llm_visibility.llm_runner.models import build_client

MODEL = "gemini-3-flash-preview"
API_KEY = "AIza-test-secret-123"
SEARCH_TOOLS = [{"google_search": {}}]


def _candidate_response(parts, finish_reason="STOP", grounding=None, usage=None):
    candidate = {
        "content": {"parts": [{"text": p} for p in parts], "role": "model"},
        "finishReason": finish_reason,
    }
    if grounding is not None:
        candidate["groundingMetadata"] = grounding
    body = {"candidates": [candidate]}
    if usage is not None:
        body["usageMetadata"] = usage
    return body


def _client(max_attempts=1, tools=None):
    client = GeminiClient(MODEL, API_KEY, tools=tools, max_attempts=max_attempts)
    # No backoff sleeps in tests
    client._post_with_retry.retry.wait = wait_none()
    return client


class TestGeminiClientInit:
    def test_init_success(self):
        client = GeminiClient(MODEL, API_KEY, system_prompt="Be brief.", max_attempts=2)

        assert client.model_name == MODEL
        assert client.system_prompt == "Be brief."
        assert client.max_attempts == 2

    @pytest.mark.parametrize("model", ["", "   "])
    def test_rejects_empty_model(self, model):
        with pytest.raises(ValueError, match="model_name cannot be empty"):
            GeminiClient(model, API_KEY)

    @pytest.mark.parametrize("key", ["", "   "])
    def test_rejects_empty_api_key(self, key):
        with pytest.raises(ValueError, match="api_key cannot be empty"):
            GeminiClient(MODEL, key)

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            GeminiClient(MODEL, API_KEY, max_attempts=0)

    def test_warns_when_tools_lack_search(self, caplog):
        caplog.set_level(logging.WARNING)
        GeminiClient(MODEL, API_KEY, tools=[{"code_execution": {}}])
        assert "no google_search found" in caplog.text

    def test_build_client_google(self):
        client = build_client("google", MODEL, API_KEY, tools=SEARCH_TOOLS, max_attempts=1)
        assert isinstance(client, GeminiClient)
        assert client.tools == SEARCH_TOOLS

    def test_build_client_rejects_other_providers(self):
        with pytest.raises(ValueError, match="Unsupported provider"):
            build_client("openai", "gpt-5", API_KEY)


class TestGenerateAnswer:
    @pytest.mark.asyncio
    async def test_success_with_grounding(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            json=_candidate_response(
                ["Saqr Pay leads. ", "STC Pay follows."],
                grounding={
                    "webSearchQueries": ["best wallet ksa"],
                    "groundingChunks": [
                        {"web": {"uri": "https://a.com/x", "title": "a.com"}},
                        {"retrievedContext": {"uri": "ignored"}},
                        {"web": {"uri": "https://b.com"}},
                    ],
                },
                usage={"promptTokenCount": 10, "candidatesTokenCount": 20, "totalTokenCount": 45},
            ),
        )

        response = await _client(tools=SEARCH_TOOLS).generate_answer("best wallet")

        assert response.answer_text == "Saqr Pay leads. STC Pay follows."
        assert response.provider == "google"
        assert response.model_name == MODEL
        assert (response.tokens_used, response.prompt_tokens, response.completion_tokens) == (
            45,
            10,
            20,
        )
        assert response.grounding_chunks == [
            {"uri": "https://a.com/x", "title": "a.com"},
            {"uri": "https://b.com"},
        ]
        assert response.web_search_queries == ["best wallet ksa"]

    @pytest.mark.asyncio
    async def test_sends_tools_key_and_prompt(self, httpx_mock):
        httpx_mock.add_response(method="POST", json=_candidate_response(["ok"]))

        client = GeminiClient(MODEL, API_KEY, system_prompt="Be brief.", tools=SEARCH_TOOLS)
        await client.generate_answer("best wallet")

        request = httpx_mock.get_request()
        body = json.loads(request.content)
        assert str(request.url).startswith(f"{GEMINI_API_BASE_URL}/models/{MODEL}:generateContent")
        assert request.url.params["key"] == API_KEY
        assert body["contents"] == [{"role": "user", "parts": [{"text": "best wallet"}]}]
        assert body["tools"] == SEARCH_TOOLS
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}

    @pytest.mark.asyncio
    async def test_missing_metadata_gives_empty_sources(self, httpx_mock):
        httpx_mock.add_response(method="POST", json=_candidate_response(["plain"]))

        response = await _client().generate_answer("q")

        assert response.grounding_chunks == []
        assert response.tokens_used == 0

    @pytest.mark.asyncio
    async def test_max_tokens_keeps_truncated_text(self, httpx_mock, caplog):
        caplog.set_level(logging.WARNING)
        httpx_mock.add_response(
            method="POST", json=_candidate_response(["partial"], finish_reason="MAX_TOKENS")
        )

        response = await _client().generate_answer("q")

        assert response.answer_text == "partial"
        assert "finishReason=MAX_TOKENS" in caplog.text

    @pytest.mark.asyncio
    async def test_safety_block_raises(self, httpx_mock):
        httpx_mock.add_response(
            method="POST", json=_candidate_response(["x"], finish_reason="SAFETY")
        )

        with pytest.raises(LLMResponseError, match="safety filters"):
            await _client().generate_answer("q")

    @pytest.mark.asyncio
    async def test_blocked_prompt_raises(self, httpx_mock):
        httpx_mock.add_response(
            method="POST", json={"promptFeedback": {"blockReason": "OTHER"}}
        )

        with pytest.raises(LLMResponseError, match="blockReason=OTHER"):
            await _client().generate_answer("q")

    @pytest.mark.asyncio
    async def test_empty_prompt_is_rejected_before_request(self):
        with pytest.raises(ValueError, match="Prompt cannot be empty"):
            await _client().generate_answer("  ")


class TestErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_are_not_retried(self, httpx_mock, status):
        httpx_mock.add_response(
            method="POST", status_code=status, json={"error": {"message": "API key invalid"}}
        )

        with pytest.raises(LLMAuthenticationError, match="API key invalid"):
            await _client(max_attempts=3).generate_answer("q")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404])
    async def test_client_errors_are_not_retried(self, httpx_mock, status):
        httpx_mock.add_response(method="POST", status_code=status, json={"error": {}})

        with pytest.raises(LLMResponseError, match=f"status={status}"):
            await _client(max_attempts=3).generate_answer("q")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_single_attempt_by_default_in_pipeline(self, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=500, json={"error": {}})

        with pytest.raises(LLMResponseError, match="status=500"):
            await _client(max_attempts=1).generate_answer("q")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_retries_server_error_then_succeeds(self, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=503, json={"error": {}})
        httpx_mock.add_response(method="POST", json=_candidate_response(["Recovered"]))

        response = await _client(max_attempts=2).generate_answer("q")

        assert response.answer_text == "Recovered"
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_after_all_attempts(self, httpx_mock):
        for _ in range(2):
            httpx_mock.add_response(
                method="POST", status_code=429, json={"error": {"message": "slow down"}}
            )

        with pytest.raises(LLMRateLimitError, match="slow down"):
            await _client(max_attempts=2).generate_answer("q")

    @pytest.mark.asyncio
    async def test_api_key_never_logged(self, httpx_mock, caplog):
        caplog.set_level(logging.DEBUG)
        httpx_mock.add_response(method="POST", status_code=401, json={"error": {}})

        with pytest.raises(LLMAuthenticationError):
            await _client().generate_answer("q")

        ours = [r.getMessage() for r in caplog.records if r.name.startswith("llm_visibility")]
        assert ours
        assert all(API_KEY not in message for message in ours)


class TestGenerateStructured:
    @pytest.mark.asyncio
    async def test_sends_schema_without_tools(self, httpx_mock):
        payload = {"competitors": [{"id": "saqr", "position": 1, "sentiment": 80, "reasoning": ""}]}
        httpx_mock.add_response(method="POST", json=_candidate_response([json.dumps(payload)]))

        result = await _client(tools=SEARCH_TOOLS).generate_structured(
            "analyze", COMPETITOR_ANALYSIS_SCHEMA
        )

        body = json.loads(httpx_mock.get_request().content)
        assert result == payload
        assert "tools" not in body
        assert body["generationConfig"] == {
            "responseMimeType": "application/json",
            "responseSchema": COMPETITOR_ANALYSIS_SCHEMA,
        }

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, httpx_mock):
        httpx_mock.add_response(method="POST", json=_candidate_response(["not json"]))

        with pytest.raises(LLMResponseError, match="not valid JSON"):
            await _client().generate_structured("analyze", COMPETITOR_ANALYSIS_SCHEMA)
