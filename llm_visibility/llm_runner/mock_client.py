"""
Mock clients for testing and demos.

MockAnswerEngine and MockStructuredGenerator implement the AnswerEngine and
StructuredGenerator protocols without network access, so the whole pipeline
can be exercised deterministically.

Example:
    >>> engine = MockAnswerEngine(
    ...     responses={"best banks": "Saqr Bank leads, then Acme Bank."},
    ...     citations=[{"uri": "https://a.com/x", "title": "a.com"}],
    ...     fail_runs={"best banks": {2}},
    ... )
    >>> (await engine.generate_answer("best banks")).answer_text
    'Saqr Bank leads, then Acme Bank.'
    >>> await engine.generate_answer("best banks")
    Traceback (most recent call last):
    ...
    LLMProviderError: Scripted failure for call 2
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from llm_visibility.exceptions import LLMProviderError
from llm_visibility.llm_runner.models import LLMResponse
from llm_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MockAnswerEngine:
    """
    Deterministic answer engine.

    Attributes:
        responses: Prompt -> answer text. Unknown prompts get default_response.
        default_response: Answer for prompts not in responses
        citations: Grounding chunks returned with every answer
        fail_runs: Prompt -> 1-based call numbers (per prompt) that raise
            LLMProviderError instead of answering
        delay_ms: Simulated latency per call
        model_name: Model identifier reported in responses
        calls: Prompts received, in call order
        max_in_flight: Highest number of overlapping calls observed
    """

    responses: dict[str, str] = field(default_factory=dict)
    default_response: str = "Mock answer."
    citations: list[dict[str, Any]] = field(default_factory=list)
    fail_runs: dict[str, set[int]] = field(default_factory=dict)
    delay_ms: int = 0
    model_name: str = "mock-model"
    provider: str = "mock"
    calls: list[str] = field(default_factory=list)
    max_in_flight: int = 0
    _in_flight: int = field(default=0, init=False, repr=False)
    _per_prompt: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    async def generate_answer(self, prompt: str) -> LLMResponse:
        self.calls.append(prompt)
        call_number = self._per_prompt.get(prompt, 0) + 1
        self._per_prompt[prompt] = call_number

        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.delay_ms:
                await asyncio.sleep(self.delay_ms / 1000)

            if call_number in self.fail_runs.get(prompt, set()):
                raise LLMProviderError(f"Scripted failure for call {call_number}")

            answer_text = self.responses.get(prompt, self.default_response)
        finally:
            self._in_flight -= 1

        logger.debug(f"Mock answer for prompt call {call_number}")
        return LLMResponse(
            answer_text=answer_text,
            tokens_used=100,
            provider=self.provider,
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
            grounding_chunks=copy.deepcopy(self.citations),
        )


@dataclass
class MockStructuredGenerator:
    """
    Deterministic structured-output generator.

    Attributes:
        responses: Substring -> JSON payload. The first key found in the
            prompt selects the payload (prompts embed the answer text, so keys
            are usually distinctive phrases from the answer).
        default_payload: Payload when no key matches
        error: If set, every call raises this exception
        model_name: Model identifier
        prompts: Prompts received, in call order
    """

    responses: dict[str, Any] = field(default_factory=dict)
    default_payload: Any = field(default_factory=lambda: {"competitors": []})
    error: Exception | None = None
    model_name: str = "mock-extractor"
    prompts: list[str] = field(default_factory=list)

    async def generate_structured(
        self, prompt: str, response_schema: dict[str, Any]
    ) -> Any:
        self.prompts.append(prompt)

        if self.error is not None:
            raise self.error

        for needle, payload in self.responses.items():
            if needle in prompt:
                return copy.deepcopy(payload)
        return copy.deepcopy(self.default_payload)
