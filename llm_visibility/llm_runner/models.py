"""
LLM client abstraction and factory for LLM Visibility.

The pipeline talks to the model through two narrow protocols:

- AnswerEngine: answers a monitored query, grounded in web search, and
  reports the sources it used
- StructuredGenerator: returns JSON conforming to a response schema (used
  for competitor analysis)

GeminiClient implements both. MockAnswerEngine / MockStructuredGenerator in
llm_runner.mock_client implement them for tests and demos.

Example:
    >>> from llm_visibility.llm_runner.models import build_client
    >>> engine = build_client("google", "gemini-3-flash-preview", api_key,
    ...     tools=[{"google_search": {}}])
    >>> response = await engine.generate_answer("Best banks in Riyadh?")
    >>> response.grounding_chunks[0]
    {'uri': 'https://...', 'title': 'example.com'}
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from .retry_config import MAX_ATTEMPTS


@dataclass
class LLMResponse:
    """
    Structured response from a grounded completion.

    Attributes:
        answer_text: The model's complete response text
        tokens_used: Total tokens consumed (prompt + completion)
        provider: Provider name (e.g., "google")
        model_name: Specific model identifier
        timestamp_utc: ISO 8601 timestamp with 'Z' suffix when response was received
        prompt_tokens: Tokens in the prompt/input
        completion_tokens: Tokens in the completion/output
        grounding_chunks: Raw web sources from groundingMetadata, in order.
            Each is the chunk's "web" object and may lack uri or title.
        web_search_queries: Search queries the model issued
    """

    answer_text: str
    tokens_used: int
    provider: str
    model_name: str
    timestamp_utc: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    grounding_chunks: list[dict[str, Any]] = field(default_factory=list)
    web_search_queries: list[str] = field(default_factory=list)


class AnswerEngine(Protocol):
    """
    Produces a grounded answer for a query.

    Implementations raise on any failure (LLMProviderError subclasses for
    the Gemini client); callers decide whether a failure is fatal.
    """

    model_name: str

    async def generate_answer(self, prompt: str) -> LLMResponse: ...


class StructuredGenerator(Protocol):
    """
    Produces JSON constrained by a response schema.

    Returns the decoded JSON value. Raises if the provider fails or the
    output is not valid JSON; schema validation of the value is the
    caller's job.
    """

    model_name: str

    async def generate_structured(
        self, prompt: str, response_schema: dict[str, Any]
    ) -> Any: ...


def build_client(
    provider: str,
    model_name: str,
    api_key: str,
    system_prompt: str | None = None,
    tools: list[dict] | None = None,
    max_attempts: int = MAX_ATTEMPTS,
):
    """
    Factory for provider clients.

    Only "google" is supported; the returned client satisfies both
    AnswerEngine and StructuredGenerator.

    Raises:
        ValueError: If provider is not supported

    Security:
        - NEVER log the api_key parameter in any form
    """
    if provider == "google":
        # Import here to keep imports lazy
        from llm_visibility.llm_runner.gemini_client import GeminiClient

        return GeminiClient(
            model_name=model_name,
            api_key=api_key,
            system_prompt=system_prompt,
            tools=tools,
            max_attempts=max_attempts,
        )

    raise ValueError(f"Unsupported provider: {provider!r}. Supported providers: google")
