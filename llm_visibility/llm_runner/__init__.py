"""
LLM runner package for LLM Visibility.

Provides the model-facing protocols and clients:
- AnswerEngine / StructuredGenerator protocols
- GeminiClient (via build_client)
- Mock clients for tests and demos

The query runner and pipeline orchestrator live in
llm_runner.query_runner and llm_runner.runner.
"""

from .models import AnswerEngine, LLMResponse, StructuredGenerator, build_client

__all__ = [
    "AnswerEngine",
    "LLMResponse",
    "StructuredGenerator",
    "build_client",
]
