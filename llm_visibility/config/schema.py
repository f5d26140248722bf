"""
Configuration schema models for LLM Visibility.

Pydantic v2 models for the visibility.config.yaml file. WatcherConfig mirrors
the YAML; RuntimeConfig is what the loader hands to the pipeline once API
keys have been resolved from the environment.

Models:
    StorageSettings: SQLite document store and report output locations
    ModelConfig: Gemini model selection (model_name, env_api_key, tools)
    AnswerEngineConfig: Grounded answer model (Google Search tool on by default)
    ExtractionConfig: Structured-output model used for competitor analysis
    RunSettings: Repeat counts, concurrency and retry limits
    WatcherConfig: Root configuration model (validates entire YAML)
    RuntimeModel: Resolved model configuration with API key
    RuntimeConfig: Runtime configuration with resolved API keys
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    DEFAULT_ANSWER_MODEL,
    DEFAULT_API_KEY_ENV,
    DEFAULT_EXTRACTION_MODEL,
    DEFAULT_MAX_CONCURRENT_QUERIES,
    DEFAULT_REASONING_LANGUAGE,
    DEFAULT_RUN_TIMES,
    MAX_RUN_TIMES,
    MIN_RUN_TIMES,
)


class StorageSettings(BaseModel):
    """
    Where the document store and generated reports live.

    Attributes:
        sqlite_db_path: Path to the SQLite database holding companies,
            queries and answers
        output_dir: Directory for HTML reports and exports
    """

    sqlite_db_path: str = "./output/visibility.db"
    output_dir: str = "./output"

    @field_validator("sqlite_db_path", "output_dir")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate paths are non-empty."""
        if not v or v.isspace():
            raise ValueError("path cannot be empty")
        return v


class ModelConfig(BaseModel):
    """
    Gemini model configuration.

    Attributes:
        provider: Only "google" is supported
        model_name: Gemini model identifier (e.g., "gemini-2.5-flash-lite")
        env_api_key: Environment variable name containing the API key
        system_prompt: Optional system instruction text
        tools: Tool declarations passed through to generateContent as-is
    """

    provider: Literal["google"] = "google"
    model_name: str
    env_api_key: str = DEFAULT_API_KEY_ENV
    system_prompt: str | None = None
    tools: list[dict] | None = None

    @field_validator("model_name")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        """Validate model_name is non-empty."""
        if not v or v.isspace():
            raise ValueError("model_name cannot be empty")
        return v

    @field_validator("env_api_key")
    @classmethod
    def validate_env_api_key(cls, v: str) -> str:
        """Validate env_api_key is non-empty."""
        if not v or v.isspace():
            raise ValueError("env_api_key cannot be empty")
        return v


class AnswerEngineConfig(ModelConfig):
    """Model that answers the monitored queries, grounded with Google Search."""

    model_name: str = DEFAULT_ANSWER_MODEL
    tools: list[dict] | None = Field(default_factory=lambda: [{"google_search": {}}])


class ExtractionConfig(ModelConfig):
    """
    Model that turns an answer into a competitor list.

    Attributes:
        reasoning_language: Language requested for each competitor's reasoning
    """

    model_name: str = DEFAULT_EXTRACTION_MODEL
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE

    @field_validator("reasoning_language")
    @classmethod
    def validate_reasoning_language(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("reasoning_language cannot be empty")
        return v.strip()

    @field_validator("tools")
    @classmethod
    def validate_no_tools(cls, v: list[dict] | None) -> list[dict] | None:
        """Structured output cannot be combined with search grounding."""
        if v:
            raise ValueError("extraction model does not accept tools")
        return v


class RunSettings(BaseModel):
    """
    Batch execution settings.

    Attributes:
        default_times: Runs per query when no explicit counts are given
        max_times: Upper bound accepted for explicit per-query counts
        max_concurrent_queries: Distinct queries processed at once (1-50).
            Runs of a single query are always sequential.
        request_max_attempts: HTTP attempts per answer request. 1 means a
            failed completion is dropped without retry.
    """

    default_times: int = DEFAULT_RUN_TIMES
    max_times: int = MAX_RUN_TIMES
    max_concurrent_queries: int = DEFAULT_MAX_CONCURRENT_QUERIES
    request_max_attempts: int = 1

    @field_validator("default_times", "max_times")
    @classmethod
    def validate_times(cls, v: int) -> int:
        if not MIN_RUN_TIMES <= v <= MAX_RUN_TIMES:
            raise ValueError(
                f"must be between {MIN_RUN_TIMES} and {MAX_RUN_TIMES}, got: {v}"
            )
        return v

    @field_validator("max_concurrent_queries")
    @classmethod
    def validate_max_concurrent_queries(cls, v: int) -> int:
        """
        Keep concurrency conservative.

        Gemini enforces per-key request quotas; each in-flight query issues
        one request at a time, so this is also the in-flight request cap.
        """
        if not 1 <= v <= 50:
            raise ValueError(
                f"max_concurrent_queries must be between 1 and 50, got: {v}"
            )
        return v

    @field_validator("request_max_attempts")
    @classmethod
    def validate_request_max_attempts(cls, v: int) -> int:
        if not 1 <= v <= 5:
            raise ValueError(f"request_max_attempts must be between 1 and 5, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_default_within_max(self) -> "RunSettings":
        if self.default_times > self.max_times:
            raise ValueError(
                f"default_times ({self.default_times}) cannot exceed "
                f"max_times ({self.max_times})"
            )
        return self


class WatcherConfig(BaseModel):
    """
    Root configuration model for visibility.config.yaml.

    Every section has defaults so a config only needs to name what differs.

    Example YAML:
        storage:
          sqlite_db_path: "./output/visibility.db"
        answer_engine:
          model_name: "gemini-3-flash-preview"
        extraction:
          model_name: "gemini-2.5-flash-lite"
          reasoning_language: "Arabic"
        run_settings:
          default_times: 6
          max_concurrent_queries: 4
    """

    storage: StorageSettings = Field(default_factory=StorageSettings)
    answer_engine: AnswerEngineConfig = Field(default_factory=AnswerEngineConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    run_settings: RunSettings = Field(default_factory=RunSettings)


class RuntimeModel(BaseModel):
    """
    Resolved model configuration with API key.

    Attributes:
        provider: LLM provider name
        model_name: Specific model identifier
        api_key: Resolved API key from environment (NEVER log this)
        system_prompt: Optional system instruction
        tools: Tool declarations for generateContent
    """

    provider: str
    model_name: str
    api_key: str
    system_prompt: str | None = None
    tools: list[dict] | None = None

    @field_validator("model_name")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("model_name cannot be empty")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key is non-empty."""
        if not v or v.isspace():
            raise ValueError("API key cannot be empty")
        return v


class RuntimeConfig(BaseModel):
    """
    Runtime configuration with resolved API keys.

    Created by config.loader after validating YAML and resolving environment
    variables. This is the contract passed to the pipeline.
    """

    storage: StorageSettings
    answer_engine: RuntimeModel
    extraction: RuntimeModel
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE
    run_settings: RunSettings
