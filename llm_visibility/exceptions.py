"""
Custom exceptions for LLM Visibility.

All exceptions inherit from LLMVisibilityError so callers can catch every
application error with one clause.

Exception Hierarchy:
    LLMVisibilityError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   ├── DatabaseMigrationError
    │   ├── DatabaseQueryError
    │   └── DocumentNotFoundError
    ├── InvalidDocumentPathError
    ├── LLMProviderError
    │   ├── LLMAuthenticationError
    │   ├── LLMRateLimitError
    │   ├── LLMTimeoutError
    │   └── LLMResponseError
    ├── ExtractionError
    │   └── SchemaConformanceError
    └── OnboardingError

Usage:
    from llm_visibility.exceptions import ConfigurationError

    try:
        config = load_config(path)
    except ConfigFileNotFoundError as e:
        logger.error(f"Config file not found: {e}")
        sys.exit(1)
"""


class LLMVisibilityError(Exception):
    """Base exception for all LLM Visibility errors."""

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(LLMVisibilityError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Configuration file does not exist at the specified path."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (schema validation failed).

    Example:
        raise ConfigValidationError("run_settings.default_times: must be <= 6")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    Required API key environment variable is not set.

    Example:
        raise APIKeyMissingError("GEMINI_API_KEY environment variable not set")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(LLMVisibilityError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """Database initialization failed (file not writable, disk full, ...)."""

    pass


class DatabaseMigrationError(DatabaseError):
    """
    Schema migration failed.

    Example:
        raise DatabaseMigrationError("Failed to migrate from v1 to v2: ...")
    """

    pass


class DatabaseQueryError(DatabaseError):
    """A read or write against the document store failed."""

    pass


class DocumentNotFoundError(DatabaseError):
    """
    A document that must exist is missing.

    Example:
        raise DocumentNotFoundError("companies/u1/queries/q9")
    """

    pass


# ============================================================================
# Document Path Errors
# ============================================================================


class InvalidDocumentPathError(LLMVisibilityError):
    """
    A document path does not have the expected shape.

    Raised for query paths that are not companies/{companyId}/queries/{queryId},
    which is how legacy top-level query documents are detected and skipped.
    """

    pass


# ============================================================================
# LLM Provider Errors
# ============================================================================


class LLMProviderError(LLMVisibilityError):
    """Base class for errors talking to the Gemini API."""

    pass


class LLMAuthenticationError(LLMProviderError):
    """API key rejected (401/403)."""

    pass


class LLMRateLimitError(LLMProviderError):
    """Provider returned 429 after all allowed attempts."""

    pass


class LLMTimeoutError(LLMProviderError):
    """Request exceeded the HTTP timeout."""

    pass


class LLMResponseError(LLMProviderError):
    """
    Provider answered but the payload is unusable.

    Covers non-2xx statuses without a more specific class, missing
    candidates, blocked finish reasons, and structured output that is not
    valid JSON.
    """

    pass


# ============================================================================
# Extraction Errors
# ============================================================================


class ExtractionError(LLMVisibilityError):
    """
    Base class for competitor extraction failures.

    The extraction service never lets these escape to the orchestrator; it
    degrades to an empty competitor list and records the message instead.
    """

    pass


class SchemaConformanceError(ExtractionError):
    """
    Structured output did not match the competitor analysis schema.

    Example:
        raise SchemaConformanceError("competitors.0.sentiment: must be <= 100")
    """

    pass


# ============================================================================
# Onboarding Errors
# ============================================================================


class OnboardingError(LLMVisibilityError):
    """
    Company registration input is invalid.

    Example:
        raise OnboardingError("slug must match ^[a-z0-9]+$")
    """

    pass
