"""
Configuration constants for LLM Visibility.

Global constants shared across modules, kept here to avoid import cycles
between config, storage and the pipeline.
"""

# Repeat counts: every query is asked this many times per batch unless the
# caller supplies explicit per-query counts, which are bounded to 1..MAX.
DEFAULT_RUN_TIMES = 6
MIN_RUN_TIMES = 1
MAX_RUN_TIMES = 6

# Distinct queries processed at once. Runs inside one query stay sequential.
DEFAULT_MAX_CONCURRENT_QUERIES = 4

# Models used by the dashboard when the config does not override them
DEFAULT_ANSWER_MODEL = "gemini-3-flash-preview"
DEFAULT_EXTRACTION_MODEL = "gemini-2.5-flash-lite"
DEFAULT_API_KEY_ENV = "GEMINI_API_KEY"

# Stored on every answer as aiProvider.id
PROVIDER_TAG = "gemini"

# Extraction prompt asks for the free-text reasoning in this language
DEFAULT_REASONING_LANGUAGE = "Arabic"

# Prompt context when the owning company document is missing
UNKNOWN_COMPANY_NAME = "Unknown Company"

# Onboarding rules for company documents
COMPANY_NAME_MIN_LENGTH = 3
COMPANY_NAME_MAX_LENGTH = 50
SLUG_MIN_LENGTH = 3
SLUG_PATTERN = r"^[a-z0-9]+$"

# ~25k tokens at 4 chars/token; guards against runaway prompt sizes
MAX_PROMPT_LENGTH = 100_000
