"""
Structured JSON logging for LLM Visibility.

Every log line goes to stderr as one JSON object with a UTC timestamp, level,
component (logger name), message and optional structured context. stdout is
left for user-facing CLI output.

Gemini API keys travel in the request URL (?key=...), so httpx error messages
can contain them. SecretRedactingFilter scrubs those before anything is
written.

Examples:
    >>> from llm_visibility.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("llm_runner.query_runner")
    >>> logger.info("Query finished", extra={"context": {"runs": 6}})
"""

import json
import logging
import re
import sys
from typing import Any

from llm_visibility.utils.time import utc_timestamp

# Third-party loggers that are chatty at INFO (httpx logs every request URL)
NOISY_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """
    Formatter that renders log records as JSON.

    Fields: timestamp, level, component, message, plus context and run_id when
    passed through `extra`, and exception when exc_info is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts API keys from messages, args and context.

    Handles:
    - Google API keys (AIza...)
    - key=... query parameters in URLs
    - Bearer tokens
    - Generic long opaque tokens

    Only the last 4 characters survive: "AIzaSyA...xyz9" -> "AIza...xyz9".
    """

    SECRET_PATTERNS = [
        (re.compile(r"([?&]key=)[^&\s'\"]+"), None),
        (re.compile(r"\bAIza[0-9A-Za-z_-]{20,}"), "AIza...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
        (re.compile(r"\b[a-zA-Z0-9_-]{32,}\b"), "***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        # Render args first so redaction sees the final message
        if record.args:
            try:
                record.msg = record.getMessage()
                record.args = None
            except (TypeError, ValueError):
                record.msg = str(record.msg)

        record.msg = self._redact_secrets(str(record.msg))

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:
            if template is None:
                text = pattern.sub(r"\1***", text)
                continue

            def redact_match(match: re.Match, template: str = template) -> str:
                return template.format(last4=match.group(0)[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        verbose: DEBUG level when True, INFO otherwise.
        quiet_logs: Only WARNING and above reach stderr. Used by the CLI in
            JSON/quiet output modes so log lines don't drown the result.
            Takes precedence over verbose.
    """
    if quiet_logs:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(component: str) -> logging.Logger:
    """Return the logger for a component name (e.g. "storage.repository")."""
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional run_id.

    Equivalent to logger.log(level, message, extra={'context': ..., 'run_id': ...}).

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Answer written",
        ...     context={"query_id": "q1", "run_index": 2},
        ...     run_id="2025-11-02T08-30-00Z",
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)
