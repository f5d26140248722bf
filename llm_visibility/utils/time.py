"""
UTC timestamp utilities for LLM Visibility.

All timestamps are UTC with an explicit 'Z' marker. Two string formats
are used across the package:

- utc_timestamp(): second precision, used for logs and run ids
- iso_timestamp(): millisecond precision, used for document createdAt
  fields so answers written within the same second still sort correctly

Examples:
    >>> from llm_visibility.utils.time import utc_timestamp, iso_timestamp
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
    >>> iso_timestamp()
    '2025-11-02T08:30:45.123Z'
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix (second precision).

    Format: YYYY-MM-DDTHH:MM:SSZ
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def iso_timestamp(dt: datetime | None = None) -> str:
    """
    Return ISO 8601 timestamp with milliseconds and 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SS.mmmZ. Lexicographic order of these strings
    equals chronological order, which the answer store relies on.

    Args:
        dt: Optional timezone-aware datetime. If None, uses utc_now().

    Raises:
        ValueError: If dt is naive
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )

    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def run_id_from_timestamp(dt: datetime | None = None) -> str:
    """
    Generate a filesystem-safe run id from a UTC timestamp.

    Format: YYYY-MM-DDTHH-MM-SSZ (hyphens instead of colons). Used to tag
    pipeline log lines and to name report output directories.

    Args:
        dt: Optional datetime to convert. If None, uses utc_now().
            Must be timezone-aware if provided.

    Raises:
        ValueError: If dt is provided but is naive (missing timezone)

    Examples:
        >>> from datetime import datetime, timezone
        >>> run_id_from_timestamp(datetime(2025, 11, 2, 8, 30, 45, tzinfo=timezone.utc))
        '2025-11-02T08-30-45Z'
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )

    return dt.strftime("%Y-%m-%dT%H-%M-%SZ")


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse an ISO 8601 'Z' timestamp (with or without fractional seconds).

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format

    Examples:
        >>> parse_timestamp('2025-11-02T08:30:45Z').year
        2025
        >>> parse_timestamp('2025-11-02T08:30:45.250Z').microsecond
        250000
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e
