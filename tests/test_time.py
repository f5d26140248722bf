"""
Tests for utils.time module - UTC timestamp utilities.

Covers:
- utc_now() is timezone-aware
- utc_timestamp() / run_id_from_timestamp() second-precision formats
- iso_timestamp() millisecond format used for document createdAt fields
- parse_timestamp() accepting both precisions and rejecting non-UTC input
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from freezegun import freeze_time

from llm_visibility.utils.time import (
    iso_timestamp,
    parse_timestamp,
    run_id_from_timestamp,
    utc_now,
    utc_timestamp,
)


class TestUtcNow:
    def test_has_utc_timezone(self):
        assert utc_now().tzinfo == UTC

    @freeze_time("2025-11-02 08:30:45")
    def test_frozen_time(self):
        assert utc_now() == datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)


class TestUtcTimestamp:
    @freeze_time("2025-11-02 08:30:45")
    def test_format(self):
        assert utc_timestamp() == "2025-11-02T08:30:45Z"


class TestIsoTimestamp:
    """iso_timestamp() carries milliseconds so same-second writes still sort."""

    @freeze_time("2025-11-02 08:30:45.123456")
    def test_millisecond_format(self):
        assert iso_timestamp() == "2025-11-02T08:30:45.123Z"

    @freeze_time("2025-11-02 08:30:45")
    def test_whole_second_has_zero_millis(self):
        assert iso_timestamp() == "2025-11-02T08:30:45.000Z"

    def test_converts_other_timezones_to_utc(self):
        riyadh = timezone(timedelta(hours=3))
        dt = datetime(2025, 11, 2, 11, 30, 45, 7000, tzinfo=riyadh)
        assert iso_timestamp(dt) == "2025-11-02T08:30:45.007Z"

    def test_raises_on_naive_datetime(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            iso_timestamp(datetime(2025, 11, 2, 8, 30, 45))

    def test_lexicographic_order_is_chronological(self):
        base = datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)
        stamps = [iso_timestamp(base + timedelta(milliseconds=ms)) for ms in (0, 5, 40, 999, 1000)]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)


class TestRunIdFromTimestamp:
    @freeze_time("2025-11-02 08:30:45")
    def test_format_with_hyphens_instead_of_colons(self):
        assert run_id_from_timestamp() == "2025-11-02T08-30-45Z"

    def test_accepts_timezone_aware_datetime(self):
        dt = datetime(2025, 12, 31, 23, 59, 59, tzinfo=UTC)
        assert run_id_from_timestamp(dt) == "2025-12-31T23-59-59Z"

    def test_raises_on_naive_datetime(self):
        with pytest.raises(ValueError, match="naive datetime"):
            run_id_from_timestamp(datetime(2025, 11, 2, 8, 30, 45))

    def test_is_filesystem_safe(self):
        run_id = run_id_from_timestamp()
        for char in ':/\\*?"<>|':
            assert char not in run_id


class TestParseTimestamp:
    def test_parses_second_precision(self):
        result = parse_timestamp("2025-11-02T08:30:45Z")
        assert result == datetime(2025, 11, 2, 8, 30, 45, tzinfo=UTC)

    def test_parses_millisecond_precision(self):
        result = parse_timestamp("2025-11-02T08:30:45.250Z")
        assert result.microsecond == 250000
        assert result.tzinfo == UTC

    @freeze_time("2025-11-02 08:30:45.5")
    def test_roundtrip_with_iso_timestamp(self):
        assert parse_timestamp(iso_timestamp()) == utc_now()

    @pytest.mark.parametrize("value", ["2025-11-02T08:30:45", "", "   "])
    def test_raises_on_missing_z_suffix(self, value):
        with pytest.raises(ValueError, match="must end with 'Z'"):
            parse_timestamp(value)

    @pytest.mark.parametrize("value", ["invalidZ", "2025-13-45T08:30:45Z"])
    def test_raises_on_invalid_format(self, value):
        with pytest.raises(ValueError, match="Invalid ISO 8601 timestamp format"):
            parse_timestamp(value)
