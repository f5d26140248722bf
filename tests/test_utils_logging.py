"""
Tests for utils/logging.py - JSON formatting and secret redaction.
"""

import json
import logging

import pytest

from llm_visibility.utils.logging import (
    JSONFormatter,
    SecretRedactingFilter,
    log_with_context,
    setup_logging,
)


def _record(msg, args=None, **extra):
    record = logging.LogRecord("llm_visibility.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestJSONFormatter:
    def test_fields(self):
        entry = json.loads(
            JSONFormatter().format(_record("done %s", ("q1",), context={"runs": 6}, run_id="r1"))
        )

        assert entry["level"] == "INFO"
        assert entry["component"] == "llm_visibility.test"
        assert entry["message"] == "done q1"
        assert entry["context"] == {"runs": 6}
        assert entry["run_id"] == "r1"
        assert entry["timestamp"].endswith("Z")

    def test_non_ascii_kept(self):
        entry = JSONFormatter().format(_record("سبب"))
        assert "سبب" in entry


class TestSecretRedactingFilter:
    def test_url_key_parameter(self):
        record = _record("POST https://x.googleapis.com/v1beta/models/m:generateContent?key=abc123&alt=sse")

        SecretRedactingFilter().filter(record)

        assert "abc123" not in record.msg
        assert "?key=***&alt=sse" in record.msg

    def test_google_key_keeps_last_four(self):
        record = _record("key is %s", ("AIzaSyA1234567890abcdefghijkXYZ9",))

        SecretRedactingFilter().filter(record)

        assert record.msg == "key is AIza...XYZ9"
        assert record.args is None

    def test_context_values(self):
        record = _record("x", context={"url": "https://a?key=secret", "nested": {"t": "Bearer " + "a" * 24}})

        SecretRedactingFilter().filter(record)

        assert record.context["url"] == "https://a?key=***"
        assert "a" * 24 not in record.context["nested"]["t"]


class TestSetupLogging:
    @pytest.mark.parametrize(
        "verbose,quiet,level",
        [(False, False, logging.INFO), (True, False, logging.DEBUG), (True, True, logging.WARNING)],
    )
    def test_levels(self, restore_root_logger, verbose, quiet, level):
        setup_logging(verbose=verbose, quiet_logs=quiet)

        assert restore_root_logger.level == level
        assert len(restore_root_logger.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING


def test_log_with_context(caplog):
    logger = logging.getLogger("llm_visibility.test")
    caplog.set_level(logging.INFO, logger="llm_visibility.test")

    log_with_context(logger, logging.INFO, "Answer written", context={"query_id": "q1"}, run_id="r1")

    record = caplog.records[-1]
    assert record.context == {"query_id": "q1"}
    assert record.run_id == "r1"
