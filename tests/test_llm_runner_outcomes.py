"""
Tests for llm_runner/outcomes.py - per-unit batch outcomes.
"""

from llm_visibility.llm_runner.outcomes import BatchReport, FailureKind, UnitOutcome


def test_empty_report():
    assert BatchReport().summary() == {"succeeded": 0, "failed": 0, "degraded": 0, "by_kind": {}}


def test_summary_counts_kinds_and_degraded():
    report = BatchReport()
    report.record_success("q1", run_index=1, answer_id="a1")
    report.record_success("q1", run_index=2, answer_id="a2", extraction_error="boom")
    report.record_failure("q1", FailureKind.COMPLETION_FAILED, "timeout", run_index=3)
    report.record_failure("q2", FailureKind.INVALID_PATH, "bad path")
    report.record_failure("q3", FailureKind.COMPLETION_FAILED, "timeout", run_index=1)

    assert report.summary() == {
        "succeeded": 2,
        "failed": 3,
        "degraded": 1,
        "by_kind": {"completion_failed": 2, "invalid_path": 1},
    }
    assert [o.answer_id for o in report.degraded] == ["a2"]
    assert [o.query_id for o in report.failures_of(FailureKind.INVALID_PATH)] == ["q2"]


def test_outcome_ok_and_serialization():
    success = UnitOutcome(query_id="q1", run_index=1, answer_id="a1")
    failure = UnitOutcome(
        query_id="q1", run_index=2, kind=FailureKind.WRITE_FAILED, error="disk full"
    )

    assert success.ok
    assert not failure.ok
    assert failure.to_dict()["kind"] == "write_failed"
    assert success.to_dict()["kind"] is None


def test_to_dict_lists_both_sides():
    report = BatchReport()
    report.record_success("q1", run_index=1, answer_id="a1", query_path="companies/u1/queries/q1")
    report.record_failure("q2", FailureKind.WRITE_FAILED, "x", run_index=1)

    data = report.to_dict()

    assert data["succeeded"][0]["query_path"] == "companies/u1/queries/q1"
    assert data["failed"][0]["error"] == "x"
