"""
Tests for llm_runner/query_runner.py - selection, run plan and execution.

Covers:
- Collection-group selection with de-duplication by query id
- Explicit run plans (times bounds, unknown ids, repeated ids)
- Failure isolation: a failed run is dropped, its siblings are kept
- Queries with zero successful runs are left out
- Concurrency: distinct queries bounded by max_concurrent_queries,
  runs of one query strictly sequential
"""

import pytest
from pydantic import ValidationError

from llm_visibility.llm_runner.mock_client import MockAnswerEngine
from llm_visibility.llm_runner.outcomes import BatchReport, FailureKind
from llm_visibility.llm_runner.query_runner import (
    QueryRunConfig,
    build_run_plan,
    extract_citations,
    fetch_and_run_queries,
    run_query,
    select_queries,
)
from llm_visibility.storage.records import Citation, QueryRecord


def _query(query_id, text="q", company_id="u1"):
    return QueryRecord(id=query_id, path=f"companies/{company_id}/queries/{query_id}", text=text)


class TestQueryRunConfig:
    @pytest.mark.parametrize("times", [1, 6])
    def test_accepts_bounds(self, times):
        assert QueryRunConfig(id="q1", times=times).times == times

    @pytest.mark.parametrize("times", [0, 7, 2.5, "3", True])
    def test_rejects_out_of_range_or_non_integer(self, times):
        with pytest.raises(ValidationError):
            QueryRunConfig(id="q1", times=times)

    def test_rejects_blank_id(self):
        with pytest.raises(ValidationError):
            QueryRunConfig(id=" ", times=1)


class TestExtractCitations:
    def test_keeps_order_and_duplicates(self):
        chunks = [
            {"uri": "https://a.com/1", "title": "a.com"},
            {"uri": "https://b.com", "title": "b.com"},
            {"uri": "https://a.com/1", "title": "a.com"},
        ]
        assert [c.uri for c in extract_citations(chunks)] == [
            "https://a.com/1",
            "https://b.com",
            "https://a.com/1",
        ]

    def test_drops_chunks_missing_uri_or_title(self):
        chunks = [{"uri": "https://a.com"}, {"title": "b"}, {"uri": "", "title": "c"}, {}]
        assert extract_citations(chunks) == []


class TestSelectQueries:
    def test_company_scope_oldest_first(self, company_db, seed_query):
        seed_query("u1", "qb", "second", created_at="2025-11-02T00:00:00.000Z")
        seed_query("u1", "qa", "first", created_at="2025-11-01T00:00:00.000Z")
        seed_query("u2", "qc", "other company")

        assert [q.id for q in select_queries(company_db, "u1")] == ["qa", "qb"]

    def test_collection_group_dedupes_by_id(self, db_path, seed_query):
        seed_query("u2", "q1", "from u2")
        seed_query("u1", "q1", "from u1")
        seed_query(None, "q9", "legacy")

        queries = select_queries(db_path)

        assert [(q.id, q.text) for q in queries] == [("q1", "from u1"), ("q9", "legacy")]


class TestBuildRunPlan:
    def test_defaults_to_every_candidate(self):
        candidates = [_query("q1"), _query("q2")]
        plan = build_run_plan(candidates, None, default_times=6)
        assert [(q.id, times) for q, times in plan] == [("q1", 6), ("q2", 6)]

    def test_explicit_configs_in_config_order(self):
        candidates = [_query("q1"), _query("q2"), _query("q3")]
        configs = [
            QueryRunConfig(id="q3", times=2),
            QueryRunConfig(id="missing", times=4),
            QueryRunConfig(id="q1", times=1),
            QueryRunConfig(id="q3", times=5),
        ]

        plan = build_run_plan(candidates, configs)

        assert [(q.id, times) for q, times in plan] == [("q3", 2), ("q1", 1)]

    def test_empty_config_list_means_default(self):
        plan = build_run_plan([_query("q1")], [], default_times=3)
        assert [(q.id, times) for q, times in plan] == [("q1", 3)]


class TestRunQuery:
    @pytest.mark.asyncio
    async def test_collects_runs_with_citations(self):
        engine = MockAnswerEngine(
            responses={"best wallet": "Saqr Pay."},
            citations=[{"uri": "https://a.com", "title": "a.com"}],
            model_name="gemini-x",
        )

        result = await run_query(engine, _query("q1", "best wallet"), 3)

        assert result.model == "gemini-x"
        assert result.query_doc_path == "companies/u1/queries/q1"
        assert [r.run_index for r in result.runs] == [1, 2, 3]
        assert result.runs[0].raw_answer == "Saqr Pay."
        assert result.runs[0].citations == [Citation(uri="https://a.com", title="a.com")]

    @pytest.mark.asyncio
    async def test_failed_runs_are_dropped_and_reported(self):
        engine = MockAnswerEngine(fail_runs={"best wallet": {2, 4}})
        report = BatchReport()

        result = await run_query(engine, _query("q1", "best wallet"), 5, report)

        assert [r.run_index for r in result.runs] == [1, 3, 5]
        assert [(o.run_index, o.kind) for o in report.failed] == [
            (2, FailureKind.COMPLETION_FAILED),
            (4, FailureKind.COMPLETION_FAILED),
        ]
        assert report.failed[0].error.startswith("LLMProviderError")


class TestFetchAndRunQueries:
    @pytest.mark.asyncio
    async def test_run_counts_follow_plan(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        seed_query("u1", "q2", "best gateway")
        engine = MockAnswerEngine()

        results = await fetch_and_run_queries(
            company_db,
            engine,
            query_configs=[QueryRunConfig(id="q2", times=2), QueryRunConfig(id="q1", times=1)],
        )

        assert [(r.query_id, len(r.runs)) for r in results] == [("q2", 2), ("q1", 1)]
        assert sorted(engine.calls) == ["best gateway", "best gateway", "best wallet"]

    @pytest.mark.asyncio
    async def test_default_times_for_every_query(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        engine = MockAnswerEngine()

        results = await fetch_and_run_queries(company_db, engine, company_id="u1", default_times=6)

        assert len(results[0].runs) == 6

    @pytest.mark.asyncio
    async def test_query_with_no_successful_run_is_omitted(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        seed_query("u1", "q2", "best gateway")
        engine = MockAnswerEngine(fail_runs={"best wallet": {1, 2}})
        report = BatchReport()

        results = await fetch_and_run_queries(
            company_db, engine, company_id="u1", default_times=2, report=report
        )

        assert [r.query_id for r in results] == ["q2"]
        assert len(report.failed) == 2

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, company_db, seed_query):
        for i in range(5):
            seed_query("u1", f"q{i}", f"query {i}")
        engine = MockAnswerEngine(delay_ms=20)

        results = await fetch_and_run_queries(
            company_db, engine, company_id="u1", default_times=2, max_concurrent_queries=2
        )

        assert len(results) == 5
        assert engine.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_runs_of_one_query_are_sequential(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        engine = MockAnswerEngine(delay_ms=5)

        await fetch_and_run_queries(
            company_db, engine, company_id="u1", default_times=4, max_concurrent_queries=10
        )

        assert engine.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_rejects_zero_concurrency(self, company_db):
        with pytest.raises(ValueError, match="max_concurrent_queries"):
            await fetch_and_run_queries(company_db, MockAnswerEngine(), max_concurrent_queries=0)
