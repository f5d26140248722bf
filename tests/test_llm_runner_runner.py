"""
Tests for llm_runner/runner.py - the pipeline orchestrator.

Covers:
- Answers written per successful run, with provider tag and citations
- Legacy query paths skipped and reported, not failing the batch
- Degraded extraction still writes the answer with no competitors
- Write failures isolated to the run that failed
- Batch-level failure for invalid options
- Company display name passed to extraction as context
- run_pipeline wiring from RuntimeConfig
"""

import pytest

from llm_visibility.config.schema import (
    RunSettings,
    RuntimeConfig,
    RuntimeModel,
    StorageSettings,
)
from llm_visibility.exceptions import DatabaseQueryError, InvalidDocumentPathError, LLMProviderError
from llm_visibility.llm_runner import runner
from llm_visibility.llm_runner.mock_client import MockAnswerEngine, MockStructuredGenerator
from llm_visibility.llm_runner.outcomes import FailureKind
from llm_visibility.llm_runner.query_runner import QueryRunConfig
from llm_visibility.llm_runner.runner import (
    ProcessResult,
    build_clients,
    coerce_query_configs,
    parse_query_path,
    process_queries,
    run_pipeline,
)
from llm_visibility.storage.db import open_connection
from llm_visibility.storage.repository import list_answers

SAQR_ANALYSIS = {
    "competitors": [
        {"id": "Saqr Pay", "position": 1, "sentiment": 80, "reasoning": "يذكر أولاً"},
        {"id": "STC Pay", "position": 2, "sentiment": 60, "reasoning": "بديل"},
    ]
}


def _answers(db_path, company_id="u1"):
    with open_connection(db_path) as conn:
        return list_answers(conn, company_id)


class TestParseQueryPath:
    def test_company_query_path(self):
        assert parse_query_path("companies/u1/queries/q1") == ("u1", "q1")

    @pytest.mark.parametrize(
        "path",
        ["queries/q1", "companies/u1/answers/a1", "companies//queries/q1", "a/b/c/d/e"],
    )
    def test_rejects_other_shapes(self, path):
        with pytest.raises(InvalidDocumentPathError, match="Invalid path structure"):
            parse_query_path(path)


class TestCoerceQueryConfigs:
    def test_none_and_empty_mean_default(self):
        assert coerce_query_configs(None) is None
        assert coerce_query_configs([]) is None

    def test_dicts_are_validated(self):
        configs = coerce_query_configs([{"id": "q1", "times": 2}, QueryRunConfig(id="q2", times=1)])
        assert [(c.id, c.times) for c in configs] == [("q1", 2), ("q2", 1)]

    @pytest.mark.parametrize(
        "entry", [{"id": "q1", "times": 7}, {"id": "q1", "times": "2"}, {"times": 1}]
    )
    def test_invalid_entries_raise(self, entry):
        with pytest.raises(ValueError, match="Invalid query config"):
            coerce_query_configs([entry])


class TestProcessQueries:
    @pytest.mark.asyncio
    async def test_writes_one_answer_per_successful_run(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        engine = MockAnswerEngine(
            responses={"best wallet": "Saqr Pay first, then STC Pay."},
            citations=[{"uri": "https://a.com/x", "title": "a.com"}],
            fail_runs={"best wallet": {2}},
            model_name="gemini-3-flash-preview",
        )
        generator = MockStructuredGenerator(default_payload=SAQR_ANALYSIS)

        result = await process_queries(
            company_db, engine, generator, query_configs=[{"id": "q1", "times": 3}]
        )

        assert result.success
        assert result.to_dict() == {"success": True, "processed": 1}
        answers = _answers(company_db)
        assert len(answers) == 2
        answer = answers[0]
        assert answer.query_id == "q1"
        assert answer.query_text == "best wallet"
        assert answer.ai_provider.id == "gemini"
        assert answer.ai_provider.model == "gemini-3-flash-preview"
        assert [c.uri for c in answer.citations] == ["https://a.com/x"]
        assert [(c.id, c.position) for c in answer.competitors] == [("saqrpay", 1), ("stcpay", 2)]
        assert result.report.summary()["by_kind"] == {"completion_failed": 1}

    @pytest.mark.asyncio
    async def test_company_name_is_prompt_context(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        generator = MockStructuredGenerator()

        await process_queries(
            company_db,
            MockAnswerEngine(),
            generator,
            query_configs=[{"id": "q1", "times": 1}],
            reasoning_language="English",
        )

        assert 'for the company "Saqr Pay"' in generator.prompts[0]
        assert "brief reasoning in English" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_missing_company_uses_placeholder_name(self, db_path, seed_query):
        seed_query("ghost", "q1", "best wallet")
        generator = MockStructuredGenerator()

        result = await process_queries(db_path, MockAnswerEngine(), generator, default_times=1)

        assert result.success
        assert 'for the company "Unknown Company"' in generator.prompts[0]
        assert len(_answers(db_path, "ghost")) == 1

    @pytest.mark.asyncio
    async def test_legacy_query_path_is_skipped(self, company_db, seed_query):
        seed_query(None, "legacy", "old query")
        seed_query("u1", "q1", "best wallet")

        result = await process_queries(
            company_db, MockAnswerEngine(), MockStructuredGenerator(), default_times=1
        )

        assert result.success
        assert result.processed == 2
        skipped = result.report.failures_of(FailureKind.INVALID_PATH)
        assert [(o.query_id, o.query_path) for o in skipped] == [("legacy", "queries/legacy")]
        assert len(_answers(company_db)) == 1

    @pytest.mark.asyncio
    async def test_degraded_extraction_still_writes_answer(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        generator = MockStructuredGenerator(error=LLMProviderError("quota"))

        result = await process_queries(
            company_db, MockAnswerEngine(), generator, query_configs=[{"id": "q1", "times": 2}]
        )

        answers = _answers(company_db)
        assert len(answers) == 2
        assert all(a.competitors == [] for a in answers)
        assert len(result.report.degraded) == 2
        assert result.report.degraded[0].extraction_error == "LLMProviderError: quota"

    @pytest.mark.asyncio
    async def test_write_failure_only_drops_that_run(self, company_db, seed_query, monkeypatch):
        seed_query("u1", "q1", "best wallet")
        real_insert = runner.insert_answer
        calls = {"n": 0}

        def flaky_insert(conn, company_id, answer):
            calls["n"] += 1
            if calls["n"] == 2:
                raise DatabaseQueryError("disk full")
            return real_insert(conn, company_id, answer)

        monkeypatch.setattr(runner, "insert_answer", flaky_insert)

        result = await process_queries(
            company_db,
            MockAnswerEngine(),
            MockStructuredGenerator(),
            query_configs=[{"id": "q1", "times": 3}],
        )

        assert result.success
        assert len(_answers(company_db)) == 2
        failures = result.report.failures_of(FailureKind.WRITE_FAILED)
        assert [(o.run_index, o.error) for o in failures] == [
            (2, "DatabaseQueryError: disk full")
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_run_is_success(self, company_db):
        result = await process_queries(company_db, MockAnswerEngine(), MockStructuredGenerator())
        assert result.to_dict() == {"success": True, "processed": 0}

    @pytest.mark.asyncio
    async def test_invalid_options_fail_the_batch(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        engine = MockAnswerEngine()

        result = await process_queries(
            company_db, engine, MockStructuredGenerator(), query_configs=[{"id": "q1", "times": 9}]
        )

        assert not result.success
        assert "Invalid query config" in result.to_dict()["error"]
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_zero_concurrency_fails_the_batch(self, company_db):
        result = await process_queries(
            company_db, MockAnswerEngine(), MockStructuredGenerator(), max_concurrent_queries=0
        )
        assert result.to_dict() == {
            "success": False,
            "error": "max_concurrent_queries must be >= 1, got: 0",
        }


def _runtime_config(db_path, max_attempts=1):
    model = RuntimeModel(provider="google", model_name="gemini-x", api_key="AIza-test")
    return RuntimeConfig(
        storage=StorageSettings(sqlite_db_path=db_path),
        answer_engine=model.model_copy(update={"tools": [{"google_search": {}}]}),
        extraction=model.model_copy(update={"model_name": "gemini-lite"}),
        reasoning_language="Arabic",
        run_settings=RunSettings(
            default_times=2, max_concurrent_queries=3, request_max_attempts=max_attempts
        ),
    )


class TestRunPipeline:
    def test_build_clients_attempts(self, db_path):
        engine, generator = build_clients(_runtime_config(db_path, max_attempts=3))

        assert engine.max_attempts == 3
        assert engine.tools == [{"google_search": {}}]
        assert generator.max_attempts == 1
        assert generator.model_name == "gemini-lite"

    @pytest.mark.asyncio
    async def test_uses_supplied_clients_and_settings(self, company_db, seed_query):
        seed_query("u1", "q1", "best wallet")
        engine = MockAnswerEngine()

        result = await run_pipeline(
            _runtime_config(company_db),
            company_id="u1",
            engine=engine,
            generator=MockStructuredGenerator(),
        )

        assert isinstance(result, ProcessResult)
        assert result.success
        assert len(engine.calls) == 2
        assert result.run_id

    @pytest.mark.asyncio
    async def test_initializes_a_new_store(self, tmp_path):
        db_path = str(tmp_path / "fresh" / "visibility.db")

        result = await run_pipeline(
            _runtime_config(db_path),
            engine=MockAnswerEngine(),
            generator=MockStructuredGenerator(),
        )

        assert result.to_dict() == {"success": True, "processed": 0}
