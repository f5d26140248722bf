"""
Pipeline orchestrator for LLM Visibility.

process_queries() is the batch entry point:

    1. validate options and run the queries (query_runner)
    2. for each query result, check its storage path is
       companies/{companyId}/queries/{queryId}; skip it otherwise
    3. look up the company display name once per query (prompt context)
    4. for each run, sequentially: analyse the answer, then write one
       immutable Answer document in its own transaction

Queries are handled concurrently, at most max_concurrent_queries at once.
Every failure below the batch level is caught, logged and recorded in the
BatchReport; the batch only fails as a whole when something escapes those
guards (invalid options, unreadable store, ...).

Example:
    >>> result = await process_queries(db_path, engine, generator, company_id="u1")
    >>> result.to_dict()
    {'success': True, 'processed': 3}
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from ..config.constants import (
    DEFAULT_MAX_CONCURRENT_QUERIES,
    DEFAULT_REASONING_LANGUAGE,
    DEFAULT_RUN_TIMES,
    PROVIDER_TAG,
    UNKNOWN_COMPANY_NAME,
)
from ..config.schema import RuntimeConfig
from ..exceptions import InvalidDocumentPathError
from ..extractor.competitor_extractor import analyze_answer
from ..storage.db import init_db_if_needed, open_connection
from ..storage.records import AIProvider, AnswerRecord
from ..storage.repository import get_company_name, insert_answer
from ..utils.logging import log_with_context
from ..utils.time import iso_timestamp, run_id_from_timestamp
from .models import AnswerEngine, StructuredGenerator, build_client
from .outcomes import BatchReport, FailureKind
from .query_runner import QueryRunConfig, QueryRunResult, fetch_and_run_queries

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """
    Batch outcome.

    Attributes:
        success: False only when the batch itself failed
        processed: Number of query results handled (including skipped ones)
        error: Batch-level error message when success is False
        report: Per-unit outcomes
        run_id: Identifier used in this batch's log lines
    """

    success: bool
    processed: int = 0
    error: str | None = None
    report: BatchReport = field(default_factory=BatchReport)
    run_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "processed": self.processed}
        return {"success": False, "error": self.error}


def parse_query_path(path: str) -> tuple[str, str]:
    """
    Split companies/{companyId}/queries/{queryId} into (companyId, queryId).

    Raises:
        InvalidDocumentPathError: For any other shape, including legacy
            top-level queries/{id} documents
    """
    segments = path.split("/")
    if (
        len(segments) != 4
        or segments[0] != "companies"
        or segments[2] != "queries"
        or not segments[1]
        or not segments[3]
    ):
        raise InvalidDocumentPathError(f"Invalid path structure: {path}")
    return segments[1], segments[3]


def coerce_query_configs(
    query_configs: list[QueryRunConfig | dict] | None,
) -> list[QueryRunConfig] | None:
    """
    Validate caller-supplied run options.

    Raises:
        ValueError: If any entry is not {id: str, times: int 1..6}
    """
    if not query_configs:
        return None

    configs = []
    for entry in query_configs:
        if isinstance(entry, QueryRunConfig):
            configs.append(entry)
            continue
        try:
            configs.append(QueryRunConfig.model_validate(entry))
        except ValidationError as e:
            raise ValueError(f"Invalid query config {entry!r}: {e}") from e
    return configs


def _lookup_company_name(db_path: str, company_id: str) -> str:
    try:
        with open_connection(db_path) as conn:
            name = get_company_name(conn, company_id)
    except Exception as e:
        logger.warning(f"Company lookup failed for {company_id}: {e}")
        return UNKNOWN_COMPANY_NAME
    return name or UNKNOWN_COMPANY_NAME


async def process_query_result(
    db_path: str,
    result: QueryRunResult,
    generator: StructuredGenerator,
    report: BatchReport,
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE,
    run_id: str | None = None,
) -> int:
    """
    Analyse and persist every run of one query.

    Returns:
        Number of answers written
    """
    try:
        company_id, _ = parse_query_path(result.query_doc_path)
    except InvalidDocumentPathError as e:
        logger.error(f"{e}; skipping query {result.query_id}")
        report.record_failure(
            result.query_id,
            FailureKind.INVALID_PATH,
            str(e),
            query_path=result.query_doc_path,
        )
        return 0

    company_name = _lookup_company_name(db_path, company_id)
    written = 0

    for run in result.runs:
        analysis = await analyze_answer(
            generator,
            run.raw_answer,
            result.query_text,
            client_name=company_name,
            reasoning_language=reasoning_language,
        )

        answer = AnswerRecord(
            query_id=result.query_id,
            query_text=result.query_text,
            raw_answer=run.raw_answer,
            citations=run.citations,
            competitors=analysis.competitors,
            created_at=iso_timestamp(),
            ai_provider=AIProvider(id=PROVIDER_TAG, model=result.model),
        )

        try:
            with open_connection(db_path) as conn:
                answer_id = insert_answer(conn, company_id, answer)
        except Exception as e:
            logger.error(
                f"Error processing run {run.run_index} for query {result.query_id}: {e}",
                exc_info=True,
            )
            report.record_failure(
                result.query_id,
                FailureKind.WRITE_FAILED,
                f"{type(e).__name__}: {e}",
                run_index=run.run_index,
                query_path=result.query_doc_path,
            )
            continue

        written += 1
        report.record_success(
            result.query_id,
            run_index=run.run_index,
            answer_id=answer_id,
            extraction_error=analysis.error,
            query_path=result.query_doc_path,
        )
        log_with_context(
            logger,
            logging.DEBUG,
            "Answer written",
            context={
                "query_id": result.query_id,
                "run_index": run.run_index,
                "answer_id": answer_id,
                "competitors": len(analysis.competitors),
                "degraded": analysis.degraded,
            },
            run_id=run_id,
        )

    return written


async def process_queries(
    db_path: str,
    engine: AnswerEngine,
    generator: StructuredGenerator,
    query_configs: list[QueryRunConfig | dict] | None = None,
    company_id: str | None = None,
    default_times: int = DEFAULT_RUN_TIMES,
    max_concurrent_queries: int = DEFAULT_MAX_CONCURRENT_QUERIES,
    reasoning_language: str = DEFAULT_REASONING_LANGUAGE,
    report: BatchReport | None = None,
) -> ProcessResult:
    """
    Run, analyse and persist queries.

    Args:
        db_path: SQLite document store (must be initialized)
        engine: Grounded answer engine
        generator: Structured-output generator for competitor analysis
        query_configs: Optional [{id, times}] plan; times must be 1..6
        company_id: Restrict to one company's queries
        default_times: Runs per query without a plan
        max_concurrent_queries: Distinct queries in flight at once
        reasoning_language: Language requested for competitor reasoning
        report: Optional report to fill (a new one is created otherwise)

    Returns:
        ProcessResult; never raises for per-unit failures
    """
    report = report if report is not None else BatchReport()
    run_id = run_id_from_timestamp()

    try:
        configs = coerce_query_configs(query_configs)
        if max_concurrent_queries < 1:
            raise ValueError(
                f"max_concurrent_queries must be >= 1, got: {max_concurrent_queries}"
            )

        log_with_context(
            logger,
            logging.INFO,
            "Starting batch",
            context={
                "company_id": company_id,
                "planned_queries": len(configs) if configs else None,
                "max_concurrent_queries": max_concurrent_queries,
            },
            run_id=run_id,
        )

        run_results = await fetch_and_run_queries(
            db_path,
            engine,
            query_configs=configs,
            company_id=company_id,
            default_times=default_times,
            max_concurrent_queries=max_concurrent_queries,
            report=report,
        )

        semaphore = asyncio.Semaphore(max_concurrent_queries)

        async def _process_with_semaphore(result: QueryRunResult) -> int:
            async with semaphore:
                return await process_query_result(
                    db_path,
                    result,
                    generator,
                    report,
                    reasoning_language=reasoning_language,
                    run_id=run_id,
                )

        await asyncio.gather(*(_process_with_semaphore(r) for r in run_results))

    except Exception as e:
        logger.error(f"Error processing queries: {e}", exc_info=True)
        return ProcessResult(success=False, error=str(e), report=report, run_id=run_id)

    summary = report.summary()
    log_with_context(
        logger,
        logging.INFO,
        "Batch complete",
        context={"processed": len(run_results), **summary},
        run_id=run_id,
    )
    return ProcessResult(
        success=True, processed=len(run_results), report=report, run_id=run_id
    )


def build_clients(config: RuntimeConfig) -> tuple[AnswerEngine, StructuredGenerator]:
    """
    Build the answer engine and extraction clients from runtime config.

    The answer engine honours run_settings.request_max_attempts; extraction
    always makes a single attempt.
    """
    engine = build_client(
        provider=config.answer_engine.provider,
        model_name=config.answer_engine.model_name,
        api_key=config.answer_engine.api_key,
        system_prompt=config.answer_engine.system_prompt,
        tools=config.answer_engine.tools,
        max_attempts=config.run_settings.request_max_attempts,
    )
    generator = build_client(
        provider=config.extraction.provider,
        model_name=config.extraction.model_name,
        api_key=config.extraction.api_key,
        system_prompt=config.extraction.system_prompt,
        max_attempts=1,
    )
    return engine, generator


async def run_pipeline(
    config: RuntimeConfig,
    query_configs: list[QueryRunConfig | dict] | None = None,
    company_id: str | None = None,
    engine: AnswerEngine | None = None,
    generator: StructuredGenerator | None = None,
) -> ProcessResult:
    """
    Config-driven entry point used by the CLI.

    Clients are built from config unless supplied (tests and demos pass
    mock clients).

    Raises:
        DatabaseError: If the store cannot be initialized
    """
    init_db_if_needed(config.storage.sqlite_db_path)

    if engine is None or generator is None:
        built_engine, built_generator = build_clients(config)
        engine = engine or built_engine
        generator = generator or built_generator

    return await process_queries(
        config.storage.sqlite_db_path,
        engine,
        generator,
        query_configs=query_configs,
        company_id=company_id,
        default_times=config.run_settings.default_times,
        max_concurrent_queries=config.run_settings.max_concurrent_queries,
        reasoning_language=config.reasoning_language,
    )
