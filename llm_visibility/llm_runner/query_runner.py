"""
Query runner: repeated grounded completions per monitored query.

fetch_and_run_queries() selects the queries to run, asks the answer engine
each one `times` times, and returns the raw answers with their citations.

Selection:
    - company_id given: that company's queries
    - otherwise: every "queries" collection in the store (collection group),
      ordered by path, de-duplicated by query id (first path wins)

Run plan:
    - query_configs given (non-empty): exactly those ids, `times` each, in
      config order; unknown ids are ignored
    - otherwise: every selected query, default_times each

Concurrency:
    - runs of one query are strictly sequential
    - distinct queries run concurrently, at most max_concurrent_queries at once
    - results keep plan order

A failed run is logged, recorded in the optional BatchReport and skipped; a
query whose runs all failed is left out of the result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config.constants import (
    DEFAULT_MAX_CONCURRENT_QUERIES,
    DEFAULT_RUN_TIMES,
    MAX_RUN_TIMES,
    MIN_RUN_TIMES,
)
from ..storage.db import open_connection
from ..storage.records import Citation, QueryRecord
from ..storage.repository import list_all_queries, list_queries
from .models import AnswerEngine
from .outcomes import BatchReport, FailureKind

logger = logging.getLogger(__name__)


class QueryRunConfig(BaseModel):
    """
    How many times to run one query.

    times must be an actual integer in 1..6 (no floats, strings or bools).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    times: int = Field(strict=True, ge=MIN_RUN_TIMES, le=MAX_RUN_TIMES)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("query id cannot be empty")
        return v


@dataclass(frozen=True)
class QueryRun:
    """One successful completion of a query."""

    raw_answer: str
    citations: list[Citation]
    run_index: int


@dataclass
class QueryRunResult:
    """
    All successful runs of one query.

    Attributes:
        query_id: Query document id
        query_text: The prompt that was sent
        query_doc_path: Storage path of the query document; the orchestrator
            derives the owning company from it
        model: Answer engine model name
        runs: Successful runs, in run order (failed indices are absent)
    """

    query_id: str
    query_text: str
    query_doc_path: str
    model: str
    runs: list[QueryRun] = field(default_factory=list)


def extract_citations(grounding_chunks: list[dict[str, Any]]) -> list[Citation]:
    """
    Map grounding chunks to citations, keeping order.

    Chunks missing either uri or title are dropped. Duplicates are kept;
    they are collapsed later by the aggregation step.
    """
    citations = []
    for chunk in grounding_chunks:
        uri = chunk.get("uri")
        title = chunk.get("title")
        if isinstance(uri, str) and uri and isinstance(title, str) and title:
            citations.append(Citation(uri=uri, title=title))
    return citations


def select_queries(db_path: str, company_id: str | None = None) -> list[QueryRecord]:
    """
    Load the candidate queries.

    Raises:
        DatabaseError: If the store cannot be read
    """
    with open_connection(db_path) as conn:
        if company_id:
            queries = list_queries(conn, company_id)
            logger.debug(f"Fetched {len(queries)} queries for company {company_id}")
            return queries
        queries = list_all_queries(conn)

    logger.debug(f"Fetched {len(queries)} queries (collection group)")

    unique: dict[str, QueryRecord] = {}
    for query in queries:
        if query.id in unique:
            logger.warning(
                f"Duplicate query id {query.id} at {query.path}; "
                f"keeping {unique[query.id].path}"
            )
            continue
        unique[query.id] = query
    return list(unique.values())


def build_run_plan(
    candidates: list[QueryRecord],
    query_configs: list[QueryRunConfig] | None = None,
    default_times: int = DEFAULT_RUN_TIMES,
) -> list[tuple[QueryRecord, int]]:
    """
    Pair each query to run with its repeat count.

    A config id listed twice is planned once, with the first count.
    """
    if not query_configs:
        return [(query, default_times) for query in candidates]

    by_id = {query.id: query for query in candidates}
    plan: list[tuple[QueryRecord, int]] = []
    planned: set[str] = set()

    for config in query_configs:
        if config.id in planned:
            logger.warning(f"Query {config.id} listed more than once; using first count")
            continue
        query = by_id.get(config.id)
        if query is None:
            logger.info(f"Query {config.id} not found; skipping")
            continue
        planned.add(config.id)
        plan.append((query, config.times))

    return plan


async def run_query(
    engine: AnswerEngine,
    query: QueryRecord,
    times: int,
    report: BatchReport | None = None,
) -> QueryRunResult:
    """
    Run one query `times` times, sequentially.

    Each completion is awaited before the next starts. Failures are caught
    per run; the returned result holds only the successful runs.
    """
    result = QueryRunResult(
        query_id=query.id,
        query_text=query.text,
        query_doc_path=query.path,
        model=engine.model_name,
    )

    for run_index in range(1, times + 1):
        try:
            response = await engine.generate_answer(query.text)
        except Exception as e:
            logger.error(
                f"Error in run {run_index} for query {query.id}: {e}", exc_info=True
            )
            if report is not None:
                report.record_failure(
                    query.id,
                    FailureKind.COMPLETION_FAILED,
                    f"{type(e).__name__}: {e}",
                    run_index=run_index,
                    query_path=query.path,
                )
            continue

        result.runs.append(
            QueryRun(
                raw_answer=response.answer_text,
                citations=extract_citations(response.grounding_chunks),
                run_index=run_index,
            )
        )

    logger.info(
        f"Query {query.id}: {len(result.runs)}/{times} runs succeeded "
        f"(model={engine.model_name})"
    )
    return result


async def fetch_and_run_queries(
    db_path: str,
    engine: AnswerEngine,
    query_configs: list[QueryRunConfig] | None = None,
    company_id: str | None = None,
    default_times: int = DEFAULT_RUN_TIMES,
    max_concurrent_queries: int = DEFAULT_MAX_CONCURRENT_QUERIES,
    report: BatchReport | None = None,
) -> list[QueryRunResult]:
    """
    Select queries, run them, and return the successful runs per query.

    Args:
        db_path: SQLite document store
        engine: Grounded answer engine
        query_configs: Optional explicit run plan (id + times)
        company_id: Restrict selection to one company
        default_times: Runs per query without an explicit plan
        max_concurrent_queries: Distinct queries in flight at once
        report: Optional report collecting per-run failures

    Returns:
        One QueryRunResult per planned query with at least one successful run,
        in plan order

    Raises:
        DatabaseError: If the queries cannot be read
        ValueError: If max_concurrent_queries < 1
    """
    if max_concurrent_queries < 1:
        raise ValueError(
            f"max_concurrent_queries must be >= 1, got: {max_concurrent_queries}"
        )

    candidates = select_queries(db_path, company_id)
    plan = build_run_plan(candidates, query_configs, default_times)
    logger.info(f"Running {len(plan)} queries ({max_concurrent_queries} at a time)")

    semaphore = asyncio.Semaphore(max_concurrent_queries)

    async def _run_with_semaphore(query: QueryRecord, times: int) -> QueryRunResult:
        async with semaphore:
            return await run_query(engine, query, times, report)

    results = await asyncio.gather(
        *(_run_with_semaphore(query, times) for query, times in plan)
    )

    return [result for result in results if result.runs]
