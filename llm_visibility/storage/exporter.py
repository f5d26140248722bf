"""
Data export utilities for LLM Visibility.

Exports a company's stored answers to CSV or JSON for external analysis,
and the aggregated rankings of one query to JSON.

Key features:
- One row per answer, with the target company's mention flag, position
  and sentiment already resolved
- CSV format for spreadsheet analysis
- JSON format for programmatic processing
- UTF-8 encoding for Arabic and other non-ASCII text

Example:
    >>> export_answers_csv("./answers.csv", "./output/visibility.db", "u1", target="saqr")
    3
    >>> export_rankings_json("./rankings.json", "./output/visibility.db", "u1", "q1", target="saqr")
"""

import csv
import logging
from dataclasses import asdict
from typing import Any

from ..exceptions import DocumentNotFoundError
from ..report.aggregator import aggregate, find_mention
from ..storage.db import open_connection
from ..storage.records import AnswerRecord
from ..storage.repository import get_company, get_query, list_answers
from ..storage.writer import write_json

logger = logging.getLogger(__name__)

ANSWER_FIELDS = [
    "answer_id",
    "query_id",
    "query_text",
    "created_at",
    "provider",
    "model",
    "citation_count",
    "competitor_ids",
    "target_mentioned",
    "target_position",
    "target_sentiment",
]


def answer_row(answer: AnswerRecord, target: str) -> dict[str, Any]:
    """Flatten one answer into an export row."""
    mention = find_mention(answer.competitors, target)
    return {
        "answer_id": answer.id,
        "query_id": answer.query_id,
        "query_text": answer.query_text,
        "created_at": answer.created_at,
        "provider": answer.ai_provider.id if answer.ai_provider else "",
        "model": answer.ai_provider.model if answer.ai_provider else "",
        "citation_count": len(answer.citations),
        "competitor_ids": [c.id for c in answer.competitors],
        "target_mentioned": mention is not None,
        "target_position": mention.position if mention else 0,
        "target_sentiment": mention.sentiment if mention else 0,
    }


def _load_rows(
    db_path: str, company_id: str, query_id: str | None, target: str | None
) -> list[dict[str, Any]]:
    with open_connection(db_path) as conn:
        if target is None:
            company = get_company(conn, company_id)
            target = company.slug if company else ""
        answers = list_answers(conn, company_id, query_id)
    return [answer_row(answer, target) for answer in answers]


def export_answers_csv(
    output_path: str,
    db_path: str,
    company_id: str,
    query_id: str | None = None,
    target: str | None = None,
) -> int:
    """
    Export a company's answers to a CSV file.

    Competitor ids are joined with ";" in a single column. A header row is
    written even when there are no answers.

    Args:
        output_path: Path to output CSV file
        db_path: Path to SQLite database
        company_id: Owning company
        query_id: Optional query to restrict to
        target: Company whose mentions are flagged (defaults to the
            company's own slug)

    Returns:
        Number of rows exported

    Raises:
        DatabaseError: If the store cannot be read
        OSError: If file cannot be written
    """
    logger.info(f"Exporting answers to CSV: {output_path}")
    rows = _load_rows(db_path, company_id, query_id, target)

    if not rows:
        logger.warning(f"No answers found for company {company_id}")

    try:
        with open(output_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=ANSWER_FIELDS)
            writer.writeheader()
            for row in rows:
                writer.writerow({**row, "competitor_ids": ";".join(row["competitor_ids"])})
    except OSError as e:
        logger.error(f"File write error: {e}", exc_info=True)
        raise

    logger.info(f"Exported {len(rows)} answers to {output_path}")
    return len(rows)


def export_answers_json(
    output_path: str,
    db_path: str,
    company_id: str,
    query_id: str | None = None,
    target: str | None = None,
) -> int:
    """
    Export a company's answers to a JSON array.

    Same fields as export_answers_csv; competitor_ids stays a list.

    Returns:
        Number of records exported
    """
    logger.info(f"Exporting answers to JSON: {output_path}")
    rows = _load_rows(db_path, company_id, query_id, target)

    write_json(output_path, rows)

    logger.info(f"Exported {len(rows)} answers to {output_path}")
    return len(rows)


def export_rankings_json(
    output_path: str,
    db_path: str,
    company_id: str,
    query_id: str,
    target: str | None = None,
) -> dict[str, Any]:
    """
    Write the aggregate of one query (stats and rankings) to JSON.

    Runs are left out; use export_answers_json for per-answer data.

    Returns:
        The exported payload

    Raises:
        DocumentNotFoundError: If the query does not exist
    """
    with open_connection(db_path) as conn:
        query = get_query(conn, company_id, query_id)
        if query is None:
            raise DocumentNotFoundError(f"Query not found: {company_id}/{query_id}")
        company = get_company(conn, company_id)
        client_slug = company.slug if company else ""
        answers = list_answers(conn, company_id, query_id)

    if target is None:
        target = client_slug
    result = aggregate(answers, target, client_slug)
    payload = {
        "company_id": company_id,
        "query_id": query.id,
        "query_text": query.text,
        "target": target,
        "stats": asdict(result.stats),
        "competitors": [asdict(r) for r in result.rankings.competitors],
        "citations": [asdict(r) for r in result.rankings.citations],
    }

    write_json(output_path, payload)

    logger.info(
        f"Exported rankings for query {query_id} "
        f"({len(payload['competitors'])} competitors) to {output_path}"
    )
    return payload
