"""
HTML report generation for LLM Visibility.

Renders a company's visibility overview and per-query rankings into a
self-contained HTML page with inline CSS.

Key features:
- Jinja2 templating with autoescaping enabled (XSS prevention)
- Company totals: visibility, average position, average sentiment
- Per-query competitor and citation rankings, client row highlighted
- Self-contained HTML (inline CSS, no external assets)

Security:
- CRITICAL: Jinja2 autoescaping enabled to prevent HTML injection
- Answer text, competitor names, citation titles and URLs come from model
  output and are always escaped

Example:
    >>> data = build_report_data(db_path, "u1")
    >>> html = generate_report(data)
    >>> write_report("./output", data)
    './output/reports/u1/2025-11-02T08-00-00Z.html'
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ..exceptions import DocumentNotFoundError
from ..storage.db import open_connection
from ..storage.records import Company, QueryRecord
from ..storage.repository import get_company, list_answers, list_queries
from ..storage.writer import create_report_directory, write_report_html
from ..utils.time import run_id_from_timestamp, utc_timestamp
from .aggregator import (
    CompanyOverview,
    QueryAggregate,
    aggregate,
    format_one_decimal,
    sentiment_label,
    summarize_company,
)

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "company_report.html.j2"


@dataclass
class ReportData:
    """Everything the report template needs, already aggregated."""

    company: Company
    target: str
    overview: CompanyOverview
    queries: list[tuple[QueryRecord, QueryAggregate]] = field(default_factory=list)
    generated_at: str = field(default_factory=utc_timestamp)


def build_report_data(
    db_path: str,
    company_id: str,
    query_id: str | None = None,
    target: str | None = None,
) -> ReportData:
    """
    Load a company's queries and answers and aggregate them.

    Args:
        db_path: SQLite document store
        company_id: Company to report on
        query_id: Restrict the per-query sections to one query (the overview
            still covers every query)
        target: Company measured for visibility; defaults to the company's
            own slug

    Raises:
        DocumentNotFoundError: If the company or the requested query is missing
    """
    with open_connection(db_path) as conn:
        company = get_company(conn, company_id)
        if company is None:
            raise DocumentNotFoundError(f"Company not found: {company_id}")
        queries = list_queries(conn, company_id)
        answers = list_answers(conn, company_id)

    target = target or company.slug
    overview = summarize_company(queries, answers, target)

    selected = queries
    if query_id is not None:
        selected = [q for q in queries if q.id == query_id]
        if not selected:
            raise DocumentNotFoundError(f"Query not found: {company_id}/{query_id}")

    sections = []
    for query in selected:
        own = [a for a in answers if a.query_id == query.id]
        sections.append((query, aggregate(own, target, company.slug)))

    logger.info(
        f"Aggregated {len(answers)} answers over {len(queries)} queries "
        f"for company {company_id}"
    )
    return ReportData(company=company, target=target, overview=overview, queries=sections)


def generate_report(data: ReportData) -> str:
    """
    Render the HTML report.

    Raises:
        ValueError: If the template cannot be loaded or rendered
    """
    # Setup Jinja2 environment with autoescaping enabled (CRITICAL for security)
    template_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    env.filters["sentiment_label"] = sentiment_label
    env.filters["one_decimal"] = format_one_decimal

    try:
        template = env.get_template(TEMPLATE_NAME)
    except Exception as e:
        logger.error(f"Failed to load template: {e}", exc_info=True)
        raise ValueError(f"Cannot load report template: {e}") from e

    try:
        html = template.render(
            company=data.company,
            target=data.target,
            overview=data.overview,
            queries=data.queries,
            generated_at=data.generated_at,
        )
    except Exception as e:
        logger.error(f"Failed to render template: {e}", exc_info=True)
        raise ValueError(f"Cannot render report template: {e}") from e

    logger.info(f"HTML report generated for company {data.company.id}")
    return html


def write_report(output_dir: str, data: ReportData) -> str:
    """
    Generate the report and write it under output_dir.

    Returns:
        Path of the written HTML file

    Raises:
        ValueError: If report generation fails
        OSError: If report cannot be written to disk
    """
    html = generate_report(data)
    report_dir = create_report_directory(output_dir, data.company.id)
    return write_report_html(report_dir, run_id_from_timestamp(), html)
