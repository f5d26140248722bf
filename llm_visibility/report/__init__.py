"""
Aggregation and HTML reporting for LLM Visibility.

Key exports:
    - aggregate: Per-query stats and rankings from stored answers
    - summarize_company: Company-wide visibility rollup
    - generate_report: Render the HTML company report
    - write_report: Generate and write the HTML report to disk
"""

from .aggregator import aggregate, sentiment_label, summarize_company, summarize_query
from .generator import build_report_data, generate_report, write_report

__all__ = [
    "aggregate",
    "build_report_data",
    "generate_report",
    "sentiment_label",
    "summarize_company",
    "summarize_query",
    "write_report",
]
