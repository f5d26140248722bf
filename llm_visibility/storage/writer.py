"""
File writing utilities for LLM Visibility.

Handles file output for reports and exports: JSON files, HTML reports and
report directories.

Key features:
- UTF-8 encoding for all text files
- Pretty-printed JSON (indent=2, non-ASCII kept as-is)
- Graceful error handling (permissions, disk full)

Layout:
    {output_dir}/reports/{company_id}/{run_id}.html

Example:
    >>> report_dir = create_report_directory("./output", "u1")
    >>> write_report_html(report_dir, "2025-11-02T08-00-00Z", html)
    './output/reports/u1/2025-11-02T08-00-00Z.html'
"""

import json
import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

REPORTS_DIRNAME = "reports"

_UNSAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]")


def safe_segment(value: str) -> str:
    """
    Make a value usable as a single path component.

    Raises:
        ValueError: If nothing usable remains
    """
    cleaned = _UNSAFE_SEGMENT.sub("_", value).strip(".")
    if not cleaned:
        raise ValueError(f"Cannot use {value!r} as a file name")
    return cleaned


def create_report_directory(output_dir: str, company_id: str) -> str:
    """
    Create the report directory for one company.

    Returns:
        Full path to the directory

    Raises:
        OSError: If directory cannot be created (permissions, disk full)
    """
    report_dir = os.path.join(output_dir, REPORTS_DIRNAME, safe_segment(company_id))

    try:
        Path(report_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create directory: {report_dir}", exc_info=True)
        raise OSError(
            f"Cannot create report directory '{report_dir}': {e}. "
            f"Check disk space and permissions."
        ) from e

    logger.debug(f"Report directory ready: {report_dir}")
    return report_dir


def write_json(filepath: str, data: dict | list) -> None:
    """
    Write data to JSON file with UTF-8 encoding.

    Raises:
        OSError: If file cannot be written (permissions, disk full)
        TypeError: If data is not JSON-serializable
    """
    try:
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            # Add newline at end of file for POSIX compliance
            f.write("\n")
        logger.debug(f"Wrote JSON file: {filepath}")
    except TypeError as e:
        logger.error(f"Cannot serialize data to JSON: {e}", exc_info=True)
        raise TypeError(
            f"Cannot write JSON to '{filepath}': Data is not JSON-serializable. {e}"
        ) from e
    except OSError as e:
        logger.error(f"Failed to write JSON file: {filepath}", exc_info=True)
        raise OSError(
            f"Cannot write JSON file '{filepath}': {e}. "
            f"Check disk space and permissions."
        ) from e


def write_report_html(report_dir: str, run_id: str, html: str) -> str:
    """
    Write an HTML report and return its path.

    HTML should be pre-escaped (the generator renders with autoescaping).

    Raises:
        OSError: If file cannot be written
    """
    filepath = os.path.join(report_dir, f"{safe_segment(run_id)}.html")

    try:
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(html)
    except OSError as e:
        logger.error(f"Failed to write HTML report: {filepath}", exc_info=True)
        raise OSError(
            f"Cannot write HTML report '{filepath}': {e}. "
            f"Check disk space and permissions."
        ) from e

    logger.info(f"Wrote HTML report: {filepath}")
    return filepath
