"""
Rich console utilities for dual-mode CLI output.

Provides readable terminal output for humans and structured JSON for scripts.
All output functions adapt to the global output_mode setting.

This module provides:
- OutputMode: Class to manage output format (text/json/quiet)
- Context manager: spinner()
- Output functions: success(), error(), warning(), info()
- Display functions: print_banner(), print_process_summary(),
  print_company_overview(), print_query_rankings(), print_queries()

Human Mode (--format text):
    - Rich spinners, colored tables and panels

Agent Mode (--format json):
    - Structured JSON output to stdout
    - No ANSI codes or spinners

Quiet Mode (--quiet):
    - Tab-separated values, no decorations

Examples:
    >>> output_mode.format = "text"
    >>> with spinner("Running queries..."):
    ...     result = asyncio.run(run_pipeline(config))
    >>> print_process_summary(result)

    >>> output_mode.format = "json"
    >>> success("Config loaded")  # Buffers to JSON
    >>> output_mode.flush_json()   # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from ..llm_runner.runner import ProcessResult
    from ..report.aggregator import CompanyOverview, QueryAggregate
    from ..storage.records import QueryRecord


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
        _json_buffer: Internal buffer for JSON output in agent mode

    Examples:
        >>> mode = OutputMode()
        >>> mode.is_human()
        True
        >>> mode.format = "json"
        >>> mode.is_agent()
        True
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer (flushed by flush_json)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Output buffered JSON to stdout and clear buffer.

        Only outputs in agent mode. In human mode, this is a no-op.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, ensure_ascii=False)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

# Global Rich console instances for human mode
console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a spinner while the block runs (human mode only).

    Examples:
        >>> with spinner("Loading config..."):
        ...     config = load_config()
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


def success(message: str) -> None:
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human mode: Red X with message to stderr (also in quiet mode)
    Agent mode: Buffer to JSON
    """
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        if not output_mode.quiet:
            console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        warnings = output_mode._json_buffer.setdefault("warnings", [])
        warnings.append(message)


def info(message: str) -> None:
    """Print an info message (human mode only)."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   LLM Visibility v{version:<19} ║
║   Brand visibility in AI answers      ║
╚{"═" * 39}╝[/bold cyan]
"""

    console.print(banner)


def _sentiment_style(score: float) -> str:
    if score >= 65:
        return "green"
    if score >= 40:
        return "yellow"
    return "red"


def print_process_summary(result: ProcessResult) -> None:
    """
    Print the outcome of one pipeline invocation.

    Human mode: Panel with counts, plus a table of failed units
    Agent mode: Flush buffered JSON including result and report
    Quiet mode: run_id, processed, succeeded, failed, degraded (tab-separated)
    """
    summary = result.report.summary()

    if output_mode.is_agent():
        output_mode.add_json("run_id", result.run_id)
        output_mode.add_json("result", result.to_dict())
        output_mode.add_json("summary", summary)
        output_mode.add_json("failures", [o.to_dict() for o in result.report.failed])
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print(
            f"{result.run_id}\t{result.processed}\t{summary['succeeded']}\t"
            f"{summary['failed']}\t{summary['degraded']}"
        )
        return

    if not result.success:
        console.print(
            Panel(
                f"[bold]Error:[/bold] {result.error}",
                title="[bold red]✗ Batch Failed[/bold red]",
                border_style="red",
                box=box.ROUNDED,
            )
        )
        return

    summary_text = f"""
[bold]Run ID:[/bold] {result.run_id}
[bold]Queries processed:[/bold] {result.processed}
[bold]Answers written:[/bold] {summary['succeeded']}
[bold]Degraded extractions:[/bold] {summary['degraded']}
[bold]Failed units:[/bold] {summary['failed']}
"""

    if summary["failed"] == 0 and summary["degraded"] == 0:
        border_style = "green"
        title = "[bold green]✓ Run Completed Successfully[/bold green]"
    else:
        border_style = "yellow"
        title = "[bold yellow]⚠ Run Completed with Partial Failures[/bold yellow]"

    console.print(
        Panel(summary_text.strip(), title=title, border_style=border_style, box=box.ROUNDED)
    )

    if result.report.failed:
        table = Table(title="Failures", box=box.ROUNDED)
        table.add_column("Query", style="cyan", no_wrap=True)
        table.add_column("Run", justify="right")
        table.add_column("Kind", style="magenta")
        table.add_column("Error", style="red")
        for outcome in result.report.failed:
            table.add_row(
                outcome.query_id,
                str(outcome.run_index) if outcome.run_index is not None else "-",
                outcome.kind.value if outcome.kind else "",
                outcome.error or "",
            )
        console.print(table)


def print_company_overview(company_name: str, overview: CompanyOverview) -> None:
    """
    Print the company dashboard: totals and one row per query.

    Human mode: Rich table
    Agent mode: Buffer overview as JSON (caller flushes)
    Quiet mode: query_id, visibility, position, sentiment (tab-separated)
    """
    if output_mode.is_agent():
        output_mode.add_json("overview", asdict(overview))
        return

    from ..report.aggregator import format_one_decimal, sentiment_label

    if output_mode.quiet:
        for q in overview.queries:
            print(
                f"{q.query_id}\t{q.stats.visibility}\t"
                f"{format_one_decimal(q.stats.average_position)}\t{q.stats.average_sentiment}"
            )
        return

    position = overview.total_average_position or "-"
    sentiment = overview.total_average_sentiment
    sentiment_text = (
        f"{sentiment} ({sentiment_label(sentiment)})" if sentiment is not None else "-"
    )
    console.print(
        Panel(
            f"[bold]Visibility:[/bold] {overview.total_visibility}%\n"
            f"[bold]Average position:[/bold] {position}\n"
            f"[bold]Average sentiment:[/bold] {sentiment_text}",
            title=f"[bold cyan]{company_name}[/bold cyan]",
            border_style="cyan",
            box=box.ROUNDED,
        )
    )

    table = Table(title="Queries", box=box.ROUNDED)
    table.add_column("Query", style="cyan")
    table.add_column("Searches", justify="right")
    table.add_column("Visibility", justify="right")
    table.add_column("Avg Position", justify="right")
    table.add_column("Avg Sentiment", justify="right")

    for q in overview.queries:
        stats = q.stats
        if stats.average_sentiment:
            style = _sentiment_style(stats.average_sentiment)
            sentiment_cell = (
                f"[{style}]{stats.average_sentiment} "
                f"({sentiment_label(stats.average_sentiment)})[/{style}]"
            )
        else:
            sentiment_cell = "-"
        table.add_row(
            q.query_text,
            str(stats.total_searches),
            f"{stats.visibility}%",
            format_one_decimal(stats.average_position) if stats.average_position else "-",
            sentiment_cell,
        )

    console.print(table)


def print_query_rankings(query: QueryRecord, result: QueryAggregate) -> None:
    """
    Print competitor and citation rankings of one query.

    The client's own row is highlighted.
    """
    if output_mode.is_agent():
        rankings = output_mode._json_buffer.setdefault("rankings", {})
        rankings[query.id] = {
            "query": query.text,
            "stats": asdict(result.stats),
            "competitors": [asdict(r) for r in result.rankings.competitors],
            "citations": [asdict(r) for r in result.rankings.citations],
        }
        return

    if output_mode.quiet:
        for r in result.rankings.competitors:
            print(f"{query.id}\t{r.rank}\t{r.name}\t{r.mentions}\t{r.avg_position}")
        return

    table = Table(title=f"Competitors: {query.text}", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Company", style="cyan")
    table.add_column("Mentions", justify="right")
    table.add_column("Avg Position", justify="right")
    table.add_column("Avg Sentiment", justify="right")

    for r in result.rankings.competitors:
        table.add_row(
            str(r.rank),
            f"[bold green]{r.name} (you)[/bold green]" if r.is_client else r.name,
            str(r.mentions),
            r.avg_position,
            f"[{_sentiment_style(r.avg_sentiment)}]{r.avg_sentiment}[/]",
        )
    console.print(table)

    if result.rankings.citations:
        sources = Table(title="Sources", box=box.ROUNDED)
        sources.add_column("Source", style="magenta")
        sources.add_column("Citations", justify="right")
        sources.add_column("URLs", justify="right")
        for c in result.rankings.citations:
            sources.add_row(c.title, str(c.count), str(len(c.urls)))
        console.print(sources)


def print_queries(company_id: str, queries: list[QueryRecord]) -> None:
    if output_mode.is_agent():
        output_mode.add_json("company_id", company_id)
        output_mode.add_json(
            "queries",
            [{"id": q.id, "query": q.text, "createdAt": q.created_at} for q in queries],
        )
        output_mode.flush_json()
        return

    if output_mode.quiet:
        for q in queries:
            print(f"{q.id}\t{q.text}")
        return

    table = Table(title=f"Queries for {company_id}", box=box.ROUNDED)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Query")
    table.add_column("Created", style="dim")
    for q in queries:
        table.add_row(q.id, q.text, q.created_at)
    console.print(table)
