"""
CLI entrypoint for LLM Visibility.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, panels, colored text
- Agent-friendly output: Structured JSON for automation
- Quiet mode: Tab-separated minimal output for shell scripts

Commands:
    run: Run monitored queries, analyse the answers and store them
    report: Show a company's visibility overview and write an HTML report
    export: Export a company's answers (or one query's rankings) to CSV/JSON
    validate: Validate configuration without running queries
    onboard: Register a user's company
    query: Manage a company's monitored queries (add, list, remove)

Exit codes:
    0: Success
    1: Configuration or usage error (invalid YAML, missing API keys, bad input)
    2: Database error (cannot create/access SQLite, missing company/query)
    4: Pipeline failure (the batch itself failed)

Examples:
    # Run every query of one company, 3 times each for q1
    llm-visibility run --config visibility.config.yaml --company u1 --query q1:3

    # Agent-friendly JSON output
    llm-visibility run --config visibility.config.yaml --format json

    # Company report
    llm-visibility report --config visibility.config.yaml --company u1

Security:
    - API keys are loaded from environment variables only
    - Errors may contain file paths but never API keys
"""

import asyncio
from pathlib import Path
from typing import NoReturn

import typer
from rich.traceback import install as install_rich_traceback

from llm_visibility.config.loader import load_config, load_watcher_config
from llm_visibility.config.schema import WatcherConfig
from llm_visibility.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    DatabaseError,
    DocumentNotFoundError,
    InvalidDocumentPathError,
    OnboardingError,
)
from llm_visibility.llm_runner.query_runner import QueryRunConfig
from llm_visibility.llm_runner.runner import coerce_query_configs, run_pipeline
from llm_visibility.report.generator import build_report_data, write_report
from llm_visibility.session import Session
from llm_visibility.storage.db import init_db_if_needed, open_connection
from llm_visibility.storage.repository import add_query, list_queries, remove_query
from llm_visibility.utils.console import (
    error,
    info,
    output_mode,
    print_banner,
    print_company_overview,
    print_process_summary,
    print_queries,
    print_query_rankings,
    spinner,
    success,
)
from llm_visibility.utils.logging import setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1  # Config validation failed or bad command input
EXIT_DB_ERROR = 2  # Database error or missing document
EXIT_PIPELINE_FAILURE = 4  # Batch failed as a whole

# Create Typer app
app = typer.Typer(
    name="llm-visibility",
    help="Measure how AI answer engines mention your company vs competitors",
    add_completion=False,
)

query_app = typer.Typer(help="Manage a company's monitored queries")
app.add_typer(query_app, name="query")


def _set_output(format: str, quiet: bool = False, verbose: bool = False) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    output_mode.quiet = quiet
    # Log lines go to stderr; keep them to warnings unless asked for more
    setup_logging(verbose=verbose, quiet_logs=not verbose)


def _exit_with(code: int) -> NoReturn:
    """Flush buffered JSON (agent mode) and exit."""
    output_mode.flush_json()
    raise typer.Exit(code)


def _load_settings(config: Path) -> WatcherConfig:
    """Load config for commands that never call the model (no API keys needed)."""
    try:
        return load_watcher_config(config)
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
    except ConfigValidationError as e:
        error(f"Configuration validation failed: {e}")
    _exit_with(EXIT_CONFIG_ERROR)


def _init_db(db_path: str) -> None:
    try:
        init_db_if_needed(db_path)
    except DatabaseError as e:
        error(f"Failed to initialize database: {e}")
        _exit_with(EXIT_DB_ERROR)


def parse_query_option(value: str, default_times: int) -> dict:
    """
    Parse a --query value: "ID" or "ID:TIMES".

    Raises:
        typer.BadParameter: If TIMES is not an integer
    """
    query_id, sep, times = value.partition(":")
    if not sep:
        return {"id": query_id, "times": default_times}
    try:
        return {"id": query_id, "times": int(times)}
    except ValueError:
        raise typer.BadParameter(f"times must be an integer in {value!r}") from None


@app.command()
def run(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        dir_okay=False,
    ),
    company: str = typer.Option(
        None,
        "--company",
        help="Only run this company's queries (default: every query in the store)",
    ),
    query: list[str] = typer.Option(
        None,
        "--query",
        help="Query to run as ID or ID:TIMES (repeatable; default: all queries)",
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output (tab-separated values)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
):
    """
    Run monitored queries and store one analysed answer per run.

    This command will:
    1. Load your configuration and resolve API keys
    2. Ask the answer engine each query TIMES times (default from config)
    3. Extract competitor mentions, positions and sentiment from each answer
    4. Save every analysed answer to the SQLite store

    Individual failed runs or writes do not fail the command; they are
    listed in the summary.

    Exit codes:
      0: Batch completed
      1: Configuration error or invalid --query
      2: Database error
      4: Batch failed

    Examples:
      llm-visibility run --config visibility.config.yaml
      llm-visibility run -c visibility.config.yaml --company u1 --query q1:3 --query q2
      llm-visibility run -c visibility.config.yaml --format json
    """
    _set_output(format, quiet, verbose)
    print_banner(_read_version())

    try:
        with spinner("Loading configuration..."):
            runtime_config = load_config(config)
        success(
            f"Loaded config (answers: {runtime_config.answer_engine.model_name}, "
            f"extraction: {runtime_config.extraction.model_name})"
        )
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except APIKeyMissingError as e:
        error(f"API key missing: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except ConfigValidationError as e:
        error(f"Configuration validation failed: {e}")
        _exit_with(EXIT_CONFIG_ERROR)

    run_settings = runtime_config.run_settings
    query_configs: list[QueryRunConfig] | None = None
    if query:
        try:
            query_configs = coerce_query_configs(
                [parse_query_option(q, run_settings.default_times) for q in query]
            )
        except (typer.BadParameter, ValueError) as e:
            error(f"Invalid --query: {e}")
            _exit_with(EXIT_CONFIG_ERROR)

        too_many = [c.id for c in query_configs if c.times > run_settings.max_times]
        if too_many:
            error(
                f"Run count above max_times ({run_settings.max_times}) "
                f"for: {', '.join(too_many)}"
            )
            _exit_with(EXIT_CONFIG_ERROR)

    try:
        with spinner("Running queries..."):
            result = asyncio.run(
                run_pipeline(runtime_config, query_configs=query_configs, company_id=company)
            )
    except DatabaseError as e:
        error(f"Database error: {e}")
        _exit_with(EXIT_DB_ERROR)

    # Prints (or flushes, in JSON mode) the error when the batch failed
    print_process_summary(result)

    if not result.success:
        raise typer.Exit(EXIT_PIPELINE_FAILURE)

    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def report(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    company: str = typer.Option(..., "--company", help="Company id (owner's user id)"),
    query: str = typer.Option(None, "--query", help="Only show rankings for this query"),
    target: str = typer.Option(
        None,
        "--target",
        help="Company slug to measure (default: the company's own slug)",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Directory for the HTML report (default: storage.output_dir)",
    ),
    no_html: bool = typer.Option(False, "--no-html", help="Skip writing the HTML report"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output"),
):
    """
    Show a company's visibility overview and per-query rankings.

    Statistics are recomputed from the stored answers on every call.

    Examples:
      llm-visibility report -c visibility.config.yaml --company u1
      llm-visibility report -c visibility.config.yaml --company u1 --query q1 --target rival
    """
    _set_output(format, quiet)
    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)

    try:
        data = build_report_data(
            settings.storage.sqlite_db_path, company, query_id=query, target=target
        )
    except InvalidDocumentPathError as e:
        error(f"Invalid id: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except DocumentNotFoundError as e:
        error(str(e))
        _exit_with(EXIT_DB_ERROR)
    except DatabaseError as e:
        error(f"Database error: {e}")
        _exit_with(EXIT_DB_ERROR)

    print_company_overview(data.company.name, data.overview)
    for query_record, aggregate_result in data.queries:
        print_query_rankings(query_record, aggregate_result)

    if not no_html:
        output_dir = str(output) if output else settings.storage.output_dir
        try:
            path = write_report(output_dir, data)
        except (OSError, ValueError) as e:
            error(f"Failed to write HTML report: {e}")
            _exit_with(EXIT_CONFIG_ERROR)
        if output_mode.is_agent():
            output_mode.add_json("report_path", path)
        else:
            info(f"HTML report: {path}")

    _exit_with(EXIT_SUCCESS)


@app.command()
def export(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    company: str = typer.Option(..., "--company", help="Company id (owner's user id)"),
    output: Path = typer.Option(..., "--output", "-o", help="Output file path"),
    query: str = typer.Option(None, "--query", help="Only export this query"),
    format: str = typer.Option(
        None,
        "--format",
        "-f",
        help="File format: 'csv' or 'json' (default: from the output extension)",
    ),
    rankings: bool = typer.Option(
        False,
        "--rankings",
        help="Export the aggregated rankings of --query instead of answers (JSON)",
    ),
    target: str = typer.Option(None, "--target", help="Company slug to flag"),
):
    """
    Export a company's answers to CSV or JSON.

    Examples:
      llm-visibility export -c visibility.config.yaml --company u1 -o answers.csv
      llm-visibility export -c visibility.config.yaml --company u1 -o q1.json --query q1 --rankings
    """
    from llm_visibility.storage.exporter import (
        export_answers_csv,
        export_answers_json,
        export_rankings_json,
    )

    _set_output("text")
    file_format = (format or output.suffix.lstrip(".")).lower()
    if file_format not in ("csv", "json"):
        error("Export format must be 'csv' or 'json' (use --format or a .csv/.json file)")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    if rankings and (query is None or file_format != "json"):
        error("--rankings needs --query and JSON output")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)
    db_path = settings.storage.sqlite_db_path

    try:
        with spinner(f"Exporting to {output}..."):
            if rankings:
                payload = export_rankings_json(str(output), db_path, company, query, target)
                count = len(payload["competitors"])
            elif file_format == "csv":
                count = export_answers_csv(str(output), db_path, company, query, target)
            else:
                count = export_answers_json(str(output), db_path, company, query, target)
    except InvalidDocumentPathError as e:
        error(f"Invalid id: {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    except (DatabaseError, OSError) as e:
        error(f"Export failed: {e}")
        raise typer.Exit(EXIT_DB_ERROR)

    noun = "competitors" if rankings else "answers"
    success(f"Exported {count} {noun} to {output}")
    raise typer.Exit(EXIT_SUCCESS)


@app.command()
def validate(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """
    Validate configuration file without executing queries.

    Checks:
    - YAML syntax is valid
    - Field values pass validation rules
    - API key environment variables are set

    Exit codes:
      0: Configuration is valid
      1: Configuration is invalid
    """
    _set_output(format)

    error_type = None
    try:
        with spinner("Validating configuration..."):
            runtime_config = load_config(config)
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
        error_type = "file_not_found"
    except APIKeyMissingError as e:
        error(f"API key missing: {e}")
        error_type = "api_key_missing"
    except ConfigValidationError as e:
        error(f"Validation failed: {e}")
        error_type = "validation_error"

    if error_type is not None:
        output_mode.add_json("valid", False)
        output_mode.add_json("error_type", error_type)
        _exit_with(EXIT_CONFIG_ERROR)

    success("Configuration is valid")
    info(f"Answer engine: {runtime_config.answer_engine.model_name}")
    info(f"Extraction: {runtime_config.extraction.model_name}")
    info(f"Database: {runtime_config.storage.sqlite_db_path}")
    info(
        f"Runs per query: {runtime_config.run_settings.default_times}, "
        f"{runtime_config.run_settings.max_concurrent_queries} queries at a time"
    )

    output_mode.add_json("valid", True)
    output_mode.add_json("answer_model", runtime_config.answer_engine.model_name)
    output_mode.add_json("extraction_model", runtime_config.extraction.model_name)
    output_mode.add_json("default_times", runtime_config.run_settings.default_times)
    _exit_with(EXIT_SUCCESS)


@app.command()
def onboard(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    user: str = typer.Option(..., "--user", help="User id (becomes the company id)"),
    name: str = typer.Option(..., "--name", help="Company display name (3-50 characters)"),
    slug: str = typer.Option(..., "--slug", help="Company slug ([a-z0-9], at least 3)"),
    email: str = typer.Option("", "--email", help="Contact email"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """
    Register the company owned by a user.

    Examples:
      llm-visibility onboard -c visibility.config.yaml --user u1 --name "Saqr" --slug saqr
    """
    from llm_visibility.storage.repository import create_company

    _set_output(format)
    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)

    try:
        with open_connection(settings.storage.sqlite_db_path) as conn:
            create_company(conn, user, name, slug, email=email)
            session = Session.open(conn, user)
    except OnboardingError as e:
        error(f"Onboarding failed: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except DatabaseError as e:
        error(f"Database error: {e}")
        _exit_with(EXIT_DB_ERROR)

    company = session.require_company()
    success(f"Registered {company.name} ({company.slug}) for user {user}")
    output_mode.add_json("company", company.to_document() | {"id": company.id})
    _exit_with(EXIT_SUCCESS)


@query_app.command("add")
def query_add(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    company: str = typer.Option(..., "--company", help="Company id"),
    text: str = typer.Argument(..., help="Query text"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """Add a monitored query."""
    _set_output(format)
    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)

    try:
        with open_connection(settings.storage.sqlite_db_path) as conn:
            record = add_query(conn, company, text)
    except InvalidDocumentPathError as e:
        error(f"Invalid id: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except ValueError as e:
        error(str(e))
        _exit_with(EXIT_CONFIG_ERROR)
    except DatabaseError as e:
        error(str(e))
        _exit_with(EXIT_DB_ERROR)

    success(f"Added query {record.id}")
    output_mode.add_json("query", {"id": record.id, "query": record.text})
    _exit_with(EXIT_SUCCESS)


@query_app.command("list")
def query_list(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    company: str = typer.Option(..., "--company", help="Company id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Tab-separated output"),
):
    """List a company's monitored queries, oldest first."""
    _set_output(format, quiet)
    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)

    try:
        with open_connection(settings.storage.sqlite_db_path) as conn:
            queries = list_queries(conn, company)
    except InvalidDocumentPathError as e:
        error(f"Invalid id: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except DatabaseError as e:
        error(str(e))
        _exit_with(EXIT_DB_ERROR)

    print_queries(company, queries)
    raise typer.Exit(EXIT_SUCCESS)


@query_app.command("remove")
def query_remove(
    config: Path = typer.Option(..., "--config", "-c", help="Path to YAML configuration file"),
    company: str = typer.Option(..., "--company", help="Company id"),
    query_id: str = typer.Argument(..., help="Query id"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: 'text' or 'json'"),
):
    """
    Remove a monitored query.

    Answers already recorded for it stay in the store.
    """
    _set_output(format)
    settings = _load_settings(config)
    _init_db(settings.storage.sqlite_db_path)

    try:
        with open_connection(settings.storage.sqlite_db_path) as conn:
            removed = remove_query(conn, company, query_id)
    except InvalidDocumentPathError as e:
        error(f"Invalid id: {e}")
        _exit_with(EXIT_CONFIG_ERROR)
    except DatabaseError as e:
        error(str(e))
        _exit_with(EXIT_DB_ERROR)

    if not removed:
        error(f"Query not found: {company}/{query_id}")
        _exit_with(EXIT_DB_ERROR)

    success(f"Removed query {query_id}")
    output_mode.add_json("removed", query_id)
    _exit_with(EXIT_SUCCESS)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    LLM Visibility - measure your company's presence in AI answers.

    Runs your monitored queries against a search-grounded answer engine,
    extracts which companies each answer mentions, and ranks them by
    visibility, position and sentiment.

    Use 'llm-visibility COMMAND --help' for detailed command documentation.
    """
    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]llm-visibility[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  llm-visibility onboard -c visibility.config.yaml --user u1 --name Saqr --slug saqr")
        console.print('  llm-visibility query add -c visibility.config.yaml --company u1 "best payment gateway"')
        console.print("  llm-visibility run -c visibility.config.yaml --company u1")
        console.print("  llm-visibility report -c visibility.config.yaml --company u1")


def _read_version() -> str:
    """Read version from package metadata (pyproject.toml)."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("llm-visibility")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
