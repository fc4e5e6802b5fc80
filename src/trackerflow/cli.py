# src/trackerflow/cli.py
"""trackerflow Command Line Interface.

Entry point for the trackerflow CLI tool. Every command reads a tracker
document (JSON) and prints its result as JSON on stdout; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Literal

import structlog
import typer

from trackerflow import __version__
from trackerflow.contracts.errors import DefinitionError, SettingsError
from trackerflow.contracts.tracker import TrackerSchema
from trackerflow.core.config import TrackerflowSettings, load_settings
from trackerflow.core.logging import command_context, configure_logging

__all__ = ["app"]

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="trackerflow",
    help="trackerflow: expressions, validation, calculations and dynamic options for tracker schemas.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"trackerflow version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """trackerflow: expressions, validation, calculations and dynamic options for tracker schemas."""
    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


def _format_error(title: str, message: str, hint: str | None = None, details: list[str] | None = None) -> None:
    """Display a formatted error with optional hint and details on stderr."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text

    console = Console(stderr=True)

    content = Text()
    content.append(message, style="white")

    if details:
        content.append("\n\n")
        for detail in details:
            content.append(f"  • {detail}\n", style="dim")

    if hint:
        content.append("\n")
        content.append("Hint: ", style="yellow bold")
        content.append(hint, style="yellow")

    console.print(Panel(content, title=f"[red bold]{title}[/]", border_style="red", padding=(0, 1)))


def _read_json_file(path: Path, what: str) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        _format_error("File Not Found", f"{what} file does not exist: {path}", hint="Check the path.")
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        _format_error("Invalid JSON", f"Failed to parse {path.name}", details=[str(e)])
        raise typer.Exit(1) from None


def _load_tracker(path: Path) -> TrackerSchema:
    data = _read_json_file(path, "Tracker")
    try:
        return TrackerSchema.from_dict(data)
    except DefinitionError as e:
        _format_error("Invalid Tracker", f"{path.name} is not a valid tracker document", details=[str(e)])
        raise typer.Exit(1) from None


def _load_settings(path: Path | None) -> TrackerflowSettings:
    try:
        return load_settings(path)
    except SettingsError as e:
        _format_error("Configuration Error", str(e), hint="Check field names, types, and required values.")
        raise typer.Exit(1) from None


def _parse_json_option(raw: str, option: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        _format_error("Invalid Option", f"{option} must be valid JSON", details=[raw])
        raise typer.Exit(1) from None


def _parse_value(raw: str) -> Any:
    """JSON when it parses, otherwise the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_row(raw: str | None) -> dict[str, Any]:
    if raw is None:
        return {}
    row = _parse_json_option(raw, "--row")
    if not isinstance(row, dict):
        _format_error("Invalid Option", "--row must be a JSON object")
        raise typer.Exit(1)
    return row


def _parse_args(raw_args: list[str]) -> dict[str, Any]:
    args: dict[str, Any] = {}
    for item in raw_args:
        key, sep, value = item.partition("=")
        if not sep or not key:
            _format_error("Invalid Option", f"--arg must be key=value, got {item!r}")
            raise typer.Exit(1)
        args[key] = _parse_value(value)
    return args


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command()
def validate(
    tracker: Path = typer.Argument(..., help="Path to tracker JSON document."),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json' (structured JSON).",
    ),
) -> None:
    """Validate a tracker document's layout, calculations, validations and dynamic options."""
    from trackerflow.engine.schema_validator import validate_tracker_document

    with command_context("validate", tracker=tracker.name):
        report = validate_tracker_document(_read_json_file(tracker, "Tracker"))
        logger.debug("tracker_validated", valid=report.valid, errors=len(report.errors), warnings=len(report.warnings))

        if output_format == "json":
            _echo_json({"valid": report.valid, "errors": list(report.errors), "warnings": list(report.warnings)})
        else:
            for warning in report.warnings:
                typer.secho(f"Warning: {warning}", fg=typer.colors.YELLOW, err=True)
            if report.valid:
                typer.echo(f"✅ Tracker {tracker.name} is valid.")
            else:
                _format_error(
                    "Tracker Validation Failed",
                    f"{len(report.errors)} error(s) in {tracker.name}",
                    details=list(report.errors),
                )

    if not report.valid:
        raise typer.Exit(1)


@app.command()
def calc(
    tracker: Path = typer.Argument(..., help="Path to tracker JSON document."),
    grid: str = typer.Option(..., "--grid", "-g", help="Grid whose calculations to apply."),
    row: str = typer.Option(..., "--row", "-r", help="Row values as a JSON object."),
    changed: list[str] | None = typer.Option(
        None,
        "--changed",
        "-c",
        help="Changed field id (repeatable). Omit to recompute every target.",
    ),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Apply a grid's calculations to one row."""
    from trackerflow.engine.calculation import CalculationEngine

    with command_context("calc", tracker=tracker.name, grid_id=grid):
        schema = _load_tracker(tracker)
        if grid not in schema.grids_by_id:
            _format_error("Unknown Grid", f'Grid "{grid}" not found in {tracker.name}')
            raise typer.Exit(1)

        engine = CalculationEngine.from_settings(_load_settings(settings))
        result = engine.apply_calculations(grid, _parse_row(row), schema.calculations, changed or None)
        logger.debug(
            "calculations_applied",
            updated=list(result.updated_field_ids),
            skipped_cyclic=list(result.skipped_cyclic_targets),
        )
        _echo_json(result.to_dict())


@app.command()
def check(
    tracker: Path = typer.Argument(..., help="Path to tracker JSON document."),
    grid: str = typer.Option(..., "--grid", "-g", help="Grid the field is placed in."),
    field: str = typer.Option(..., "--field", help="Field id to validate."),
    value: str = typer.Option(..., "--value", help="Value to check (JSON, or a plain string)."),
    row: str | None = typer.Option(None, "--row", "-r", help="Other row values as a JSON object."),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Check one value against a field's validation rules.

    Exits with code 1 when the value fails validation.
    """
    from trackerflow.engine.validation import ValidationPlanner

    with command_context("check", tracker=tracker.name, grid_id=grid, field_id=field):
        schema = _load_tracker(tracker)
        if field not in schema.fields_by_id:
            _format_error("Unknown Field", f'Field "{field}" not found in {tracker.name}')
            raise typer.Exit(1)

        planner = ValidationPlanner.from_settings(_load_settings(settings))
        plan = planner.compile_for_field(schema, grid, field)
        error = planner.check(plan, _parse_value(value), _parse_row(row))
        logger.debug("field_checked", valid=error is None)
        _echo_json({"field": f"{grid}.{field}", "valid": error is None, "error": error})

    if error is not None:
        raise typer.Exit(1)


@app.command()
def options(
    tracker: Path = typer.Argument(..., help="Path to tracker JSON document."),
    function: str = typer.Option(..., "--function", "-F", help="Builtin or tracker-local function id."),
    grid_data: Path | None = typer.Option(
        None,
        "--grid-data",
        help="JSON file mapping grid ids to row lists.",
    ),
    allow_http: bool = typer.Option(
        False,
        "--allow-http",
        help="Allow http_get sources to call out (secrets come from the environment).",
    ),
    arg: list[str] | None = typer.Option(
        None,
        "--arg",
        "-a",
        help="Function argument as key=value (repeatable; values parsed as JSON when possible).",
    ),
    settings: Path | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
) -> None:
    """Resolve a dynamic-options function and print the options."""
    from trackerflow.options.context import OptionsContext
    from trackerflow.options.resolver import DynamicOptionsResolver
    from trackerflow.options.secrets import env_secret_resolver

    with command_context("options", tracker=tracker.name, function_id=function):
        schema = _load_tracker(tracker)
        config = _load_settings(settings)

        rows: dict[str, Any] = {}
        if grid_data is not None:
            rows = _read_json_file(grid_data, "Grid data")
            if not isinstance(rows, dict):
                _format_error("Invalid Grid Data", f"{grid_data.name} must map grid ids to row lists")
                raise typer.Exit(1)

        resolver = DynamicOptionsResolver(
            config,
            secret_resolver=env_secret_resolver(config.options.secret_env_prefix),
            allow_http_get=allow_http,
        )
        result = asyncio.run(resolver.resolve(function, OptionsContext(schema, rows), _parse_args(arg or [])))
        _echo_json(result.to_dict())

    if not result.options and result.warnings:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
