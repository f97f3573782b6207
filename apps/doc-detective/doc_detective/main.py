"""Entry point for the doc-detective application."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer

if __package__ in {None, ""}:
    sys.path.append(str(Path(__file__).resolve().parents[1]))
    __package__ = "doc_detective"

from .aggregator import has_failures
from .config import load_config, log_level_for, set_config
from .console_reporter import ConsoleReporter, count_contexts
from .engine import SpecRunner
from .errors import ConfigurationError, RemoteRunError
from .files import qualify_files, parse_tests, read_file
from .logging_utils import configure_logging
from .output_config import get_log_format, get_output_format
from .remote import api_config_from_env, fetch_resolved_tests, report_results, run_via_api
from .resolver import resolve_tests
from .schemas import validate

app = typer.Typer(help="Detect, resolve and run tests embedded in documentation.")

LOG_LEVEL_HELP = "Logging detail: silent, error, warning, info or debug."


def _exit_on_configuration_error(exc: ConfigurationError) -> NoReturn:
    typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def _configure(
    config_path: Optional[Path],
    overrides: dict[str, Any],
    log_format: Optional[str],
) -> dict[str, Any]:
    configure_logging(log_level_for(overrides), get_log_format(log_format))
    try:
        raw, resolved_path = load_config(config_path, overrides)
        config = set_config(raw, resolved_path)
    except ConfigurationError as exc:
        _exit_on_configuration_error(exc)
    configure_logging(log_level_for(config), get_log_format(log_format))
    return config


def _detect(config: dict[str, Any]) -> list[dict[str, Any]]:
    return parse_tests(config, qualify_files(config))


def _load_resolved_tests(path: Path) -> dict[str, Any]:
    content = read_file(str(path))
    result = validate("resolvedTests_v3", content)
    if not result.valid:
        raise typer.BadParameter(f"{path} is not a valid resolved tests document: {result.errors}")
    return result.object


def _results_path(output: str) -> Path:
    target = Path(output)
    if target.suffix.lower() == ".json":
        target.parent.mkdir(parents=True, exist_ok=True)
        return target
    target.mkdir(parents=True, exist_ok=True)
    return target / f"testResults-{int(time.time() * 1000)}.json"


def _write_results(output: str, report: dict[str, Any]) -> Path:
    destination = _results_path(output)
    with destination.open("w", encoding="utf-8") as fp:
        json.dump(report, fp, indent=2, ensure_ascii=False)
    return destination


@app.command("run")
def run_tests(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config file."),
    inputs: Optional[list[Path]] = typer.Option(
        None, "--input", "-i", help="Files or directories to scan for tests. Repeatable."
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Results directory or .json file path."),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help=LOG_LEVEL_HELP),
    output_format: Optional[str] = typer.Option(
        None, "--output-format", help="Console output format: auto, rich, plain or json."
    ),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="Log format: console, plain or json."),
    allow_unsafe: Optional[bool] = typer.Option(
        None, "--allow-unsafe/--no-allow-unsafe", help="Run steps marked unsafe."
    ),
    resolved_tests_file: Optional[Path] = typer.Option(
        None, "--resolved-tests", exists=True, help="Run a resolved tests document instead of detecting tests."
    ),
) -> None:
    """Detect, resolve and run tests, then write the results report."""

    overrides = {
        "input": [str(path.resolve()) for path in inputs] if inputs else None,
        "output": str(Path(output).resolve()) if output else None,
        "logLevel": log_level,
        "allowUnsafeSteps": allow_unsafe,
    }
    settings = _configure(config, overrides, log_format)
    reporter = ConsoleReporter(output_format=get_output_format(output_format))

    api_config = api_config_from_env()
    try:
        if resolved_tests_file is not None:
            resolved_tests = _load_resolved_tests(resolved_tests_file)
        elif api_config is not None:
            resolved_tests = fetch_resolved_tests(api_config)
        else:
            resolved_tests = resolve_tests(settings, _detect(settings))
    except ConfigurationError as exc:
        _exit_on_configuration_error(exc)
    except RemoteRunError as exc:
        reporter.print_error(str(exc))
        raise typer.Exit(code=1) from exc

    if not resolved_tests or not resolved_tests.get("specs"):
        typer.secho("No tests detected.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=0)

    run_config = resolved_tests.get("config") or settings
    api_key = ((run_config.get("integrations") or {}).get("docDetectiveApi") or {}).get("apiKey")
    started = time.perf_counter()
    if api_key and api_config is None:
        reporter.print_info("Running tests through the Doc Detective API.")
        report = run_via_api(resolved_tests, api_key, max_wait=int(run_config.get("apiMaxWaitTime") or 600))
    else:
        reporter.start_run(count_contexts(resolved_tests))
        report = SpecRunner(resolved_tests, on_context_complete=reporter.report_context).run()
    duration_ms = (time.perf_counter() - started) * 1000

    summary = report.get("summary")
    if summary:
        reporter.finish_run(summary, duration_ms)
    else:
        reporter.print_error(f"Run did not produce a report: {json.dumps(report)}")

    if api_config is not None:
        try:
            report_results(api_config, report)
        except RemoteRunError as exc:
            reporter.print_error(str(exc))
            raise typer.Exit(code=1) from exc
    else:
        destination = _write_results(settings.get("output") or ".", report)
        reporter.print_info(f"Results saved -> {destination}")

    if not summary or has_failures(summary):
        raise typer.Exit(code=1)


@app.command()
def detect(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config file."),
    inputs: Optional[list[Path]] = typer.Option(None, "--input", "-i", help="Files or directories to scan."),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help=LOG_LEVEL_HELP),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="Log format: console, plain or json."),
) -> None:
    """Print the specs detected in the input files as JSON."""

    overrides = {"input": [str(path.resolve()) for path in inputs] if inputs else None, "logLevel": log_level}
    settings = _configure(config, overrides, log_format)
    typer.echo(json.dumps(_detect(settings), indent=2, ensure_ascii=False))


@app.command()
def resolve(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to a config file."),
    inputs: Optional[list[Path]] = typer.Option(None, "--input", "-i", help="Files or directories to scan."),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help=LOG_LEVEL_HELP),
    log_format: Optional[str] = typer.Option(None, "--log-format", help="Log format: console, plain or json."),
) -> None:
    """Print the resolved tests document as JSON."""

    overrides = {"input": [str(path.resolve()) for path in inputs] if inputs else None, "logLevel": log_level}
    settings = _configure(config, overrides, log_format)
    try:
        resolved_tests = resolve_tests(settings, _detect(settings))
    except ConfigurationError as exc:
        _exit_on_configuration_error(exc)
    if resolved_tests is None:
        typer.secho("No tests detected.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=0)
    typer.echo(json.dumps(resolved_tests, indent=2, ensure_ascii=False))


def run() -> None:
    """CLI entry point for console_scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
