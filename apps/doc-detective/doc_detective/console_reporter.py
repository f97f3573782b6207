"""Console reporter that adapts to the terminal it writes to."""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from .aggregator import LEVELS
from .output_config import OutputFormat
from .results import FAIL, PASS, SKIPPED, WARNING

STATUS_STYLES = {PASS: "green", FAIL: "red", WARNING: "yellow", SKIPPED: "dim"}
STATUS_ICONS = {PASS: "✓", FAIL: "✗", WARNING: "!", SKIPPED: "-"}


def count_contexts(resolved_tests: dict[str, Any]) -> int:
    total = 0
    for spec in resolved_tests.get("specs") or []:
        for test in spec.get("tests") or []:
            total += len(test.get("contexts") or [None])
    return total


class ConsoleReporter:
    """
    Smart console reporter that adapts to environment.

    Automatically detects:
    - Interactive terminals (use rich with a progress bar)
    - CI/CD environments (use plain text)
    - Pipe/redirect scenarios (use plain text)

    JSON mode prints nothing while running and the summary as one JSON document.
    """

    def __init__(self, output_format: OutputFormat = OutputFormat.AUTO, console: Optional[Console] = None):
        self.output_format = output_format
        self._detect_environment()
        self.console = console or Console(highlight=False)
        self.progress: Optional[Progress] = None
        self.progress_task: Optional[TaskID] = None
        self.live: Optional[Live] = None
        self.results_table: Optional[Table] = None

    def _detect_environment(self) -> None:
        """Detect if we should use rich output or plain text."""
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:  # AUTO
            is_terminal = sys.stdout.isatty()
            is_ci = any(
                name in os.environ for name in ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS", "GITHUB_ACTIONS")
            )
            self.use_rich = is_terminal and not is_ci

    @property
    def quiet(self) -> bool:
        return self.output_format == OutputFormat.JSON

    def start_run(self, total_contexts: int) -> None:
        """Initialize the run display."""
        if self.quiet:
            return
        if self.use_rich:
            self.results_table = Table(show_header=True, header_style="bold cyan")
            self.results_table.add_column("Test", width=28)
            self.results_table.add_column("Context", width=28)
            self.results_table.add_column("Steps", justify="right", width=8)
            self.results_table.add_column("Result", width=12)

            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=self.console,
            )
            self.progress_task = self.progress.add_task("[cyan]Running contexts", total=total_contexts)
            self.live = Live(Group(self.progress, self.results_table), console=self.console, refresh_per_second=4)
            self.live.start()
        else:
            self.console.print(f"Running {total_contexts} context(s)")
            self.console.print("-" * 80)

    def report_context(self, spec: dict[str, Any], test: dict[str, Any], node: dict[str, Any]) -> None:
        """Report a finished context; fits ``SpecRunner(on_context_complete=...)``."""
        if self.quiet:
            return
        result = node.get("result", SKIPPED)
        browser = (node.get("browser") or {}).get("name")
        context_label = f"{node.get('platform') or 'any'}/{browser}" if browser else str(node.get("platform") or "any")
        steps = node.get("steps") or []
        failed_step = next((step for step in steps if step.get("result") == FAIL), None)
        reason = failed_step.get("resultDescription") if failed_step else None
        if result == SKIPPED and not steps:
            reason = node.get("resultDescription")

        if self.use_rich and self.results_table is not None:
            status_text = Text(f"{STATUS_ICONS.get(result, '?')} {result}", style=STATUS_STYLES.get(result, "white"))
            self.results_table.add_row(str(test.get("testId")), context_label, str(len(steps)), status_text)
            if reason:
                self.results_table.add_row("", Text(str(reason), style=STATUS_STYLES.get(result, "white")), "", "")
            if self.progress is not None and self.progress_task is not None:
                self.progress.update(self.progress_task, advance=1)
        else:
            line = f"{STATUS_ICONS.get(result, '?')} {result:<8} {test.get('testId')} [{context_label}]"
            self.console.print(line, markup=False)
            if reason:
                self.console.print(f"  {reason}", markup=False)

    def finish_run(self, summary: dict[str, dict[str, int]], duration_ms: float) -> None:
        """Display the final four-level summary."""
        if self.quiet:
            self.console.print_json(json.dumps({"summary": summary, "durationMs": round(duration_ms)}))
            return

        failed = any(summary[level]["fail"] for level in LEVELS)
        if self.use_rich:
            if self.live:
                self.live.stop()
            table = Table(show_header=True, header_style="bold cyan")
            table.add_column("Level")
            for key, style in (("pass", "green"), ("fail", "red"), ("warning", "yellow"), ("skipped", "dim")):
                table.add_column(key.capitalize(), justify="right", style=style)
            for level in LEVELS:
                counts = summary[level]
                table.add_row(
                    level.capitalize(),
                    str(counts["pass"]),
                    str(counts["fail"]),
                    str(counts["warning"]),
                    str(counts["skipped"]),
                )
            status = "✗ SOME TESTS FAILED" if failed else "✓ ALL TESTS PASSED"
            self.console.print()
            self.console.print(
                Panel(
                    Group(table, Text(f"Duration: {duration_ms:.0f}ms", style="bold cyan")),
                    title=Text(status, style="bold red" if failed else "bold green"),
                    border_style="red" if failed else "green",
                )
            )
        else:
            self.console.print("-" * 80)
            for level in LEVELS:
                counts = summary[level]
                self.console.print(
                    f"{level.capitalize():<9} pass: {counts['pass']} | fail: {counts['fail']} | "
                    f"warning: {counts['warning']} | skipped: {counts['skipped']}"
                )
            self.console.print(f"Duration: {duration_ms:.0f}ms")
            self.console.print("✗ SOME TESTS FAILED" if failed else "✓ ALL TESTS PASSED")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        if self.use_rich:
            self.console.print(f"[bold red]Error:[/] {message}")
        else:
            self.console.print(f"Error: {message}", markup=False)

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.quiet:
            return
        if self.use_rich:
            self.console.print(f"[cyan]{message}[/]")
        else:
            self.console.print(message, markup=False)
