"""Display of statistics assertion results using Rich."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from returns.maybe import Nothing
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stax.models import format_value

if TYPE_CHECKING:
    from stax.models import AssertionResult


def _status_display(status: str) -> str:
    status_style = "green bold" if status == "OK" else "red bold"
    return f"[{status_style}]{status}[/{status_style}]"


def _build_table(result: AssertionResult) -> Table:
    table = Table(title=escape(result.sql), show_lines=True)

    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Strategy", style="magenta")
    table.add_column("Estimated", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Status", style="bold")
    table.add_column("Detail", style="dim")

    for check in result.results:
        estimated = format_value(check.estimated)
        actual = format_value(check.actual)

        table.add_row(
            escape(check.metric.name),
            escape(check.strategy.name),
            f"[yellow]{estimated}[/yellow]" if check.estimated == Nothing else estimated,
            f"[yellow]{actual}[/yellow]" if check.actual == Nothing else actual,
            _status_display(check.status),
            escape(check.outcome.detail),
        )

    return table


def print_assertion_result(result: AssertionResult, console: Console | None = None) -> None:
    """
    Display the pairs of one statistics assertion in a formatted table.

    Shows one row per (metric, strategy) pair with the estimated and actual
    values. Absent values are highlighted in yellow, status is colored green
    for OK and red for FAILURE.

    Args:
        result: The assertion result to display
        console: Console to print to, a new one by default

    Example:
        >>> result = assertion.check("SELECT * FROM item", builder)
        >>> print_assertion_result(result)
    """
    console = console or Console()
    console.print(_build_table(result))


def print_assertion_results(results: Sequence[AssertionResult], console: Console | None = None) -> None:
    """
    Display several assertion results followed by a summary table.

    Args:
        results: Assertion results, typically one per query of a suite
        console: Console to print to, a new one by default
    """
    console = console or Console()
    for result in results:
        console.print(_build_table(result))

    passed = sum(1 for result in results if result.passed)
    failed = len(results) - passed

    summary = Table(title="Summary", show_header=True)
    summary.add_column("Status", style="bold")
    summary.add_column("Queries", justify="right")
    summary.add_row("[green]Passed ✓[/green]", f"[green]{passed}[/green]")
    summary.add_row("[red]Failed ✗[/red]", f"[red]{failed}[/red]")
    console.print(summary)
