"""
CLI Reporter Module
===================

Rich terminal output for estimation runs.

This module creates terminal displays with:
- A header panel and run summary
- A line item table per scope unit
- Totals per plan
- Skipped scope units and degraded categories

Classes
-------
CLIReporter
    Main reporter class for terminal output.

Example
-------
>>> from posture_estimator.reporters import CLIReporter
>>>
>>> reporter = CLIReporter()
>>> reporter.report(summary)

See Also
--------
rich : Python library for rich text and formatting.
CSVReporter : For the billing CSV.
JSONReporter : For programmatic access.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from posture_estimator.core.models import EnvironmentType, ScopeUnit
from posture_estimator.core.plan_mapper import Billing, PlanRule
from posture_estimator.core.pool import ProgressCallback
from posture_estimator.core.results import RunSummary

# Module logger
logger = logging.getLogger(__name__)


class CLIReporter:
    """
    Reporter for displaying estimation results in the terminal.

    Parameters
    ----------
    console : Console, optional
        Rich Console instance. If not provided, creates a new one.

    Examples
    --------
    >>> reporter = CLIReporter()
    >>> reporter.report(summary)

    Displaying progress while scope units are processed:

    >>> with reporter.create_progress() as progress:
    ...     callback = reporter.progress_callback(progress, total=len(scopes))
    ...     summary = engine.run(progress_callback=callback)
    """

    def __init__(self, console: Optional[Console] = None) -> None:
        """Initialize the CLI reporter with a Rich Console."""
        self.console = console or Console()
        logger.debug("Initialized CLIReporter")

    def report(self, summary: RunSummary) -> None:
        """
        Display the results of a run.

        Parameters
        ----------
        summary : RunSummary
            Results of the run.
        """
        self._print_header(summary.environment, summary.scopes_discovered)
        self._print_summary(summary)

        if summary.line_items:
            self._print_line_items_table(summary)
            self._print_totals_table(summary.totals_by_plan())
        else:
            self.console.print("\n[yellow]No line items were produced.[/yellow]")

        self._print_problems(summary)

    # =========================================================================
    # Private Methods: Output Formatting
    # =========================================================================

    def _print_header(self, environment: EnvironmentType, scope_count: int) -> None:
        header_text = Text()
        header_text.append(f"\n{environment.value} Billable Unit Estimate\n", style="bold blue")
        header_text.append(f"Scope units: {scope_count}", style="dim")

        self.console.print(Panel(header_text, border_style="blue"))

    def _print_summary(self, summary: RunSummary) -> None:
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Scope Units Discovered:", str(summary.scopes_discovered))
        processed_style = "green" if not summary.failed_scopes else "yellow"
        table.add_row(
            "Scope Units Processed:",
            f"[{processed_style}]{len(summary.reports)}[/]",
        )
        table.add_row("Line Items:", str(len(summary.line_items)))
        table.add_row("Container Cores:", f"{summary.total_core_estimate:.2f}")
        table.add_row(
            "Started:",
            summary.started_at.strftime("%Y-%m-%d %H:%M:%S UTC"),
        )

        self.console.print("\n")
        self.console.print(table)

    def _print_line_items_table(self, summary: RunSummary) -> None:
        table = Table(title="\nPlan Line Items", title_style="bold", show_lines=False)

        table.add_column("Scope", style="cyan", no_wrap=True)
        table.add_column("Plan", style="white")
        table.add_column("Resources", justify="right")
        table.add_column("Billable Units", justify="right", style="green")

        previous = None
        for item in summary.line_items:
            scope_cell = item.scope_id if item.scope_id != previous else ""
            previous = item.scope_id
            units = item.billable_units
            table.add_row(
                scope_cell,
                item.plan_name.value,
                str(item.resources_count),
                f"{units:g}" if isinstance(units, float) else str(units),
            )

        self.console.print(table)

    def _print_totals_table(self, totals: Dict[str, int]) -> None:
        table = Table(title="\nResources by Plan", title_style="bold")
        table.add_column("Plan", style="white")
        table.add_column("Resources", justify="right", style="cyan")

        for plan, count in totals.items():
            table.add_row(plan, str(count))

        self.console.print(table)

    def _print_problems(self, summary: RunSummary) -> None:
        if summary.failed_scopes:
            self.console.print("\n[yellow bold]Skipped scope units:[/yellow bold]")
            for scope_id, error in sorted(summary.failed_scopes.items()):
                self.console.print(f"  [red]• {scope_id}: {error}[/red]")

        degraded = [r for r in summary.reports if r.degraded_categories]
        if degraded:
            self.console.print(
                "\n[yellow bold]Counted as 0 after errors:[/yellow bold]"
            )
            for report in degraded:
                categories = ", ".join(report.degraded_categories)
                self.console.print(f"  [yellow]• {report.scope.id}: {categories}[/yellow]")

    # =========================================================================
    # Public Methods: Listings
    # =========================================================================

    def print_scopes(self, environment: EnvironmentType, scopes: Sequence[ScopeUnit]) -> None:
        """Print the discovered scope units."""
        table = Table(title=f"\n{environment.value} Scope Units", title_style="bold")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="white")

        for scope in scopes:
            table.add_row(scope.id, scope.display_name)

        self.console.print(table)

    def print_plan_table(
        self,
        environment: EnvironmentType,
        rules: Tuple[PlanRule, ...],
    ) -> None:
        """Print which categories feed which plan."""
        table = Table(title=f"\n{environment.value} Plans", title_style="bold")
        table.add_column("Plan", style="white")
        table.add_column("Resource Categories", style="cyan")
        table.add_column("Billable Units", style="green")

        for rule in rules:
            units = "container cores" if rule.billing is Billing.CORES else "730 hours"
            table.add_row(rule.plan.value, ", ".join(rule.categories), units)

        self.console.print(table)

    # =========================================================================
    # Public Methods: Progress and Messages
    # =========================================================================

    def create_progress(self) -> Progress:
        """Create a progress bar for scope unit processing."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.console,
            transient=True,
        )

    @staticmethod
    def progress_callback(progress: Progress, total: Optional[int] = None) -> ProgressCallback:
        """
        Build a pool progress callback that advances ``progress``.

        Example
        -------
        >>> with reporter.create_progress() as progress:
        ...     engine.run(progress_callback=reporter.progress_callback(progress))
        """
        task = progress.add_task("Estimating...", total=total)

        def callback(label: str, status: str) -> None:
            if status == "scanning":
                progress.update(task, description=f"Estimating {label}")
            else:
                progress.advance(task)

        return callback

    def print_scanning_message(self, environment: EnvironmentType) -> None:
        self.console.print(
            f"\n[bold]Estimating billable units for {environment.value}...[/bold]"
        )

    def print_completion_message(self, output_file: Optional[str] = None) -> None:
        """
        Print run completion message.

        Parameters
        ----------
        output_file : str, optional
            Path to output file if results were saved.
        """
        self.console.print("\n[green bold]Estimate complete![/green bold]")
        if output_file:
            self.console.print(f"[dim]Results saved to: {output_file}[/dim]")

    def print_error(self, message: str) -> None:
        self.console.print(f"\n[red bold]Error:[/red bold] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"\n[yellow bold]Warning:[/yellow bold] {message}")

    def __repr__(self) -> str:
        """Return string representation."""
        return "CLIReporter()"
