"""Output formatters for console and JSON display."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

if TYPE_CHECKING:
    from .core import RepoError, ReportGroup, StatusFlags

# Space between the longest repository name and the branch column
NAME_PADDING = 5


def status_color(status: StatusFlags) -> str:
    """Color for a status group, keyed on its most severe flag."""
    from .core import StatusFlags

    if status & StatusFlags.UNCOMMITTED_CHANGES:
        return "red"
    if status & StatusFlags.INCOMING_CHANGES:
        return "blue"
    if status & StatusFlags.OUTGOING_CHANGES:
        return "yellow"
    return "green"


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def print_message(self, message: str):
        """Print a status line (suppressed in JSON mode)."""
        if not self.use_json:
            self.console.print(escape(message))

    @contextmanager
    def progress(self, total: int) -> Iterator[Callable[[int, int], None] | None]:
        """Show a progress bar while repositories are compared.

        Yields a callback taking (completed, total), or None when there is
        nothing to display.
        """
        if self.use_json or total == 0:
            yield None
            return

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=self.console,
        ) as progress:
            task = progress.add_task("Comparing repos...", total=total)

            def on_progress(completed: int, total: int) -> None:
                progress.update(task, completed=completed, total=total)

            yield on_progress

    def print_report(
        self,
        groups: list[ReportGroup],
        errors: list[RepoError],
        root_path: Path,
    ):
        """Print the grouped report."""
        if self.use_json:
            self._print_report_json(groups, errors, root_path)
        else:
            self._print_report_tables(groups, errors, root_path)

    def _print_report_tables(
        self,
        groups: list[ReportGroup],
        errors: list[RepoError],
        root_path: Path,
    ):
        """Print one table per status group."""
        if not groups and not errors:
            self.console.print(f"[dim]No git repositories found in {escape(str(root_path))}[/]")
            return

        names = [repo.name for group in groups for repo in group.repos]
        name_width = max((len(name) for name in names), default=0) + NAME_PADDING

        for group in groups:
            color = status_color(group.status)
            self.console.print(f"[bold {color}]{group.label}[/]")

            table = Table(show_header=False, box=None, padding=(0, 0, 0, 3))
            table.add_column("Repository", style="cyan", no_wrap=True, min_width=name_width)
            table.add_column("Branch", style=color, no_wrap=True)

            for repo in group.repos:
                table.add_row(escape(repo.name), escape(repo.branch))

            self.console.print(table)
            self.console.print()

        if errors:
            self._print_errors(errors)

        self._print_summary(groups, errors)

    def _print_errors(self, errors: list[RepoError]):
        """Print repositories that could not be compared."""
        self.console.print("[bold red]Errors[/]")

        table = Table(show_header=False, box=None, padding=(0, 0, 0, 3))
        table.add_column("Repository", style="cyan", no_wrap=True)
        table.add_column("Error", style="red")

        for error in sorted(errors, key=lambda e: e.name):
            table.add_row(escape(error.name), escape(error.error))

        self.console.print(table)
        self.console.print()

    def _print_summary(self, groups: list[ReportGroup], errors: list[RepoError]):
        """Print totals per status group."""
        total = sum(len(group.repos) for group in groups) + len(errors)
        parts = [f"[bold]Total:[/] {total}"]
        for group in groups:
            color = status_color(group.status)
            parts.append(f"[{color}]{group.label}:[/] {len(group.repos)}")
        if errors:
            parts.append(f"[red]✗ Errors:[/] {len(errors)}")
        self.console.print(" | ".join(parts))

    def _print_report_json(
        self,
        groups: list[ReportGroup],
        errors: list[RepoError],
        root_path: Path,
    ):
        """Print the report as JSON."""
        output = {
            "root": str(root_path),
            "groups": [group.to_dict() for group in groups],
            "errors": [error.to_dict() for error in sorted(errors, key=lambda e: e.name)],
            "summary": {
                "total": sum(len(group.repos) for group in groups) + len(errors),
                "groups": {group.label: len(group.repos) for group in groups},
                "errors": len(errors),
            },
        }
        self.console.print_json(data=output)
