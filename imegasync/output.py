"""Console output formatting for the CLI."""

import json
from typing import Any, Iterable

from rich.console import Console
from rich.table import Table

from .sync.activity import ActivityKind, SyncActivity


class OutputFormatter:
    """Formats CLI output as rich text or JSON."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def print(self, message: str = "") -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if not self.json_output:
            self.err_console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        """Errors are shown even in quiet mode."""
        self.err_console.print(f"[red]{message}[/red]")

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: Iterable[tuple[str, str]]) -> None:
        """Print a two-column key/value table.

        Args:
            title: Table title
            items: (label, value) pairs
        """
        items = list(items)
        if self.json_output:
            self.output_json({label: value for label, value in items})
            return
        if self.quiet:
            return
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for label, value in items:
            table.add_row(label, value)
        self.console.print(table)

    def print_activities(self, activities: list[SyncActivity]) -> None:
        """Print the activity feed (newest first)."""
        if self.json_output:
            self.output_json([activity.to_dict() for activity in activities])
            return
        if self.quiet or not activities:
            return
        table = Table(title="Recent activity")
        table.add_column("Time")
        table.add_column("Action")
        table.add_column("File")
        table.add_column("Details")
        styles = {
            ActivityKind.UPLOADED: "cyan",
            ActivityKind.DOWNLOADED: "green",
            ActivityKind.DELETED: "magenta",
            ActivityKind.ERROR: "red",
        }
        for activity in activities:
            style = styles[activity.kind]
            table.add_row(
                activity.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{activity.kind.value}[/{style}]",
                activity.file_name,
                activity.message or "",
            )
        self.console.print(table)
