"""Output formatting utilities using Rich."""

import json
from enum import Enum
from typing import Any

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Supported output formats."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"
    RAW = "raw"


class OutputFormatter:
    """Renders command results on stdout and errors on stderr."""

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TABLE,
        color: bool = True,
        quiet: bool = False,
    ):
        self.format = format
        self.color = color
        self.quiet = quiet
        self._console = Console(no_color=not color, highlight=color)

    def print(self, message: str, style: str | None = None) -> None:
        """Print a message to stdout."""
        if self.quiet:
            return
        self._console.print(message, style=style)

    def print_error(self, message: str) -> None:
        """Print an error message to stderr. Shown even when quiet."""
        error_console.print(f"[red]Error:[/red] {message}")

    def print_success(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[green]✓[/green] {message}")

    def print_info(self, message: str) -> None:
        if self.quiet:
            return
        self._console.print(f"[blue]ℹ[/blue] {message}")

    def print_data(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        """Print data in the configured format."""
        if self.format == OutputFormat.JSON:
            self._print_json(data)
        elif self.format == OutputFormat.YAML:
            self._print_yaml(data)
        elif self.format == OutputFormat.RAW:
            self._print_raw(data)
        else:
            self._print_table(data, headers, title)

    def print_outcome(self, title: str, fields: dict[str, Any], success: bool) -> None:
        """Print the result of a deploy or rollback.

        Machine formats get the plain fields; the table format boxes them in
        a panel bordered green or red by outcome.
        """
        if self.format != OutputFormat.TABLE:
            self.print_data(fields)
            return
        if self.quiet:
            return

        table = Table.grid(padding=(0, 2))
        table.add_column(style="dim")
        table.add_column()
        for key, value in fields.items():
            table.add_row(key.replace("_", " "), str(value) if value not in (None, "") else "-")

        self._console.print(
            Panel(
                table,
                title=title,
                title_align="left",
                border_style="green" if success else "red",
            )
        )

    def _print_json(self, data: Any) -> None:
        text = json.dumps(data, indent=2, default=str)
        if self.color:
            self._console.print(Syntax(text, "json", theme="monokai"))
        else:
            print(text)

    def _print_yaml(self, data: Any) -> None:
        text = yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        if self.color:
            self._console.print(Syntax(text, "yaml", theme="monokai"))
        else:
            print(text)

    def _print_raw(self, data: Any) -> None:
        if isinstance(data, list):
            for item in data:
                print("\t".join(str(v) for v in item.values()) if isinstance(item, dict) else item)
        elif isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}={value}")
        else:
            print(data)

    def _print_table(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        if isinstance(data, dict):
            table = Table(title=title, show_header=True, header_style="bold cyan")
            table.add_column("Field", style="dim")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(str(key), str(value))
            self._console.print(table)
        elif data:
            headers = headers or list(data[0].keys())
            table = Table(title=title, show_header=True, header_style="bold cyan")
            for header in headers:
                table.add_column(header)
            for row in data:
                table.add_row(*[str(row.get(h, "")) for h in headers])
            self._console.print(table)
        else:
            self._console.print("[dim]No data to display[/dim]")


def format_duration(seconds: float) -> str:
    """Format seconds as 42s, 3m 05s or 1h 02m."""
    total = int(round(seconds))
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"
