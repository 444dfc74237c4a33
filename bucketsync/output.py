"""Console output formatting for bucketsync."""

import json
from typing import Any, Optional

from rich.console import Console


class OutputFormatter:
    """Renders messages, summaries and JSON documents on the console."""

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        """Initialize the output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
            console: Console to write to (stdout by default)
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False)
        self.err_console = Console(stderr=True, highlight=False)

    def print(self, message: str = "", style: Optional[str] = None) -> None:
        """Print a plain message unless in quiet or JSON mode."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, style=style, markup=False)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        """Print a warning in yellow (to stderr)."""
        if self.json_output:
            return
        self.err_console.print(message, style="yellow", markup=False)

    def error(self, message: str) -> None:
        """Print an error in red (to stderr); never suppressed."""
        self.err_console.print(f"Error: {message}", style="bold red", markup=False)

    def output_json(self, data: Any) -> None:
        """Print a JSON document (always, even in quiet mode)."""
        self.console.print_json(json.dumps(data, default=str))
