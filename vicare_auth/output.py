"""Output formatters for human-readable and JSON CLI output."""

import json
import sys
from typing import Any

import click


def format_json(data: Any) -> str:
    """Format a successful result as JSON."""
    return json.dumps({"success": True, "data": data}, indent=2, default=str)


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON, including the provider's error body if any."""
    payload: dict[str, Any] = {
        "type": error_type or type(error).__name__,
        "message": str(error),
        "help": help_text or "",
    }

    body = getattr(error, "body", None)
    if body is not None:
        payload["body"] = body

    return json.dumps({"success": False, "error": payload}, indent=2, default=str)


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def status(self, message: str) -> None:
        """Progress message; goes to stderr so JSON output stays parseable."""
        click.echo(message, err=True)

    def success(self, data: Any, human_message: str | None = None) -> None:
        if self.json_mode:
            click.echo(format_json(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Report an error and exit with status 1."""
        if self.json_mode:
            click.echo(format_error_json(error, error_type, help_text))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)
