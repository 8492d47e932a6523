"""Interactive terminal prompts.

All prompts are written to stderr so that stdout stays reserved for
credentials. Prompting without a terminal raises
:class:`~kioncli.exceptions.InvalidUsageError` instead of hanging, which
matters when the CLI runs as an AWS ``credential_process``.
"""

from __future__ import annotations

import sys

import typer

from kioncli.exceptions import InvalidUsageError


class Prompter:
    """typer-backed prompts. Tests substitute an object with the same methods."""

    def _require_tty(self, message: str) -> None:
        if not sys.stdin.isatty():
            raise InvalidUsageError(
                f"Cannot prompt for '{message.rstrip(':')}' without an interactive terminal"
            )

    def select(self, message: str, options: list[str]) -> str:
        """Ask the user to pick one of *options* by number."""
        if not options:
            raise InvalidUsageError(f"Nothing to choose from for '{message}'")
        self._require_tty(message)
        typer.echo(message, err=True)
        for idx, option in enumerate(options, start=1):
            typer.echo(f"  {idx}) {option}", err=True)
        while True:
            choice = typer.prompt("Selection", type=int, err=True)
            if 1 <= choice <= len(options):
                return options[choice - 1]
            typer.echo(f"Enter a number between 1 and {len(options)}", err=True)

    def input(self, message: str) -> str:
        """Ask for a required line of text."""
        self._require_tty(message)
        return typer.prompt(message.rstrip(":"), err=True).strip()

    def password(self, message: str) -> str:
        """Ask for a required secret without echoing it."""
        self._require_tty(message)
        return typer.prompt(message.rstrip(":"), hide_input=True, err=True)
