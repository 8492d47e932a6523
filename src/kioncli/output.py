"""Terminal output for kion-cli: credentials on stdout, everything else on stderr.

stdout is parsed by machines (``eval "$(kion-cli stak ...)"`` or the AWS
SDK's ``credential_process`` hook), so only :meth:`OutputManager.print_data`
ever writes there. Status lines, warnings, errors and the SAML login URL go
to stderr, styled with Rich unless colour is off (``--no-color``,
``NO_COLOR`` or ``TERM=dumb``).

Commands use the module-level helpers (:func:`success`, :func:`warning`,
...), which forward to the manager installed by
:func:`~kioncli.app.main_callback` through :func:`set_output`.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from rich.console import Console
from rich.markup import escape


class OutputManager:
    """Holds the stderr console and the ``--quiet`` / ``--verbose`` switches.

    Args:
        no_color: Print plain text instead of Rich markup.
        quiet: Drop info and success lines. Warnings, errors and notices
            are always shown.
        verbose: Show debug lines.
    """

    def __init__(
        self,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._plain = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._console = Console(file=sys.stderr, stderr=True, no_color=self._plain, highlight=False)

    @property
    def is_quiet(self) -> bool:
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        return self._verbose

    def print_data(self, text: str) -> None:
        """Write credential material to stdout, unstyled."""
        print(text, file=sys.stdout, flush=True)

    def _emit(self, plain: str, styled: str) -> None:
        # styled carries markup around the escaped message
        if self._plain:
            print(plain, file=sys.stderr, flush=True)
        else:
            self._console.print(styled)

    def info(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, escape(message))

    def success(self, message: str) -> None:
        if not self._quiet:
            self._emit(message, f"[green]{escape(message)}[/green]")

    def warning(self, message: str) -> None:
        self._emit(f"Warning: {message}", f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self._emit(f"Error: {message}", f"[bold red]Error:[/bold red] {escape(message)}")

    def notice(self, message: str) -> None:
        """Text the user has to act on, such as a login URL. Survives ``--quiet``."""
        self._emit(message, f"[cyan]{escape(message)}[/cyan]")

    def debug(self, message: str) -> None:
        if self._verbose:
            self._emit(f"[debug] {message}", f"[dim]\\[debug] {escape(message)}[/dim]")


def _should_disable_color() -> bool:
    """True when ``NO_COLOR`` is set to anything or the terminal is ``dumb``."""
    return os.environ.get("NO_COLOR") is not None or os.environ.get("TERM") == "dumb"


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the installed :class:`OutputManager`, creating a default one on first use."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    """Forget the installed manager; the next :func:`get_output` builds a fresh one."""
    global _output
    _output = None


def print_data(text: str) -> None:
    get_output().print_data(text)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def notice(message: str) -> None:
    get_output().notice(message)


def debug(message: str) -> None:
    get_output().debug(message)
