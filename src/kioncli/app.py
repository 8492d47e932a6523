"""The ``kion-cli`` command: root options, sub-commands, and process exit.

Root options override settings from the environment and config file (see
:func:`kioncli.config.resolve_config`); they are parked in ``ctx.obj`` and
picked up by :func:`kioncli.commands.common.build_context`.

:func:`main` is the console script. A :class:`~kioncli.exceptions.KionCliError`
is printed and mapped to its exit code; anything else leaves a traceback in
``<data dir>/logs`` and exits 1.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from kioncli import __version__
from kioncli.exceptions import KionCliError
from kioncli.exit_codes import EXIT_GENERIC_FAILURE
from kioncli.output import OutputManager, error, set_output

app = typer.Typer(
    name="kion-cli",
    help="Broker temporary cloud credentials from Kion.",
    no_args_is_help=True,
    add_completion=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Handle ``--version``."""
    if value:
        typer.echo(f"kion-cli {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Route library loggers to stderr through Rich; DEBUG with ``--verbose``."""
    root = logging.getLogger("kioncli")
    root.handlers.clear()
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    url: Optional[str] = typer.Option(None, "--url", help="Kion URL."),
    api_key: Optional[str] = typer.Option(None, "--api-key", "-k", help="Kion API key."),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Kion username."),
    password: Optional[str] = typer.Option(None, "--password", help="Kion password."),
    idms_id: Optional[int] = typer.Option(None, "--idms", help="IDMS id for password login."),
    saml_metadata_file: Optional[str] = typer.Option(
        None, "--saml-metadata-file", help="IDP metadata URL or file."
    ),
    saml_issuer: Optional[str] = typer.Option(
        None, "--saml-sp-issuer", help="SAML service provider issuer."
    ),
    saml_print_url: Optional[bool] = typer.Option(
        None, "--saml-print-url", help="Print the IDP login URL instead of opening a browser."
    ),
    disable_cache: Optional[bool] = typer.Option(
        None, "--disable-cache", help="Do not cache STAKs or passwords."
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Set up output and logging, then record the setting overrides for the sub-command."""
    set_output(OutputManager(no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "url": url,
        "api_key": api_key,
        "username": username,
        "password": password,
        "idms_id": idms_id,
        "saml_metadata_file": saml_metadata_file,
        "saml_issuer": saml_issuer,
        "saml_print_url": saml_print_url,
        "disable_cache": disable_cache,
    }


def register_commands() -> None:
    """Attach the built-in sub-commands to :data:`app`."""
    from kioncli.commands.cache import flush_cache_command
    from kioncli.commands.login import login_command
    from kioncli.commands.stak import stak_command

    app.command("login")(login_command)
    app.command("stak")(stak_command)
    app.command("flush-cache")(flush_cache_command)


register_commands()


def _setup_signal_handlers() -> None:
    """Exit with 130 on Ctrl-C instead of printing a traceback."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: BaseException) -> str:
    """Save the traceback of *exc* under the data directory; return the file path."""
    from kioncli.config import atomic_write, get_data_dir

    log_path = get_data_dir() / "logs" / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    atomic_write(log_path, "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return str(log_path)


def main() -> None:
    """Run the app and turn its outcome into a process exit status."""
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except KionCliError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception as exc:
        error(f"Unexpected error. Debug log: {_write_crash_log(exc)}")
        sys.exit(EXIT_GENERIC_FAILURE)
