"""``kion-cli stak`` -- print short-term access keys for a cloud access role.

A cached STAK is reused when it outlives the validity buffer of the
requested output mode; otherwise a new one is issued and cached.

Typical use::

    eval "$(kion-cli stak --car Admin --account 123456789012)"

    # ~/.aws/config
    [profile prod]
    credential_process = kion-cli stak --car Admin --alias prod --credential-process
"""

from __future__ import annotations

import json
import sys
from typing import Optional

import typer

from kioncli.auth.manager import create_default_orchestrator
from kioncli.commands.common import build_context
from kioncli.exceptions import InvalidUsageError
from kioncli.models import STAK
from kioncli.output import debug, print_data
from kioncli.validity import Action, buffer_for, stak_is_usable


def format_exports(stak: STAK, region: Optional[str] = None) -> str:
    """Shell ``export`` lines for *stak* (``SET`` on Windows)."""
    export = "SET" if sys.platform.startswith("win") else "export"
    lines = []
    if region:
        lines.append(f"{export} AWS_REGION={region}")
    lines += [
        f"{export} AWS_ACCESS_KEY_ID={stak.access_key}",
        f"{export} AWS_SECRET_ACCESS_KEY={stak.secret_access_key}",
        f"{export} AWS_SESSION_TOKEN={stak.session_token}",
    ]
    return "\n".join(lines)


def format_credential_process(stak: STAK) -> str:
    """JSON document in the AWS ``credential_process`` format."""
    expiration = stak.expiration.isoformat() if stak.expiration else ""
    return json.dumps(
        {
            "Version": 1,
            "AccessKeyId": stak.access_key,
            "SecretAccessKey": stak.secret_access_key,
            "SessionToken": stak.session_token,
            "Expiration": expiration,
        },
        indent=2,
    )


def stak_command(
    ctx: typer.Context,
    car: str = typer.Option(..., "--car", "-c", help="Cloud access role name."),
    account: str = typer.Option("", "--account", "-a", help="Account number."),
    alias: str = typer.Option("", "--alias", help="Account alias."),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="Also export AWS_REGION."),
    print_exports: bool = typer.Option(False, "--print", "-p", help="Print export lines (default)."),
    credential_process: bool = typer.Option(
        False, "--credential-process", help="Print AWS credential_process JSON."
    ),
) -> None:
    """Print short-term access keys for a cloud access role."""
    if not account and not alias:
        raise InvalidUsageError("Pass --account or --alias")
    if print_exports and credential_process:
        raise InvalidUsageError("--print and --credential-process are mutually exclusive")
    action = Action.CREDENTIAL_PROCESS if credential_process else Action.PRINT

    auth_ctx = build_context(ctx)
    stak, found = auth_ctx.cache.get_stak(car, account, alias)
    if found and stak_is_usable(stak, buffer_for(action)):
        debug("Using cached STAK")
    else:
        token = create_default_orchestrator(auth_ctx).resolve_token().token
        with auth_ctx.client(token) as client:
            stak = client.get_stak(car, account, alias)
        auth_ctx.cache.set_stak(car, account, alias, stak)

    if credential_process:
        print_data(format_credential_process(stak))
    else:
        print_data(format_exports(stak, region))
