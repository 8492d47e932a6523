"""``kion-cli login`` -- authenticate and cache the session."""

from __future__ import annotations

import typer

from kioncli.auth.manager import create_default_orchestrator
from kioncli.commands.common import build_context
from kioncli.output import debug, success

_SOURCES = {
    "config": "configured API key",
    "session": "cached session",
    "refresh": "renewed session",
    "api-key": "API key",
    "password": "username and password",
    "saml": "SAML",
}


def login_command(ctx: typer.Context) -> None:
    """Authenticate with Kion, reusing a cached session when one is valid.

    Example::

        kion-cli --url https://kion.example.com login
    """
    auth_ctx = build_context(ctx)
    resolved = create_default_orchestrator(auth_ctx).resolve_token()
    debug(f"Token source: {resolved.source}")
    success(f"Authenticated with {_SOURCES.get(resolved.source, resolved.source)}.")
