"""``kion-cli flush-cache`` -- forget every cached STAK, session and password."""

from __future__ import annotations

import typer

from kioncli.commands.common import build_context
from kioncli.output import success


def flush_cache_command(ctx: typer.Context) -> None:
    """Empty the credential cache."""
    build_context(ctx).cache.flush()
    success("Cache flushed.")
