"""Helpers shared by the sub-commands: effective config and auth context."""

from __future__ import annotations

import os
from typing import Any

import typer

from kioncli.auth.base import AuthContext
from kioncli.cache.cache import open_cache
from kioncli.cache.store import open_store
from kioncli.config import get_data_dir, resolve_config
from kioncli.prompts import Prompter

PASSPHRASE_ENV = "KION_CACHE_PASSPHRASE"


def _passphrase_func(prompter: Prompter):
    def passphrase() -> str:
        return os.environ.get(PASSPHRASE_ENV) or prompter.password("Cache passphrase:")

    return passphrase


def build_context(ctx: typer.Context) -> AuthContext:
    """Resolve config from the root options and open the cache it selects."""
    overrides: dict[str, Any] = (ctx.obj or {}).get("overrides", {})
    config = resolve_config(overrides)
    prompter = Prompter()
    store = open_store(config.secret_backend, get_data_dir(), _passphrase_func(prompter))
    cache = open_cache(store, disabled=config.disable_cache)
    return AuthContext(config=config, cache=cache, prompter=prompter)
