"""Abstract base class for authentication methods.

This module defines the foundational types of the auth subsystem:

- :class:`AuthContext` -- everything a method needs to run: the effective
  configuration, the cache, the prompter, and a factory for API clients.
- :class:`ResolvedToken` -- the bearer token an orchestrator run produced
  and where it came from.
- :class:`AuthMethod` -- the abstract base class every interactive login
  strategy extends.

To add a login strategy, subclass :class:`AuthMethod`, set
:attr:`~AuthMethod.method_type` and :attr:`~AuthMethod.label`, implement
:meth:`~AuthMethod.authenticate`, and register it with
:class:`~kioncli.auth.manager.AuthOrchestrator`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from kioncli.cache.cache import Cache
from kioncli.client import KionClient
from kioncli.models import KionConfig
from kioncli.prompts import Prompter


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthContext:
    """Collaborators shared by all auth methods for one CLI invocation.

    Attributes:
        config: Effective configuration (flags > env > file).
        cache: STAK / session / password cache.
        prompter: Source of interactive input.
        client_factory: Builds a :class:`~kioncli.client.KionClient` for
            ``config.url``, optionally carrying a bearer token.
        clock: Current time, overridable in tests.
    """

    config: KionConfig
    cache: Cache
    prompter: Prompter = field(default_factory=Prompter)
    client_factory: Optional[Callable[[Optional[str]], KionClient]] = None
    clock: Callable[[], datetime] = _utc_now

    def client(self, token: Optional[str] = None) -> KionClient:
        """Return an (unopened) API client for the configured Kion URL."""
        if self.client_factory is not None:
            return self.client_factory(token)
        return KionClient(self.config.url, token=token)


@dataclass(frozen=True)
class ResolvedToken:
    """A usable bearer token and the path that produced it.

    ``source`` is one of ``"config"``, ``"session"``, ``"refresh"`` or the
    :attr:`~AuthMethod.method_type` of the method that ran.
    """

    token: str
    source: str


class AuthMethod(ABC):
    """Abstract base class for a way of obtaining a Kion bearer token."""

    @property
    @abstractmethod
    def method_type(self) -> str:
        """Unique identifier, e.g. ``"password"``."""
        ...

    @property
    @abstractmethod
    def label(self) -> str:
        """Name shown when the user is asked to pick a method."""
        ...

    @abstractmethod
    def authenticate(self, ctx: AuthContext) -> str:
        """Obtain a bearer token, persisting whatever session it creates.

        Raises:
            KionCliError: Any failure is surfaced unchanged; methods never
                retry.
        """
        ...
