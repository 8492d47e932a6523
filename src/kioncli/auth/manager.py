"""Auth orchestrator -- decides how a bearer token is obtained.

:class:`AuthOrchestrator` applies a fixed priority order and stops at the
first path that yields a token:

1. A static API key from flags, environment, or config.
2. A cached session whose access token has not expired.
3. (Opt-in) renewal of an expired session with its refresh token.
4. Username/password login, if a username or password was configured.
5. SAML login, if both the metadata source and SP issuer were configured.
6. Otherwise, the user picks a method interactively.

Methods are registered by :attr:`~kioncli.auth.base.AuthMethod.method_type`
in the same way plugins are registered with a manager. Call
:func:`create_default_orchestrator` for one with the built-in methods.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from kioncli.auth.base import AuthContext, AuthMethod, ResolvedToken
from kioncli.exceptions import AuthError
from kioncli.models import Session, as_utc

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Where a cached session stands relative to "now"."""

    ABSENT = "absent"
    VALID = "valid"
    EXPIRED = "expired"
    REFRESHABLE = "refreshable"


def session_state(
    session: Session,
    found: bool,
    now: datetime,
    check_refresh: bool = False,
) -> SessionState:
    """Classify a cached session.

    A session without an access expiry is treated as absent. The refresh
    token is only inspected when *check_refresh* is set, and only
    password sessions (which record their IDMS and username) can be
    renewed.

    Raises:
        SessionError: If an expiry that has to be inspected does not parse.
    """
    if not found or not session.access.expiry:
        return SessionState.ABSENT
    current = as_utc(now)
    if as_utc(session.access_expires_at()) > current:
        return SessionState.VALID
    if (
        check_refresh
        and session.refresh.token
        and session.refresh.expiry
        and session.idms_id
        and session.username
        and as_utc(session.refresh_expires_at()) > current
    ):
        return SessionState.REFRESHABLE
    return SessionState.EXPIRED


class AuthOrchestrator:
    """Resolve a Kion bearer token for the current invocation.

    Args:
        ctx: Shared collaborators (config, cache, prompter, client factory).

    Example::

        orchestrator = create_default_orchestrator(ctx)
        resolved = orchestrator.resolve_token()
        with KionClient(ctx.config.url, token=resolved.token) as client:
            ...
    """

    def __init__(self, ctx: AuthContext) -> None:
        self.ctx = ctx
        self._methods: dict[str, AuthMethod] = {}

    def register(self, method: AuthMethod) -> None:
        """Register *method*, replacing any method with the same type."""
        self._methods[method.method_type] = method

    def get_method(self, method_type: str) -> AuthMethod:
        """Return the registered method for *method_type*.

        Raises:
            AuthError: If no such method is registered.
        """
        method = self._methods.get(method_type)
        if method is None:
            available = ", ".join(sorted(self._methods)) or "(none)"
            raise AuthError(
                f"No auth method registered for type '{method_type}'. "
                f"Available types: {available}"
            )
        return method

    def list_types(self) -> list[str]:
        """Return the identifiers of all registered methods."""
        return sorted(self._methods)

    def resolve_token(self) -> ResolvedToken:
        """Walk the priority list and return the first token obtained.

        Raises:
            KionCliError: Whatever the chosen path raised. No fallback to
                a lower-priority path is attempted after a failure.
        """
        config = self.ctx.config
        if config.api_key:
            return ResolvedToken(config.api_key, "config")

        cached = self._from_session()
        if cached is not None:
            return cached

        if config.username or config.password:
            return self._run("password")
        if config.saml_metadata_file and config.saml_issuer:
            return self._run("saml")

        methods = list(self._methods.values())
        labels = [method.label for method in methods]
        choice = self.ctx.prompter.select("How would you like to authenticate", labels)
        return self._run(methods[labels.index(choice)].method_type)

    def _run(self, method_type: str) -> ResolvedToken:
        method = self.get_method(method_type)
        logger.debug("Authenticating with %s", method_type)
        return ResolvedToken(method.authenticate(self.ctx), method_type)

    def _from_session(self) -> Optional[ResolvedToken]:
        session, found = self.ctx.cache.get_session()
        state = session_state(
            session, found, self.ctx.clock(), check_refresh=self.ctx.config.refresh_sessions
        )
        logger.debug("Cached session state: %s", state.value)
        if state is SessionState.VALID:
            return ResolvedToken(session.access.token, "session")
        if state is SessionState.REFRESHABLE:
            return ResolvedToken(self._refresh(session), "refresh")
        return None

    def _refresh(self, session: Session) -> str:
        """Renew *session* by logging in again with its refresh token."""
        with self.ctx.client() as client:
            renewed = client.authenticate(session.idms_id, session.username, session.refresh.token)
        renewed = renewed.model_copy(
            update={"idms_id": session.idms_id, "username": session.username}
        )
        self.ctx.cache.set_session(renewed)
        return renewed.access.token


def create_default_orchestrator(ctx: AuthContext) -> AuthOrchestrator:
    """Create an :class:`AuthOrchestrator` with the built-in methods.

    Registration order is the order offered in the interactive menu:
    API key, password, SAML.
    """
    from kioncli.auth.methods import APIKeyMethod, PasswordMethod, SAMLMethod

    orchestrator = AuthOrchestrator(ctx)
    orchestrator.register(APIKeyMethod())
    orchestrator.register(PasswordMethod())
    orchestrator.register(SAMLMethod())
    return orchestrator
