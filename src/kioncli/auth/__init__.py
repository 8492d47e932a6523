"""Authentication: orchestrator, login methods, and the SAML handshake."""

from kioncli.auth.base import AuthContext, AuthMethod, ResolvedToken
from kioncli.auth.manager import (
    AuthOrchestrator,
    SessionState,
    create_default_orchestrator,
    session_state,
)
from kioncli.auth.methods import APIKeyMethod, PasswordMethod, SAMLMethod

__all__ = [
    "APIKeyMethod",
    "AuthContext",
    "AuthMethod",
    "AuthOrchestrator",
    "PasswordMethod",
    "ResolvedToken",
    "SAMLMethod",
    "SessionState",
    "create_default_orchestrator",
    "session_state",
]
