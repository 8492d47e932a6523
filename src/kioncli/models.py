"""Canonical Pydantic models shared across all kioncli modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Credential models** -- persisted inside the cache record:
    :class:`STAK`, :class:`TokenInfo`, :class:`Session`, and the record
    itself, :class:`CacheRecord`.

**Handshake models** -- transient values produced by the SAML flow:
    :class:`CookieData` and :class:`AuthData`.

**API / configuration models**:
    :class:`IDMS` and :class:`KionConfig`.

Session expiry timestamps are strings in a fixed layout
(:data:`SESSION_TIME_FORMAT`) because that is what the Kion API returns;
:meth:`Session.access_expires_at` is the only sanctioned way to turn one
into a :class:`~datetime.datetime`.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from kioncli.exceptions import SessionError

SESSION_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
"""Layout of ``Session.access.expiry`` / ``Session.refresh.expiry`` (e.g. ``2024-05-01T10:15:00-0400``)."""

_EXPIRY_RE = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{4}")

CACHE_SCHEMA_VERSION = 1
"""Version tag written into every serialised :class:`CacheRecord`."""


def parse_expiry(value: str) -> datetime:
    """Parse a session expiry string using :data:`SESSION_TIME_FORMAT`.

    Args:
        value: The expiry string as stored on a :class:`TokenInfo`.

    Returns:
        A timezone-aware :class:`~datetime.datetime`.

    Raises:
        SessionError: If *value* does not match the layout exactly.
    """
    # strptime's %z would also take "Z" and "+hh:mm"
    if not _EXPIRY_RE.fullmatch(value):
        raise SessionError(f"Invalid session expiry '{value}': expected YYYY-MM-DDTHH:MM:SS+hhmm")
    try:
        return datetime.strptime(value, SESSION_TIME_FORMAT)
    except ValueError as exc:
        raise SessionError(f"Invalid session expiry '{value}': {exc}") from exc


def format_expiry(moment: datetime) -> str:
    """Format *moment* using :data:`SESSION_TIME_FORMAT`.

    Naive datetimes are interpreted as local time.
    """
    if moment.tzinfo is None:
        moment = moment.astimezone()
    return moment.strftime(SESSION_TIME_FORMAT)


def as_utc(moment: datetime) -> datetime:
    """Return *moment* as an aware UTC datetime (naive values are assumed UTC)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


# --- Credentials ---


class STAK(BaseModel):
    """Short-term access key issued by Kion for a cloud access role.

    The ``expiration`` is attached by :class:`~kioncli.client.KionClient`
    when the key is issued; the cache never computes it.
    """

    model_config = ConfigDict(frozen=True)

    access_key: str = ""
    secret_access_key: str = ""
    session_token: str = ""
    duration: int = Field(default=0, description="Lifetime in seconds as reported by Kion")
    expiration: Optional[datetime] = None

    def is_zero(self) -> bool:
        """Return True when every field holds its default value."""
        return self == STAK()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Return True when ``expiration`` is strictly before *now*.

        A STAK without an expiration counts as expired.
        """
        if self.expiration is None:
            return True
        current = as_utc(now) if now is not None else datetime.now(timezone.utc)
        return as_utc(self.expiration) < current


class TokenInfo(BaseModel):
    """A bearer token and its expiry string."""

    token: str = ""
    expiry: str = Field(default="", description=f"Expiry in layout {SESSION_TIME_FORMAT}")


class Session(BaseModel):
    """An authenticated Kion session.

    ``idms_id`` and ``username`` are stamped on by the password flow so a
    session can later be renewed for the same identity; SAML sessions
    leave them empty.
    """

    idms_id: int = 0
    username: str = ""
    access: TokenInfo = Field(default_factory=TokenInfo)
    refresh: TokenInfo = Field(default_factory=TokenInfo)

    def is_zero(self) -> bool:
        """Return True when the session is indistinguishable from "no session"."""
        return self == Session()

    def access_expires_at(self) -> datetime:
        """Parsed access-token expiry.

        Raises:
            SessionError: If the expiry string does not match the layout.
        """
        return parse_expiry(self.access.expiry)

    def refresh_expires_at(self) -> datetime:
        """Parsed refresh-token expiry.

        Raises:
            SessionError: If the expiry string does not match the layout.
        """
        return parse_expiry(self.refresh.expiry)


class CacheRecord(BaseModel):
    """The single blob persisted in the secret store.

    The record is always read whole, mutated, and written whole. All three
    maps are materialised as empty containers so that lookups on a fresh
    or flushed record behave exactly like lookups on a populated one.
    """

    version: int = CACHE_SCHEMA_VERSION
    staks: dict[str, STAK] = Field(default_factory=dict)
    session: Session = Field(default_factory=Session)
    passwords: dict[str, str] = Field(default_factory=dict)


# --- SAML handshake ---


class CookieData(BaseModel):
    """A cookie captured during the SAML token exchange."""

    name: str
    value: str
    domain: str = ""
    path: str = "/"


class AuthData(BaseModel):
    """Result of a successful SAML handshake. Consumed immediately to build a :class:`Session`."""

    auth_token: str
    cookies: list[CookieData] = Field(default_factory=list)
    csrf_token: str = ""


# --- API / configuration ---


class IDMS(BaseModel):
    """An identity management system configured in Kion."""

    id: int
    idms_type_id: int = 0
    name: str = ""


class KionConfig(BaseModel):
    """User configuration persisted at ``~/.config/kion-cli/config.json``.

    Loaded by :func:`~kioncli.config.load_config` and layered with
    environment variables and CLI flags by
    :func:`~kioncli.config.resolve_config`.
    """

    model_config = ConfigDict(extra="ignore")

    url: str = Field(default="", description="Base URL of the Kion installation")
    api_key: str = Field(default="", description="Static API key or bearer token")
    username: str = ""
    password: str = ""
    idms_id: int = Field(default=0, description="IDMS to use for password login (0 = ask)")
    saml_metadata_file: str = Field(
        default="", description="IDP metadata URL or file path for SAML login"
    )
    saml_issuer: str = Field(default="", description="SAML service provider issuer")
    saml_print_url: bool = Field(
        default=False, description="Print the IDP login URL instead of opening a browser"
    )
    saml_legacy: bool = Field(
        default=False, description="Use the pre-3.8.0 SAML callback exchange"
    )
    saml_port: int = Field(default=8400, description="Local port for the SAML callback listener")
    disable_cache: bool = Field(
        default=False, description="Do not cache STAKs or passwords"
    )
    refresh_sessions: bool = Field(
        default=False,
        description="Renew expired sessions with their refresh token when still valid",
    )
    secret_backend: str = Field(
        default="keyring", description="Secret store backend: keyring or file"
    )
