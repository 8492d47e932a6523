"""Action-specific validity buffers for cached credentials.

The cache returns whatever it holds as long as it has not expired. Whether
a credential is still *worth using* depends on what the caller does with
it next: the AWS SDK's ``credential_process`` hook re-invokes the CLI the
moment a key expires, while an ``export`` line pasted into a shell may sit
there for minutes. Callers therefore pick a buffer for their action and
trust a credential only when ``expiration > now + buffer``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from kioncli.models import STAK, Session, as_utc

DEFAULT_STAK_DURATION = 900
STAK_EXPIRY_MARGIN = 30


class Action(str, Enum):
    """What the caller will do with a credential."""

    CREDENTIAL_PROCESS = "credential-process"
    PRINT = "print"


_BUFFERS: dict[Action, int] = {
    Action.CREDENTIAL_PROCESS: 5,
    Action.PRINT: 300,
}


def buffer_for(action: Action | str) -> timedelta:
    """Return the validity buffer for *action*.

    Raises:
        ValueError: If *action* is not a known :class:`Action` value.
    """
    return timedelta(seconds=_BUFFERS[Action(action)])


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def stak_is_usable(stak: STAK, buffer: timedelta, now: Optional[datetime] = None) -> bool:
    """Return True if *stak* stays valid for at least *buffer* from *now*."""
    if stak.expiration is None:
        return False
    return as_utc(stak.expiration) > _now(now) + buffer


def session_is_usable(
    session: Session,
    buffer: timedelta = timedelta(0),
    now: Optional[datetime] = None,
) -> bool:
    """Return True if the session's access token outlives *now* + *buffer*.

    Raises:
        SessionError: If the access-token expiry does not parse.
    """
    if session.is_zero() or not session.access.token:
        return False
    return as_utc(session.access_expires_at()) > _now(now) + buffer


def stak_expiration(duration: int, now: Optional[datetime] = None) -> datetime:
    """Expiry to stamp on a freshly issued STAK.

    Kion reports the key lifetime in seconds (zero means the 15 minute
    default). Thirty seconds are shaved off for clock skew.
    """
    seconds = duration if duration > 0 else DEFAULT_STAK_DURATION
    return _now(now) + timedelta(seconds=seconds - STAK_EXPIRY_MARGIN)
