"""STAK, session, and password caches over a single secret-store record.

Every cached value lives inside one :class:`~kioncli.models.CacheRecord`
stored under :data:`CACHE_NAME`. Each mutating call loads the whole record,
changes its own sub-map, and writes the whole record back. A
:class:`threading.Lock` serialises that read-modify-write cycle within the
process; separate processes sharing the same keyring item still race with
last-writer-wins.

Two implementations share the :class:`Cache` interface:

* :class:`KeyringCache` -- the real cache.
* :class:`NullCache` -- used with ``--disable-cache``. STAK and password
  calls are misses and no-ops, but sessions are still persisted so that a
  SAML login is not repeated on every invocation.

See Also:
    :mod:`kioncli.cache.codec` -- key construction and (de)serialisation.
    :mod:`kioncli.validity` -- the caller-side expiry buffers applied to
    whatever the cache returns.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from kioncli.cache.codec import decode_record, encode_record, password_key, stak_key
from kioncli.cache.store import SecretItem, SecretStore
from kioncli.exceptions import SecretNotFoundError
from kioncli.models import STAK, CacheRecord, Session

logger = logging.getLogger(__name__)

CACHE_NAME = "Kion-CLI Cache"
CACHE_DESCRIPTION = "Cache data for the Kion-CLI."


class Cache(ABC):
    """Interface shared by the real cache and the disabled-cache stand-in."""

    @abstractmethod
    def get_stak(self, role: str, account: str, alias: str) -> tuple[STAK, bool]:
        """Return ``(stak, True)`` on a hit, ``(STAK(), False)`` on a miss."""
        ...

    @abstractmethod
    def set_stak(self, role: str, account: str, alias: str, value: STAK) -> None:
        """Store *value*, first sweeping every expired STAK from the record."""
        ...

    @abstractmethod
    def get_session(self) -> tuple[Session, bool]:
        """Return the cached session; an all-default session counts as a miss."""
        ...

    @abstractmethod
    def set_session(self, session: Session) -> None:
        """Replace the cached session."""
        ...

    @abstractmethod
    def get_password(self, host: str, idms_id: int, username: str) -> tuple[str, bool]:
        """Return the cached password for the identity, if any."""
        ...

    @abstractmethod
    def set_password(self, host: str, idms_id: int, username: str, password: str) -> None:
        """Store *password*. An empty string deletes the entry."""
        ...

    @abstractmethod
    def flush(self) -> None:
        """Replace the whole record (STAKs, session and passwords) with an empty one."""
        ...


class KeyringCache(Cache):
    """Cache persisted as a single item in a :class:`~kioncli.cache.store.SecretStore`.

    Store errors other than "not found" propagate unchanged as
    :class:`~kioncli.exceptions.CacheError`, as do decode failures.

    Args:
        store: The secret store holding the record.
        clock: Returns the current time. Only STAK sweeping reads it.
    """

    def __init__(self, store: SecretStore, clock=None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    # -- record I/O ----------------------------------------------------------

    def _load(self) -> CacheRecord:
        try:
            data = self._store.get(CACHE_NAME)
        except SecretNotFoundError:
            return CacheRecord()
        return decode_record(data)

    def _save(self, record: CacheRecord) -> None:
        self._store.set(
            SecretItem(
                name=CACHE_NAME,
                data=encode_record(record),
                label=CACHE_NAME,
                description=CACHE_DESCRIPTION,
            )
        )

    # -- STAKs ---------------------------------------------------------------

    def get_stak(self, role: str, account: str, alias: str) -> tuple[STAK, bool]:
        with self._lock:
            record = self._load()
        value = record.staks.get(stak_key(role, account, alias))
        if value is None:
            return STAK(), False
        return value, True

    def set_stak(self, role: str, account: str, alias: str, value: STAK) -> None:
        with self._lock:
            record = self._load()
            now = self._clock()
            expired = [key for key, stak in record.staks.items() if stak.is_expired(now)]
            for key in expired:
                del record.staks[key]
            if expired:
                logger.debug("Swept %d expired STAK(s) from the cache", len(expired))
            record.staks[stak_key(role, account, alias)] = value
            self._save(record)

    # -- session -------------------------------------------------------------

    def get_session(self) -> tuple[Session, bool]:
        with self._lock:
            record = self._load()
        if record.session.is_zero():
            return Session(), False
        return record.session, True

    def set_session(self, session: Session) -> None:
        with self._lock:
            record = self._load()
            record.session = session
            self._save(record)

    # -- passwords -----------------------------------------------------------

    def get_password(self, host: str, idms_id: int, username: str) -> tuple[str, bool]:
        with self._lock:
            record = self._load()
        value = record.passwords.get(password_key(host, idms_id, username))
        if value is None:
            return "", False
        return value, True

    def set_password(self, host: str, idms_id: int, username: str, password: str) -> None:
        key = password_key(host, idms_id, username)
        with self._lock:
            record = self._load()
            if password:
                record.passwords[key] = password
            else:
                record.passwords.pop(key, None)
            self._save(record)

    def flush(self) -> None:
        with self._lock:
            self._save(CacheRecord())


class NullCache(Cache):
    """Cache used when caching is disabled.

    Sessions still go through the store, everything else is dropped.

    Args:
        store: Secret store for the session record. ``None`` disables
            session caching as well.
    """

    def __init__(self, store: Optional[SecretStore] = None) -> None:
        self._sessions = KeyringCache(store) if store is not None else None

    def get_stak(self, role: str, account: str, alias: str) -> tuple[STAK, bool]:
        return STAK(), False

    def set_stak(self, role: str, account: str, alias: str, value: STAK) -> None:
        return None

    def get_session(self) -> tuple[Session, bool]:
        if self._sessions is None:
            return Session(), False
        return self._sessions.get_session()

    def set_session(self, session: Session) -> None:
        if self._sessions is not None:
            self._sessions.set_session(session)

    def get_password(self, host: str, idms_id: int, username: str) -> tuple[str, bool]:
        return "", False

    def set_password(self, host: str, idms_id: int, username: str, password: str) -> None:
        return None

    def flush(self) -> None:
        return None


def open_cache(store: SecretStore, disabled: bool = False) -> Cache:
    """Return the cache implementation matching the ``disable_cache`` setting."""
    if disabled:
        logger.debug("Caching disabled; only the session is persisted")
        return NullCache(store)
    return KeyringCache(store)
