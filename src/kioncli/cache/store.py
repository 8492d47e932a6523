"""Secret store adapters -- physical persistence for the cache record.

The cache layer talks to exactly one capability interface,
:class:`SecretStore`, with two operations: ``get(name)`` returning bytes
(or raising :class:`~kioncli.exceptions.SecretNotFoundError`) and
``set(item)``. Three adapters implement it:

- :class:`KeyringSecretStore` -- the platform credential store (macOS
  Keychain, Windows Credential Locker, Secret Service / KWallet) through
  the :mod:`keyring` library.
- :class:`EncryptedFileSecretStore` -- a Fernet-encrypted file per item,
  for hosts without a usable keyring. The key is derived from a
  passphrase with PBKDF2-HMAC-SHA256.
- :class:`MemorySecretStore` -- a process-local dict.

Any failure other than "no such item" is raised as
:class:`~kioncli.exceptions.CacheError` and is fatal to the caller.
"""

from __future__ import annotations

import base64
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

import keyring
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from keyring.errors import KeyringError

from kioncli.config import atomic_write
from kioncli.exceptions import CacheError, SecretNotFoundError

logger = logging.getLogger(__name__)

SERVICE_NAME = "kion-cli"

_SALT_SIZE = 16
_KDF_ITERATIONS = 480_000


@dataclass
class SecretItem:
    """A named secret with display metadata for stores that support it."""

    name: str
    data: bytes
    label: str = ""
    description: str = ""


class SecretStore(ABC):
    """Capability interface over a platform credential store."""

    @abstractmethod
    def get(self, name: str) -> bytes:
        """Return the bytes stored under *name*.

        Raises:
            SecretNotFoundError: If no item exists under *name*.
            CacheError: On any other read failure.
        """
        ...

    @abstractmethod
    def set(self, item: SecretItem) -> None:
        """Create or replace *item*.

        Raises:
            CacheError: If the item cannot be written.
        """
        ...


class KeyringSecretStore(SecretStore):
    """Secret store backed by the system keyring.

    Items hold the UTF-8 text of the cache record, the same value older
    kion-cli releases write under this service, so their caches stay
    readable. Labels and descriptions are not supported by every backend
    and are dropped.

    Args:
        service_name: Keyring service the items are filed under.
    """

    def __init__(self, service_name: str = SERVICE_NAME) -> None:
        self._service = service_name

    def get(self, name: str) -> bytes:
        try:
            value = keyring.get_password(self._service, name)
        except KeyringError as exc:
            raise CacheError(f"Cannot read '{name}' from the system keyring: {exc}") from exc
        if value is None:
            raise SecretNotFoundError(name)
        return value.encode("utf-8")

    def set(self, item: SecretItem) -> None:
        try:
            text = item.data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CacheError(f"Cannot store '{item.name}' in the system keyring: not UTF-8 text") from exc
        try:
            keyring.set_password(self._service, item.name, text)
        except KeyringError as exc:
            raise CacheError(f"Cannot write '{item.name}' to the system keyring: {exc}") from exc


class EncryptedFileSecretStore(SecretStore):
    """Secret store that keeps one Fernet-encrypted file per item.

    Each file holds a random salt followed by the Fernet token. The
    passphrase is requested from *passphrase_func* at most once per
    instance. Files are written atomically with ``0o600`` permissions.

    Args:
        directory: Where item files live (created on first write).
        passphrase_func: Callable returning the passphrase, typically a
            hidden terminal prompt.
    """

    def __init__(self, directory: Path, passphrase_func: Callable[[], str]) -> None:
        self._directory = Path(directory)
        self._passphrase_func = passphrase_func
        self._passphrase: Optional[str] = None

    def path_for(self, name: str) -> Path:
        """Filesystem path holding the item called *name*."""
        return self._directory / quote(name, safe="")

    def get(self, name: str) -> bytes:
        path = self.path_for(name)
        if not path.is_file():
            raise SecretNotFoundError(name)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise CacheError(f"Cannot read secret file {path}: {exc}") from exc
        if len(raw) <= _SALT_SIZE:
            raise CacheError(f"Secret file {path} is truncated")
        salt, token = raw[:_SALT_SIZE], raw[_SALT_SIZE:]
        try:
            return self._fernet(salt).decrypt(token)
        except InvalidToken as exc:
            raise CacheError(
                f"Cannot decrypt {path}: wrong passphrase or corrupted file"
            ) from exc

    def set(self, item: SecretItem) -> None:
        salt = os.urandom(_SALT_SIZE)
        token = self._fernet(salt).encrypt(item.data)
        try:
            atomic_write(self.path_for(item.name), salt + token, mode=0o600)
        except OSError as exc:
            raise CacheError(f"Cannot write secret file for '{item.name}': {exc}") from exc

    def _fernet(self, salt: bytes) -> Fernet:
        if self._passphrase is None:
            self._passphrase = self._passphrase_func()
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=_KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._passphrase.encode("utf-8")))
        return Fernet(key)


class MemorySecretStore(SecretStore):
    """Process-local secret store. Nothing survives the interpreter."""

    def __init__(self) -> None:
        self._items: dict[str, SecretItem] = {}

    def get(self, name: str) -> bytes:
        item = self._items.get(name)
        if item is None:
            raise SecretNotFoundError(name)
        return item.data

    def set(self, item: SecretItem) -> None:
        self._items[item.name] = item

    def __contains__(self, name: object) -> bool:
        return name in self._items


def open_store(backend: str, data_dir: Path, passphrase_func: Callable[[], str]) -> SecretStore:
    """Open the secret store selected by the ``secret_backend`` setting.

    Args:
        backend: ``"keyring"`` or ``"file"``.
        data_dir: Base directory for the file backend.
        passphrase_func: Passphrase source for the file backend.

    Raises:
        CacheError: If *backend* is not recognised.
    """
    if backend == "keyring":
        logger.debug("Using keyring backend %s", keyring.get_keyring())
        return KeyringSecretStore()
    if backend == "file":
        return EncryptedFileSecretStore(data_dir / "secrets", passphrase_func)
    raise CacheError(f"Unknown secret backend '{backend}': must be 'keyring' or 'file'")
