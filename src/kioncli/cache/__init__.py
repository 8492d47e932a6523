"""Credential caching: secret store adapters, record codec, and the caches."""

from kioncli.cache.cache import CACHE_NAME, Cache, KeyringCache, NullCache, open_cache
from kioncli.cache.codec import decode_record, encode_record, password_key, stak_key
from kioncli.cache.store import (
    EncryptedFileSecretStore,
    KeyringSecretStore,
    MemorySecretStore,
    SecretItem,
    SecretStore,
    open_store,
)

__all__ = [
    "CACHE_NAME",
    "Cache",
    "EncryptedFileSecretStore",
    "KeyringCache",
    "KeyringSecretStore",
    "MemorySecretStore",
    "NullCache",
    "SecretItem",
    "SecretStore",
    "decode_record",
    "encode_record",
    "open_cache",
    "open_store",
    "password_key",
    "stak_key",
]
