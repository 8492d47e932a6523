"""Cache blob codec -- keys, serialisation, and schema migration.

The whole cache is one JSON document::

    {
      "version": 1,
      "staks": {"[\"Admin\",\"123456789012\",\"\"]": {...}},
      "session": {"idms_id": 2, "username": "jdoe", "access": {...}, "refresh": {...}},
      "passwords": {"[\"https://kion.example.com\",2,\"jdoe\"]": "hunter2"}
    }

Map keys are JSON arrays rendered as strings (:func:`stak_key`,
:func:`password_key`) so a field containing a delimiter can never collide
with another tuple. Key parts are compared exactly: ``"prod"`` and
``"Prod"`` are different aliases.

Documents without a ``version`` field come from the original Go client
(upper-case ``STAK`` / ``SESSION`` / ``PASSWORD`` sections). They are
migrated on load: the session is carried over, while STAK and password
entries are discarded because their dash-joined keys cannot be split back
into parts reliably. The next successful login repopulates them.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from kioncli.exceptions import CacheError
from kioncli.models import CACHE_SCHEMA_VERSION, CacheRecord

logger = logging.getLogger(__name__)

_KEY_SEPARATORS = (",", ":")


def stak_key(role: str, account: str, alias: str) -> str:
    """Composite key for a STAK: (cloud access role, account number, account alias)."""
    return json.dumps([role, account, alias], separators=_KEY_SEPARATORS)


def password_key(host: str, idms_id: int, username: str) -> str:
    """Composite key for a cached password: (Kion host, IDMS id, username)."""
    return json.dumps([host, int(idms_id), username], separators=_KEY_SEPARATORS)


def encode_record(record: CacheRecord) -> bytes:
    """Serialise *record* to the bytes stored in the secret store."""
    return record.model_dump_json().encode("utf-8")


def decode_record(data: bytes) -> CacheRecord:
    """Deserialise the stored bytes into a :class:`~kioncli.models.CacheRecord`.

    Empty input yields an empty record. ``null`` sections are normalised to
    empty containers.

    Raises:
        CacheError: If the payload is not valid JSON, is from a newer
            schema version, or fails validation. A corrupt cache is a
            fatal read error, never a cache miss.
    """
    if not data:
        return CacheRecord()
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CacheError(f"Cache record is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise CacheError("Cache record must be a JSON object")

    version = payload.get("version")
    if version is None:
        payload = _migrate_legacy(payload)
    elif not isinstance(version, int) or version > CACHE_SCHEMA_VERSION:
        raise CacheError(
            f"Cache record has unsupported schema version {version!r} "
            f"(this client understands up to {CACHE_SCHEMA_VERSION})"
        )

    for section in ("staks", "passwords", "session"):
        if payload.get(section) is None:
            payload[section] = {}

    try:
        return CacheRecord.model_validate(payload)
    except ValidationError as exc:
        raise CacheError(f"Cache record failed validation: {exc}") from exc


def _migrate_legacy(payload: dict[str, Any]) -> dict[str, Any]:
    """Convert an unversioned Go-client payload to the version 1 layout."""
    legacy_session = payload.get("SESSION") or {}
    dropped = len(payload.get("STAK") or {}) + len(payload.get("PASSWORD") or {})
    if dropped:
        logger.debug("Discarding %d legacy cache entries during migration", dropped)

    session: dict[str, Any] = {}
    if legacy_session:
        session = {
            "idms_id": legacy_session.get("IDMSID") or 0,
            "username": legacy_session.get("UserName") or "",
            "access": legacy_session.get("access") or {},
            "refresh": legacy_session.get("refresh") or {},
        }
    return {
        "version": CACHE_SCHEMA_VERSION,
        "staks": {},
        "session": session,
        "passwords": {},
    }
