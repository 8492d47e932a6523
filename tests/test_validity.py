"""Tests for kioncli.validity -- per-action buffers applied to cached credentials."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from kioncli.cache.cache import KeyringCache
from kioncli.cache.store import MemorySecretStore
from kioncli.exceptions import SessionError
from kioncli.models import STAK, Session, TokenInfo, format_expiry
from kioncli.validity import (
    Action,
    buffer_for,
    session_is_usable,
    stak_expiration,
    stak_is_usable,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestBuffers:
    @pytest.mark.parametrize(
        ("action", "seconds"),
        [
            (Action.CREDENTIAL_PROCESS, 5),
            (Action.PRINT, 300),
        ],
    )
    def test_buffer_per_action(self, action: Action, seconds: int) -> None:
        assert buffer_for(action) == timedelta(seconds=seconds)

    def test_accepts_string_value(self) -> None:
        assert buffer_for("credential-process") == timedelta(seconds=5)

    def test_unknown_action(self) -> None:
        with pytest.raises(ValueError):
            buffer_for("teleport")


class TestStakIsUsable:
    def test_outlives_buffer(self) -> None:
        stak = STAK(access_key="AK", expiration=NOW + timedelta(minutes=10))
        assert stak_is_usable(stak, buffer_for(Action.PRINT), now=NOW)

    def test_inside_buffer(self) -> None:
        stak = STAK(access_key="AK", expiration=NOW + timedelta(minutes=4))
        assert not stak_is_usable(stak, buffer_for(Action.PRINT), now=NOW)
        assert stak_is_usable(stak, buffer_for(Action.CREDENTIAL_PROCESS), now=NOW)

    def test_exact_boundary_is_not_usable(self) -> None:
        stak = STAK(access_key="AK", expiration=NOW + timedelta(seconds=300))
        assert not stak_is_usable(stak, timedelta(seconds=300), now=NOW)

    def test_missing_expiration(self) -> None:
        assert not stak_is_usable(STAK(access_key="AK"), timedelta(0), now=NOW)


class TestSessionIsUsable:
    def _session(self, expires_in: timedelta) -> Session:
        return Session(access=TokenInfo(token="tok", expiry=format_expiry(NOW + expires_in)))

    def test_cache_hit_can_still_be_unusable(self) -> None:
        cache = KeyringCache(MemorySecretStore(), clock=lambda: NOW)
        cache.set_session(self._session(timedelta(minutes=2)))

        session, found = cache.get_session()

        assert found is True
        assert not session_is_usable(session, timedelta(seconds=300), now=NOW)
        assert session_is_usable(session, timedelta(seconds=5), now=NOW)

    def test_zero_session(self) -> None:
        assert not session_is_usable(Session(), now=NOW)

    def test_session_without_token(self) -> None:
        session = Session(access=TokenInfo(expiry=format_expiry(NOW + timedelta(hours=1))))
        assert not session_is_usable(session, now=NOW)

    def test_unparseable_expiry(self) -> None:
        session = Session(access=TokenInfo(token="tok", expiry="tomorrow"))
        with pytest.raises(SessionError):
            session_is_usable(session, now=NOW)


class TestStakExpiration:
    def test_reported_duration_minus_margin(self) -> None:
        assert stak_expiration(3600, now=NOW) == NOW + timedelta(seconds=3570)

    def test_zero_duration_uses_default(self) -> None:
        assert stak_expiration(0, now=NOW) == NOW + timedelta(seconds=870)
