"""Tests for kioncli.auth.methods -- API key, password, and SAML login."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest

from kioncli.auth.base import AuthContext
from kioncli.auth.methods import APIKeyMethod, PasswordMethod, SAMLMethod
from kioncli.auth.saml.metadata import IDPMetadata
from kioncli.cache.cache import KeyringCache
from kioncli.client import KionClient
from kioncli.exceptions import AuthError, CacheError, InvalidUsageError, SAMLError
from kioncli.models import AuthData, KionConfig, format_expiry
from kioncli.output import OutputManager, set_output

from tests.helpers import KION_URL, FakePrompter

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _envelope(data: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"status": status, "message": "", "data": data})


def _token_response() -> httpx.Response:
    return _envelope(
        {
            "access": {"token": "acc", "expiry": format_expiry(NOW + timedelta(hours=1))},
            "refresh": {"token": "ref", "expiry": format_expiry(NOW + timedelta(days=1))},
        }
    )


class FakeKion:
    """Routes MockTransport requests and records them."""

    def __init__(
        self,
        idmss: Optional[list[dict]] = None,
        login_status: int = 200,
        version: str = "3.9.0",
    ) -> None:
        self.idmss = idmss if idmss is not None else [{"id": 2, "idms_type_id": 1, "name": "Local"}]
        self.login_status = login_status
        self.version = version
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/v2/idms":
            return _envelope(self.idmss)
        if path == "/api/v3/token":
            if self.login_status != 200:
                return httpx.Response(
                    self.login_status,
                    json={"status": self.login_status, "message": "invalid credentials"},
                )
            return _token_response()
        if path == "/api/version":
            return _envelope(self.version)
        return httpx.Response(404)

    def login_bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == "/api/v3/token"]


def _context(
    config: KionConfig,
    cache: KeyringCache,
    kion: FakeKion,
    prompter: Optional[FakePrompter] = None,
) -> AuthContext:
    def factory(token: Optional[str]) -> KionClient:
        return KionClient(config.url, token=token, transport=httpx.MockTransport(kion))

    return AuthContext(
        config=config,
        cache=cache,
        prompter=prompter or FakePrompter(),
        client_factory=factory,
        clock=lambda: NOW,
    )


@pytest.fixture
def cache(memory_store) -> KeyringCache:
    return KeyringCache(memory_store, clock=lambda: NOW)


@pytest.fixture(autouse=True)
def _quiet(quiet_output: OutputManager) -> None:
    pass


# ---------------------------------------------------------------------------
# API key
# ---------------------------------------------------------------------------


class TestAPIKeyMethod:
    def test_prompts_for_key_and_caches_nothing(self, cache: KeyringCache) -> None:
        prompter = FakePrompter({"API Key:": "app_abc"})
        ctx = _context(KionConfig(url=KION_URL), cache, FakeKion(), prompter)

        assert APIKeyMethod().authenticate(ctx) == "app_abc"
        assert cache.get_session()[1] is False


# ---------------------------------------------------------------------------
# Password
# ---------------------------------------------------------------------------


class TestPasswordMethod:
    def test_configured_credentials(self, cache: KeyringCache) -> None:
        kion = FakeKion()
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe", password="hunter2")

        token = PasswordMethod().authenticate(_context(config, cache, kion))

        assert token == "acc"
        assert kion.login_bodies() == [{"idms": 2, "username": "jdoe", "password": "hunter2"}]

    def test_success_persists_session_and_password(self, cache: KeyringCache) -> None:
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe", password="hunter2")
        PasswordMethod().authenticate(_context(config, cache, FakeKion()))

        session, found = cache.get_session()
        assert found
        assert (session.idms_id, session.username) == (2, "jdoe")
        assert session.access.token == "acc"
        assert cache.get_password(KION_URL, 2, "jdoe") == ("hunter2", True)

    def test_cached_password_is_used_before_prompting(self, cache: KeyringCache) -> None:
        cache.set_password(KION_URL, 2, "jdoe", "from-cache")
        kion = FakeKion()
        prompter = FakePrompter()
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe")

        PasswordMethod().authenticate(_context(config, cache, kion, prompter))

        assert prompter.asked == []
        assert kion.login_bodies()[0]["password"] == "from-cache"

    def test_failed_cached_password_is_cleared(self, cache: KeyringCache) -> None:
        cache.set_password(KION_URL, 2, "jdoe", "stale")
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe")
        ctx = _context(config, cache, FakeKion(login_status=401))

        with pytest.raises(AuthError, match="invalid credentials"):
            PasswordMethod().authenticate(ctx)

        assert cache.get_password(KION_URL, 2, "jdoe") == ("", False)
        assert cache.get_session()[1] is False

    def test_failed_prompted_password_leaves_cache_alone(self, cache: KeyringCache) -> None:
        cache.set_password(KION_URL, 2, "other", "keep")
        prompter = FakePrompter({"Password:": "typo"})
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe")
        ctx = _context(config, cache, FakeKion(login_status=401), prompter)

        with pytest.raises(AuthError):
            PasswordMethod().authenticate(ctx)
        assert cache.get_password(KION_URL, 2, "other") == ("keep", True)

    def test_failure_to_clear_is_a_warning(
        self, cache: KeyringCache, capsys: pytest.CaptureFixture[str]
    ) -> None:
        class BrokenDelete(KeyringCache):
            def set_password(self, host: str, idms_id: int, username: str, password: str) -> None:
                if not password:
                    raise CacheError("keyring is locked")
                super().set_password(host, idms_id, username, password)

        broken = BrokenDelete(cache._store, clock=lambda: NOW)
        broken.set_password(KION_URL, 2, "jdoe", "stale")
        config = KionConfig(url=KION_URL, idms_id=2, username="jdoe")

        with pytest.raises(AuthError):
            PasswordMethod().authenticate(_context(config, broken, FakeKion(login_status=401)))

        assert "Failed to clear password from cache, keyring is locked" in capsys.readouterr().err

    def test_prompts_for_missing_pieces(self, cache: KeyringCache) -> None:
        kion = FakeKion(
            idmss=[
                {"id": 1, "idms_type_id": 1, "name": "Local"},
                {"id": 4, "idms_type_id": 2, "name": "Corporate LDAP"},
                {"id": 9, "idms_type_id": 3, "name": "Okta"},
            ]
        )
        prompter = FakePrompter(
            {
                "Select Login IDMS:": "Corporate LDAP",
                "Username:": "jdoe",
                "Password:": "hunter2",
            }
        )

        PasswordMethod().authenticate(_context(KionConfig(url=KION_URL), cache, kion, prompter))

        assert prompter.asked == ["Select Login IDMS:", "Username:", "Password:"]
        assert kion.login_bodies() == [{"idms": 4, "username": "jdoe", "password": "hunter2"}]

    def test_single_idms_is_chosen_without_prompt(self, cache: KeyringCache) -> None:
        prompter = FakePrompter({"Username:": "jdoe", "Password:": "pw"})
        kion = FakeKion()
        PasswordMethod().authenticate(_context(KionConfig(url=KION_URL), cache, kion, prompter))
        assert "Select Login IDMS:" not in prompter.asked
        assert kion.login_bodies()[0]["idms"] == 2

    def test_no_password_idms(self, cache: KeyringCache) -> None:
        kion = FakeKion(idmss=[{"id": 9, "idms_type_id": 3, "name": "Okta"}])
        with pytest.raises(AuthError, match="no identity source"):
            PasswordMethod().authenticate(_context(KionConfig(url=KION_URL), cache, kion))

    def test_requires_url(self, cache: KeyringCache) -> None:
        with pytest.raises(InvalidUsageError, match="Kion URL"):
            PasswordMethod().authenticate(_context(KionConfig(), cache, FakeKion()))


# ---------------------------------------------------------------------------
# SAML
# ---------------------------------------------------------------------------


class FakeHandshake:
    instances: list["FakeHandshake"] = []

    def __init__(self, app_url: str, metadata: IDPMetadata, sp_issuer: str, **kwargs: Any) -> None:
        self.app_url = app_url
        self.metadata = metadata
        self.sp_issuer = sp_issuer
        self.kwargs = kwargs
        FakeHandshake.instances.append(self)

    def run(self) -> AuthData:
        return AuthData(auth_token="saml-token", csrf_token="csrf")


@pytest.fixture
def fake_handshake() -> type[FakeHandshake]:
    FakeHandshake.instances = []
    return FakeHandshake


def _saml_method(loaded: list[str]) -> SAMLMethod:
    def loader(source: str) -> IDPMetadata:
        loaded.append(source)
        return IDPMetadata(entity_id="idp")

    return SAMLMethod(metadata_loader=loader, handshake_factory=FakeHandshake)


class TestSAMLMethod:
    def test_session_expires_after_570_seconds(
        self, cache: KeyringCache, fake_handshake: type[FakeHandshake]
    ) -> None:
        loaded: list[str] = []
        config = KionConfig(url=KION_URL, saml_metadata_file="md.xml", saml_issuer="kion-sp")

        token = _saml_method(loaded).authenticate(_context(config, cache, FakeKion()))

        assert token == "saml-token"
        assert loaded == ["md.xml"]
        session, found = cache.get_session()
        assert found
        assert session.access.token == "saml-token"
        assert session.access_expires_at() == NOW + timedelta(seconds=570)
        assert session.refresh.token == ""
        assert (session.idms_id, session.username) == (0, "")

    def test_passes_settings_to_handshake(
        self, cache: KeyringCache, fake_handshake: type[FakeHandshake]
    ) -> None:
        config = KionConfig(
            url=KION_URL,
            saml_metadata_file="md.xml",
            saml_issuer="kion-sp",
            saml_print_url=True,
            saml_port=9400,
        )
        _saml_method([]).authenticate(_context(config, cache, FakeKion()))

        handshake = fake_handshake.instances[0]
        assert handshake.app_url == KION_URL
        assert handshake.sp_issuer == "kion-sp"
        assert handshake.kwargs == {"print_url": True, "legacy": False, "port": 9400}

    @pytest.mark.parametrize(
        ("version", "legacy"),
        [("3.7.9", True), ("3.8.0", False), ("3.10.1", False), ("unknown", False)],
    )
    def test_legacy_flow_follows_kion_version(
        self,
        cache: KeyringCache,
        fake_handshake: type[FakeHandshake],
        version: str,
        legacy: bool,
    ) -> None:
        config = KionConfig(url=KION_URL, saml_metadata_file="md.xml", saml_issuer="kion-sp")
        _saml_method([]).authenticate(_context(config, cache, FakeKion(version=version)))
        assert fake_handshake.instances[0].kwargs["legacy"] is legacy

    def test_configured_legacy_skips_version_check(
        self, cache: KeyringCache, fake_handshake: type[FakeHandshake]
    ) -> None:
        kion = FakeKion()
        config = KionConfig(
            url=KION_URL, saml_metadata_file="md.xml", saml_issuer="kion-sp", saml_legacy=True
        )
        _saml_method([]).authenticate(_context(config, cache, kion))
        assert fake_handshake.instances[0].kwargs["legacy"] is True
        assert kion.requests == []

    def test_prompts_for_missing_settings(
        self, cache: KeyringCache, fake_handshake: type[FakeHandshake]
    ) -> None:
        prompter = FakePrompter(
            {
                "SAML Metadata URL:": "https://idp.example.com/metadata",
                "SAML Service Provider Issuer:": "kion-sp",
            }
        )
        loaded: list[str] = []
        _saml_method(loaded).authenticate(
            _context(KionConfig(url=KION_URL), cache, FakeKion(), prompter)
        )
        assert loaded == ["https://idp.example.com/metadata"]
        assert fake_handshake.instances[0].sp_issuer == "kion-sp"

    def test_handshake_failure_caches_nothing(self, cache: KeyringCache) -> None:
        class FailingHandshake(FakeHandshake):
            def run(self) -> AuthData:
                raise SAMLError("Authentication timed out after 60 seconds")

        method = SAMLMethod(
            metadata_loader=lambda source: IDPMetadata(), handshake_factory=FailingHandshake
        )
        config = KionConfig(
            url=KION_URL, saml_metadata_file="md.xml", saml_issuer="kion-sp", saml_legacy=True
        )
        with pytest.raises(SAMLError, match="timed out"):
            method.authenticate(_context(config, cache, FakeKion()))
        assert cache.get_session()[1] is False
