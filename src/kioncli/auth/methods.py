"""Built-in authentication methods: API key, username/password, and SAML."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable

from kioncli.auth.base import AuthContext, AuthMethod
from kioncli.auth.saml.handshake import SAMLHandshake
from kioncli.auth.saml.metadata import IDPMetadata, load_metadata
from kioncli.exceptions import AuthError, CacheError, InvalidUsageError, KionCliError
from kioncli.models import Session, TokenInfo, format_expiry
from kioncli.output import warning

logger = logging.getLogger(__name__)

# Kion SAML tokens live for ten minutes; cache them for slightly less.
SAML_SESSION_LIFETIME = timedelta(seconds=570)

LEGACY_SAML_BEFORE = (3, 8, 0)


def _require_url(ctx: AuthContext) -> str:
    if not ctx.config.url:
        raise InvalidUsageError("The Kion URL is not configured. Set --url or KION_URL")
    return ctx.config.url


class APIKeyMethod(AuthMethod):
    """Ask for a Kion API key. Nothing is cached."""

    @property
    def method_type(self) -> str:
        return "api-key"

    @property
    def label(self) -> str:
        return "API Key"

    def authenticate(self, ctx: AuthContext) -> str:
        return ctx.prompter.password("API Key:")


class PasswordMethod(AuthMethod):
    """Username/password login against a Kion-managed IDMS.

    Missing pieces are prompted for. A password is looked up in the cache
    before the user is asked for it. When login fails with a cached
    password that entry is removed, because Kion does not distinguish a
    wrong password from other client errors. On success the session and
    the password are both cached.
    """

    @property
    def method_type(self) -> str:
        return "password"

    @property
    def label(self) -> str:
        return "Password"

    def authenticate(self, ctx: AuthContext) -> str:
        url = _require_url(ctx)
        config = ctx.config

        idms_id = config.idms_id or self._select_idms(ctx)
        username = config.username or ctx.prompter.input("Username:")

        password = config.password
        from_cache = False
        if not password:
            password, from_cache = ctx.cache.get_password(url, idms_id, username)
            if not from_cache:
                password = ctx.prompter.password("Password:")

        try:
            with ctx.client() as client:
                session = client.authenticate(idms_id, username, password)
        except KionCliError:
            if from_cache:
                self._forget_password(ctx, url, idms_id, username)
            raise

        session = session.model_copy(update={"idms_id": idms_id, "username": username})
        ctx.cache.set_session(session)
        ctx.cache.set_password(url, idms_id, username, password)
        return session.access.token

    @staticmethod
    def _forget_password(ctx: AuthContext, url: str, idms_id: int, username: str) -> None:
        logger.debug("Login with cached password failed; clearing it")
        try:
            ctx.cache.set_password(url, idms_id, username, "")
        except CacheError as exc:
            warning(f"Failed to clear password from cache, {exc}")

    @staticmethod
    def _select_idms(ctx: AuthContext) -> int:
        with ctx.client() as client:
            idmss = client.get_idmss()
        if not idmss:
            raise AuthError("Kion has no identity source that accepts a username and password")
        if len(idmss) == 1:
            return idmss[0].id
        by_name = {idms.name: idms.id for idms in idmss}
        return by_name[ctx.prompter.select("Select Login IDMS:", list(by_name))]


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


class SAMLMethod(AuthMethod):
    """Browser-driven SAML login.

    The resulting session carries only an access token, expiring just
    under Kion's ten-minute SAML token lifetime.

    Args:
        metadata_loader: Loads IDP metadata from a URL or path.
        handshake_factory: Builds the :class:`SAMLHandshake` to run.
    """

    def __init__(
        self,
        metadata_loader: Callable[[str], IDPMetadata] = load_metadata,
        handshake_factory: Callable[..., SAMLHandshake] = SAMLHandshake,
    ) -> None:
        self._metadata_loader = metadata_loader
        self._handshake_factory = handshake_factory

    @property
    def method_type(self) -> str:
        return "saml"

    @property
    def label(self) -> str:
        return "SAML"

    def authenticate(self, ctx: AuthContext) -> str:
        url = _require_url(ctx)
        config = ctx.config
        source = config.saml_metadata_file or ctx.prompter.input("SAML Metadata URL:")
        issuer = config.saml_issuer or ctx.prompter.input("SAML Service Provider Issuer:")

        metadata = self._metadata_loader(source)
        handshake = self._handshake_factory(
            url,
            metadata,
            issuer,
            print_url=config.saml_print_url,
            legacy=config.saml_legacy or self._is_legacy_install(ctx),
            port=config.saml_port,
        )
        auth = handshake.run()

        expiry = format_expiry(ctx.clock() + SAML_SESSION_LIFETIME)
        ctx.cache.set_session(Session(access=TokenInfo(token=auth.auth_token, expiry=expiry)))
        return auth.auth_token

    @staticmethod
    def _is_legacy_install(ctx: AuthContext) -> bool:
        with ctx.client() as client:
            version = client.get_version()
        try:
            legacy = _version_tuple(version) < LEGACY_SAML_BEFORE
        except ValueError:
            logger.debug("Unrecognised Kion version %r; assuming current SAML flow", version)
            return False
        logger.debug("Kion version %s, legacy SAML: %s", version, legacy)
        return legacy
