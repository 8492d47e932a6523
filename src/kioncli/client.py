"""Synchronous client for the remote Kion API.

:class:`KionClient` wraps :class:`httpx.Client` and covers only the calls
the credential broker needs: IDMS discovery, username/password login,
version negotiation, and STAK issuance. Every Kion response body is an
envelope::

    {"status": 200, "message": "", "data": ...}

and the client returns the unwrapped ``data`` value.

Error mapping:

- 401 / 403 -> :class:`~kioncli.exceptions.AuthError`
- any other status >= 400 -> :class:`~kioncli.exceptions.APIError`
- network and timeout failures -> :class:`~kioncli.exceptions.ConnectionError_`

No retries are attempted; a failure ends the current command.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from kioncli import __version__
from kioncli.exceptions import APIError, AuthError, ConnectionError_
from kioncli.models import IDMS, STAK, Session
from kioncli.validity import stak_expiration

logger = logging.getLogger(__name__)

SOURCE_HEADER = {"kion-source": "kion-cli"}
DEFAULT_TIMEOUT = 30.0

# IDMS types that accept a username and password through Kion itself.
_PASSWORD_IDMS_TYPES = (1, 2)


class KionClient:
    """Client for the Kion REST API.

    Must be used as a context manager so the underlying transport is
    opened and closed.

    Args:
        base_url: Kion installation URL, e.g. ``https://kion.example.com``.
        token: Bearer token for authenticated calls. Login calls work
            without one.
        timeout: Per-request timeout in seconds.
        transport: Optional :class:`httpx.BaseTransport`, used by tests to
            inject a :class:`httpx.MockTransport`.

    Example::

        with KionClient("https://kion.example.com", token=token) as client:
            stak = client.get_stak("Admin", "123456789012", "")
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> KionClient:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"kion-cli/{__version__}",
            **SOURCE_HEADER,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.Client(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------ #
    # API calls
    # ------------------------------------------------------------------ #

    def get_idmss(self) -> list[IDMS]:
        """Return the IDMSs that accept username/password logins."""
        data = self._request("GET", "/api/v2/idms")
        idmss = [IDMS.model_validate(item) for item in data or []]
        return [idms for idms in idmss if idms.idms_type_id in _PASSWORD_IDMS_TYPES]

    def authenticate(self, idms_id: int, username: str, password: str) -> Session:
        """Log in with a username and password.

        Raises:
            AuthError: If Kion rejects the credentials.
        """
        data = self._request(
            "POST",
            "/api/v3/token",
            json_body={"idms": idms_id, "username": username, "password": password},
        )
        return Session.model_validate(data)

    def get_version(self) -> str:
        """Return the Kion version with any ``-dev`` style suffix removed."""
        data = self._request("GET", "/api/version")
        return str(data).split("-")[0]

    def get_stak(self, car: str, account_number: str, account_alias: str) -> STAK:
        """Issue short-term access keys for a cloud access role.

        Pass either *account_number* or *account_alias*; when both are
        set the account number is used. The returned STAK carries an
        ``expiration`` computed from the reported duration.
        """
        if account_number and account_alias:
            account_alias = ""
        data = self._request(
            "POST",
            "/api/v3/temporary-credentials/cloud-access-role",
            json_body={
                "account_number": account_number,
                "account_alias": account_alias,
                "cloud_access_role_name": car,
            },
        )
        issued = STAK.model_validate(data)
        return issued.model_copy(update={"expiration": stak_expiration(issued.duration)})

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _request(self, method: str, path: str, json_body: Any = None) -> Any:
        """Send a request and return the unwrapped ``data`` value."""
        assert self._client is not None, "Client not initialised -- use as context manager"
        logger.debug("%s %s%s", method, self._base_url, path)
        try:
            response = self._client.request(method, path, json=json_body)
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            raise ConnectionError_(f"Cannot reach {self._base_url}: {exc}") from exc
        self._map_response_error(response)
        try:
            envelope = response.json()
        except ValueError as exc:
            raise APIError(
                f"Unexpected non-JSON response from {path}: {response.text[:200]}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(envelope, dict):
            raise APIError(f"Unexpected response shape from {path}", response.status_code)
        return envelope.get("data")

    @staticmethod
    def _map_response_error(response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            msg = detail.get("message", "") if isinstance(detail, dict) else str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        full_msg = f"[{status}] {msg}" if msg else f"[{status}]"
        if status in (401, 403):
            raise AuthError(full_msg)
        raise APIError(full_msg, status_code=status)
