"""SAML local-callback handshake.

The identity provider POSTs its assertion to a listener on
``http://localhost:8400/callback``. The request handler replays that
assertion to Kion and turns it into an application token::

    GET  {kion}/api/v2/csrf-token                 -> CSRF token + cookie
    POST {kion}/api/v1/saml/callback              -> HTML containing code=...
    GET  {kion}/api/v2/login/sso-provider?code=   -> access token + refresh cookie

Installations older than Kion 3.8.0 (``legacy=True``) skip the CSRF and
code-exchange steps: the token is embedded directly in the callback page.

The handler runs on the server thread while :meth:`SAMLHandshake.run`
blocks on a :class:`CallbackSlot`. Only the first callback request may
claim the slot; any later request is answered with ``409 Conflict`` and
never reaches Kion. Once a result is published the caller shuts the
listener down and returns it.
"""

from __future__ import annotations

import html
import logging
import re
import threading
import webbrowser
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional

import httpx
from cryptography import x509

from kioncli.auth.saml.metadata import (
    IDPMetadata,
    build_authn_url,
    build_certificate_store,
    validate_metadata,
)
from kioncli.exceptions import SAMLError
from kioncli.models import AuthData, CookieData
from kioncli.output import get_output

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8400
DEFAULT_TIMEOUT = 60.0
PRINT_URL_TIMEOUT = 180.0

_SSO_CODE_RE = re.compile(r'code=(.+)">')
_LEGACY_TOKEN_RE = re.compile(r"token: '(.+)',")

AUTH_PAGE = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <title>Kion-CLI</title>
    <style>
      html { background: #f3f7f4; }
      body { display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; }
      #wrapper { text-align: center; font-family: monospace, monospace; }
    </style>
  </head>
  <body>
    <div id="wrapper">
      <p>YOU MAY CLOSE THIS WINDOW</p>
      <script type="text/javascript">window.close()</script>
    </div>
  </body>
</html>
"""


def _truncate(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


@dataclass
class CallbackResult:
    """What the callback handler hands back: token data or an error."""

    data: Optional[AuthData] = None
    error: Optional[Exception] = None


class CallbackSlot:
    """Single-slot, first-wins rendezvous between the handler and the caller.

    A request handler calls :meth:`claim` before doing any work; only the
    first claim succeeds. The claimant then calls :meth:`publish` exactly
    once, which releases :meth:`wait`. Publishing into a filled slot is a
    no-op that returns False.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._claimed = False
        self._result: Optional[CallbackResult] = None

    def claim(self) -> bool:
        """Reserve the slot for the calling request. Returns False if already taken."""
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def publish(self, result: CallbackResult) -> bool:
        """Store *result* and wake the waiter. Returns False if a result is already stored."""
        with self._lock:
            if self._result is not None:
                return False
            self._claimed = True
            self._result = result
        self._ready.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[CallbackResult]:
        """Block until a result is published; ``None`` on timeout."""
        if not self._ready.wait(timeout):
            return None
        return self._result


def _collect_cookies(response: httpx.Response) -> list[CookieData]:
    return [
        CookieData(name=c.name, value=c.value or "", domain=c.domain, path=c.path)
        for c in response.cookies.jar
    ]


class SAMLHandshake:
    """Drive one browser-based SAML login against a Kion installation.

    Args:
        app_url: Kion base URL.
        metadata: Parsed IDP metadata.
        sp_issuer: SAML service-provider issuer configured in Kion.
        print_url: Print the login URL instead of opening a browser.
        legacy: Use the pre-3.8.0 callback exchange.
        port: Local listener port; ``0`` picks a free one.
        timeout: Seconds to wait for the callback. Defaults to 60, or 180
            when *print_url* is set.
        client_factory: Builds the :class:`httpx.Client` used for the
            Kion calls made from the handler.
        browser_opener: Opens a URL, returning False when no browser is
            available. Defaults to :func:`webbrowser.open`.
    """

    def __init__(
        self,
        app_url: str,
        metadata: IDPMetadata,
        sp_issuer: str,
        *,
        print_url: bool = False,
        legacy: bool = False,
        port: int = DEFAULT_PORT,
        timeout: Optional[float] = None,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
        browser_opener: Optional[Callable[[str], bool]] = None,
    ) -> None:
        if not app_url:
            raise SAMLError("The Kion URL is required for SAML authentication")
        if not sp_issuer:
            raise SAMLError(
                "The SAML service provider issuer is required. It is shown in "
                "the SAML settings of your Kion installation"
            )
        self.app_url = app_url.rstrip("/")
        self.metadata = metadata
        self.sp_issuer = sp_issuer
        self.print_url = print_url
        self.legacy = legacy
        self.port = port
        if timeout is None:
            timeout = PRINT_URL_TIMEOUT if print_url else DEFAULT_TIMEOUT
        self.timeout = timeout
        self._client_factory = client_factory or (lambda: httpx.Client(timeout=30.0))
        self._browser_opener = browser_opener or webbrowser.open
        self.slot = CallbackSlot()
        self.certificates: list[x509.Certificate] = []
        self.callback_port: Optional[int] = None

    # ------------------------------------------------------------------ #
    # Caller side
    # ------------------------------------------------------------------ #

    def run(self) -> AuthData:
        """Run the handshake and return the Kion token data.

        Raises:
            SAMLError: On invalid metadata, a busy port, a failed exchange,
                or when no callback arrives within the timeout.
        """
        try:
            validate_metadata(self.metadata)
        except SAMLError as exc:
            raise SAMLError(f"SAML metadata validation failed: {exc}") from exc
        self.certificates = build_certificate_store(self.metadata)
        logger.debug("Loaded %d IDP certificate(s)", len(self.certificates))

        try:
            server = HTTPServer(("localhost", self.port), self._make_handler())
        except OSError as exc:
            raise SAMLError(f"Cannot listen for the SAML callback on port {self.port}: {exc}") from exc

        port = self.callback_port = server.server_address[1]
        auth_url = build_authn_url(
            self.metadata.sso_locations[0],
            self.sp_issuer,
            f"http://localhost:{port}/callback",
        )
        thread = threading.Thread(target=server.serve_forever, name="saml-callback", daemon=True)
        thread.start()
        logger.debug("SAML callback listener on port %d", port)

        try:
            self._launch_browser(auth_url)
            result = self.slot.wait(self.timeout)
        finally:
            server.shutdown()
            server.server_close()
            thread.join()

        if result is None:
            raise SAMLError(f"Authentication timed out after {self.timeout:g} seconds")
        if result.error is not None:
            raise result.error
        if result.data is None:
            raise SAMLError("SAML callback finished without a token")
        return result.data

    def _launch_browser(self, auth_url: str) -> None:
        output = get_output()
        if not self.print_url:
            try:
                opened = self._browser_opener(auth_url)
            except webbrowser.Error as exc:
                logger.debug("Browser launch failed: %s", exc)
                opened = False
            if opened:
                return
            output.warning("No browser available.")
        output.notice("Please copy the following URL into your browser to authenticate:")
        output.notice(f"\n{auth_url}\n")

    # ------------------------------------------------------------------ #
    # Handler side
    # ------------------------------------------------------------------ #

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        handshake = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                self.send_error(404)

            def do_OPTIONS(self) -> None:
                # Private network access preflight.
                self.send_response(200)
                self.send_header("Content-Length", "0")
                self.end_headers()

            def do_POST(self) -> None:
                # Drain the body first; closing a socket with unread data resets it.
                length = int(self.headers.get("Content-Length") or 0)
                assertion = self.rfile.read(length)
                if "/favicon.ico" in self.path:
                    self.send_error(404)
                    return
                if not handshake.slot.claim():
                    self.send_error(409, "Authentication already in progress")
                    return

                try:
                    data = handshake.exchange(assertion)
                except SAMLError as exc:
                    handshake.slot.publish(CallbackResult(error=exc))
                    try:
                        page = f"<html><body><p>{html.escape(str(exc))}</p></body></html>"
                        self._reply(502, page)
                    except OSError as reply_exc:
                        logger.debug("Could not send the error page: %s", reply_exc)
                    return

                try:
                    self._reply(200, AUTH_PAGE)
                except OSError as exc:
                    handshake.slot.publish(
                        CallbackResult(error=SAMLError(f"Failed to send auto-close response: {exc}"))
                    )
                    return
                handshake.slot.publish(CallbackResult(data=data))

            def _reply(self, status: int, body: str) -> None:
                payload = body.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)
                self.wfile.flush()

            def log_message(self, format: str, *args: Any) -> None:
                logger.debug("callback: " + format, *args)

        return CallbackHandler

    def exchange(self, assertion: bytes) -> AuthData:
        """Trade the posted SAML assertion for a Kion token.

        Raises:
            SAMLError: If any step of the exchange fails.
        """
        try:
            with self._client_factory() as client:
                if self.legacy:
                    return self._exchange_legacy(client, assertion)
                return self._exchange_sso(client, assertion)
        except httpx.HTTPError as exc:
            raise SAMLError(f"Error contacting Kion during SAML login: {exc}") from exc

    def _exchange_sso(self, client: httpx.Client, assertion: bytes) -> AuthData:
        csrf_token, csrf_cookies = self._get_csrf_token(client)
        body = self._post_assertion(client, assertion)

        match = _SSO_CODE_RE.search(body)
        if match is None:
            raise SAMLError(
                f"Could not find SSO code in SAML authentication response: {_truncate(body)}"
            )
        logger.debug("Received SSO code, exchanging for access token")

        response = client.get(
            f"{self.app_url}/api/v2/login/sso-provider?code={match.group(1)}",
            headers={"X-Csrf-Token": csrf_token},
        )
        if response.status_code != 200:
            raise SAMLError(
                f"Auth token request failed with HTTP status {response.status_code}: "
                f"{_truncate(response.text, 300)}\nCheck that the SAML service provider "
                "issuer matches Kion's configuration"
            )
        try:
            token = response.json()["data"]["access"]["token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SAMLError(
                f"Failed to parse auth token response: {_truncate(response.text)}"
            ) from exc
        if not token:
            raise SAMLError(f"Auth token response contained an empty token: {_truncate(response.text)}")

        return AuthData(
            auth_token=token,
            cookies=_collect_cookies(response) + csrf_cookies,
            csrf_token=csrf_token,
        )

    def _exchange_legacy(self, client: httpx.Client, assertion: bytes) -> AuthData:
        body = self._post_assertion(client, assertion)
        match = _LEGACY_TOKEN_RE.search(body)
        if match is None:
            raise SAMLError(
                f"Could not find access token in SAML authentication response: {_truncate(body)}"
            )
        return AuthData(auth_token=match.group(1))

    def _get_csrf_token(self, client: httpx.Client) -> tuple[str, list[CookieData]]:
        response = client.get(f"{self.app_url}/api/v2/csrf-token")
        if response.status_code != 200:
            raise SAMLError(f"CSRF token request failed with HTTP status {response.status_code}")
        try:
            token = response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise SAMLError(
                f"Failed to parse CSRF token response: {_truncate(response.text)}"
            ) from exc
        if not token:
            raise SAMLError(f"CSRF token response contained an empty token: {_truncate(response.text)}")
        return token, _collect_cookies(response)

    def _post_assertion(self, client: httpx.Client, assertion: bytes) -> str:
        response = client.post(
            f"{self.app_url}/api/v1/saml/callback",
            content=assertion,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return response.text
