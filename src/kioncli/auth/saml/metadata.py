"""Identity-provider metadata: loading, validation, trust store, and login URL.

The SAML login needs three things from the IDP's metadata document: its
entity id, the single sign-on service location, and the signing
certificates. :func:`load_metadata` reads the XML (from an ``https://``
URL or a local file) into :class:`IDPMetadata`, :func:`validate_metadata`
checks the pieces are all present, and :func:`build_certificate_store`
parses the certificates with :mod:`cryptography`.

Certificates are loaded so that malformed metadata fails fast, before a
browser is opened. Signatures on the returned assertion are checked by
Kion, not here.
"""

from __future__ import annotations

import base64
import binascii
import uuid
import xml.etree.ElementTree as ET
import zlib
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlencode
from xml.sax.saxutils import escape, quoteattr

import httpx
from cryptography import x509
from pydantic import BaseModel, Field

from kioncli.exceptions import SAMLError

_MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
_DS_NS = "http://www.w3.org/2000/09/xmldsig#"

_PREVIEW_CHARS = 200


class KeyDescriptor(BaseModel):
    """One ``KeyDescriptor`` element: a key use and its base64 certificates."""

    use: str = ""
    certificates: list[str] = Field(default_factory=list)


class IDPMetadata(BaseModel):
    """The subset of an ``EntityDescriptor`` needed to start a SAML login."""

    entity_id: str = ""
    has_idp_descriptor: bool = False
    sso_locations: list[str] = Field(default_factory=list)
    key_descriptors: list[KeyDescriptor] = Field(default_factory=list)


def _truncate(text: str, limit: int = _PREVIEW_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def parse_metadata(raw: bytes, origin: str) -> IDPMetadata:
    """Parse raw metadata XML.

    Args:
        raw: The XML document.
        origin: Where *raw* came from, for error messages.

    Raises:
        SAMLError: If *raw* is empty or not well-formed XML.
    """
    if not raw.strip():
        raise SAMLError(f"SAML metadata from {origin} is empty")
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        preview = _truncate(raw.decode("utf-8", errors="replace"))
        raise SAMLError(
            f"Error parsing SAML metadata XML from {origin}: {exc}\n"
            f"The content may not be SAML metadata. First {_PREVIEW_CHARS} chars:\n{preview}"
        ) from exc

    metadata = IDPMetadata(entity_id=root.get("entityID", ""))
    idp = root.find(f"{{{_MD_NS}}}IDPSSODescriptor")
    if idp is None:
        return metadata

    metadata.has_idp_descriptor = True
    metadata.sso_locations = [
        elem.get("Location", "") for elem in idp.findall(f"{{{_MD_NS}}}SingleSignOnService")
    ]
    for kd in idp.findall(f"{{{_MD_NS}}}KeyDescriptor"):
        certs = [
            "".join((elem.text or "").split())
            for elem in kd.iter(f"{{{_DS_NS}}}X509Certificate")
        ]
        metadata.key_descriptors.append(KeyDescriptor(use=kd.get("use", ""), certificates=certs))
    return metadata


def load_metadata(source: str, timeout: float = 30.0) -> IDPMetadata:
    """Load IDP metadata from an ``http(s)`` URL or a file path.

    Raises:
        SAMLError: If the source is blank, unreachable, unreadable, empty,
            or not XML.
    """
    if not source:
        raise SAMLError(
            "SAML metadata source is empty. Provide the URL or file path of "
            "your identity provider's metadata"
        )

    if source.startswith(("http://", "https://")):
        try:
            response = httpx.get(source, timeout=timeout, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise SAMLError(f"Failed to download SAML metadata from {source!r}: {exc}") from exc
        if response.status_code != 200:
            raise SAMLError(
                f"Failed to download SAML metadata from {source!r}: "
                f"received HTTP status {response.status_code}"
            )
        return parse_metadata(response.content, repr(source))

    path = Path(source).expanduser()
    if not path.is_file():
        raise SAMLError(f"SAML metadata file {source!r} does not exist")
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise SAMLError(f"Error reading SAML metadata file {source!r}: {exc}") from exc
    return parse_metadata(raw, f"file {source!r}")


def validate_metadata(metadata: IDPMetadata) -> None:
    """Check that *metadata* can drive a login.

    Raises:
        SAMLError: Naming the first missing piece.
    """
    if not metadata.entity_id:
        raise SAMLError(
            "SAML metadata is missing EntityID. The metadata may be malformed "
            "or from an incorrect source"
        )
    if not metadata.has_idp_descriptor:
        raise SAMLError(
            "SAML metadata is missing IDPSSODescriptor. This usually means "
            "Service Provider metadata was supplied instead of Identity "
            "Provider metadata, or the URL points to the wrong endpoint"
        )
    if not metadata.sso_locations:
        raise SAMLError("SAML metadata IDPSSODescriptor has no SingleSignOnService defined")
    if not metadata.sso_locations[0]:
        raise SAMLError("SAML metadata SingleSignOnService Location is empty")
    if not metadata.key_descriptors:
        raise SAMLError("SAML metadata has no KeyDescriptors (signing certificates)")
    if not any(cert for kd in metadata.key_descriptors for cert in kd.certificates):
        raise SAMLError("SAML metadata KeyDescriptors contain no X509 certificates")


def build_certificate_store(metadata: IDPMetadata) -> list[x509.Certificate]:
    """Parse every IDP certificate in *metadata*.

    Raises:
        SAMLError: If any certificate entry is empty, not base64, or not a
            DER-encoded X.509 certificate.
    """
    store: list[x509.Certificate] = []
    for kd in metadata.key_descriptors:
        for idx, data in enumerate(kd.certificates):
            if not data:
                raise SAMLError(f"metadata certificate({idx}) must not be empty")
            try:
                der = base64.b64decode(data, validate=True)
                store.append(x509.load_der_x509_certificate(der))
            except (binascii.Error, ValueError) as exc:
                raise SAMLError(f"metadata certificate({idx}) is invalid: {exc}") from exc
    return store


def build_authn_url(sso_url: str, sp_issuer: str, acs_url: str) -> str:
    """Build the HTTP-Redirect login URL carrying a deflated ``AuthnRequest``."""
    request_id = f"_{uuid.uuid4()}"
    issue_instant = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    authn_request = (
        '<samlp:AuthnRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"'
        ' xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"'
        f" ID={quoteattr(request_id)}"
        ' Version="2.0"'
        f" IssueInstant={quoteattr(issue_instant)}"
        f" Destination={quoteattr(sso_url)}"
        f" AssertionConsumerServiceURL={quoteattr(acs_url)}"
        ' ProtocolBinding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST">'
        f"<saml:Issuer>{escape(sp_issuer)}</saml:Issuer>"
        '<samlp:NameIDPolicy AllowCreate="true"'
        ' Format="urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"/>'
        "</samlp:AuthnRequest>"
    )
    deflated = zlib.compress(authn_request.encode("utf-8"))[2:-4]  # raw deflate
    encoded = base64.b64encode(deflated).decode("ascii")
    separator = "&" if "?" in sso_url else "?"
    return f"{sso_url}{separator}{urlencode({'SAMLRequest': encoded})}"
