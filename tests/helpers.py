"""Helpers shared by the test modules: fake prompts and IDP metadata builders."""

from __future__ import annotations

import base64
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

KION_URL = "https://kion.example.com"
IDP_SSO_URL = "https://idp.example.com/sso/saml"


class FakePrompter:
    """Scripted stand-in for :class:`kioncli.prompts.Prompter`.

    Answers are looked up by prompt message; every prompt is recorded.
    """

    def __init__(self, answers: dict[str, str] | None = None) -> None:
        self.answers = dict(answers or {})
        self.asked: list[str] = []

    def _answer(self, message: str) -> str:
        self.asked.append(message)
        if message not in self.answers:
            raise AssertionError(f"Unexpected prompt: {message!r}")
        return self.answers[message]

    def select(self, message: str, options: list[str]) -> str:
        answer = self._answer(message)
        assert answer in options
        return answer

    def input(self, message: str) -> str:
        return self._answer(message)

    def password(self, message: str) -> str:
        return self._answer(message)


def make_certificate_b64() -> str:
    """Generate a throwaway self-signed certificate, base64 DER encoded."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "idp.example.com")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return base64.b64encode(cert.public_bytes(serialization.Encoding.DER)).decode("ascii")


def make_metadata_xml(cert_b64: str, sso_url: str = IDP_SSO_URL) -> str:
    return f"""<?xml version="1.0"?>
<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
    xmlns:ds="http://www.w3.org/2000/09/xmldsig#"
    entityID="https://idp.example.com/metadata">
  <md:IDPSSODescriptor protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
    <md:KeyDescriptor use="signing">
      <ds:KeyInfo>
        <ds:X509Data>
          <ds:X509Certificate>
            {cert_b64}
          </ds:X509Certificate>
        </ds:X509Data>
      </ds:KeyInfo>
    </md:KeyDescriptor>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
        Location="{sso_url}"/>
  </md:IDPSSODescriptor>
</md:EntityDescriptor>
"""
