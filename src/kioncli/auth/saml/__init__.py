"""Browser-driven SAML login against Kion."""

from kioncli.auth.saml.handshake import CallbackResult, CallbackSlot, SAMLHandshake
from kioncli.auth.saml.metadata import (
    IDPMetadata,
    build_authn_url,
    build_certificate_store,
    load_metadata,
    validate_metadata,
)

__all__ = [
    "CallbackResult",
    "CallbackSlot",
    "IDPMetadata",
    "SAMLHandshake",
    "build_authn_url",
    "build_certificate_store",
    "load_metadata",
    "validate_metadata",
]
