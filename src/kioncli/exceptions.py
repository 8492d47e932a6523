"""Exception hierarchy for kioncli.

All user-facing exceptions inherit from :class:`KionCliError`, which carries
an ``exit_code`` attribute mapped to a constant from :mod:`kioncli.exit_codes`.
The top-level error handler in :func:`kioncli.app.main` catches
``KionCliError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    KionCliError (exit 1)
    +-- InvalidUsageError   (exit 2)
    +-- AuthError           (exit 3)
    |   +-- SessionError    (exit 3)
    +-- APIError            (exit 5)
    +-- ConnectionError_    (exit 6)
    +-- CacheError          (exit 8)
    +-- SAMLError           (exit 9)
    +-- ConfigError         (exit 1)

:class:`SecretNotFoundError` is deliberately outside the hierarchy: it is
the secret store's "no such item" signal and the cache layer turns it into
an empty record instead of letting it reach the user.
"""

from kioncli.exit_codes import (
    EXIT_API_ERROR,
    EXIT_AUTH_FAILURE,
    EXIT_CACHE_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SAML_ERROR,
)


class KionCliError(Exception):
    """Base exception for all kioncli errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`kioncli.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(KionCliError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class AuthError(KionCliError):
    """Raised when authentication fails (rejected password, bad API key, 401/403)."""

    exit_code = EXIT_AUTH_FAILURE


class SessionError(AuthError):
    """Raised when a cached session carries an expiry that cannot be parsed."""


class APIError(KionCliError):
    """Raised when the Kion API answers with a non-auth error status."""

    exit_code = EXIT_API_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionError_(KionCliError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR


class CacheError(KionCliError):
    """Raised when the cache record cannot be read, decoded, or written."""

    exit_code = EXIT_CACHE_ERROR


class SAMLError(KionCliError):
    """Raised for SAML protocol failures: bad metadata, missing SSO code, failed exchange."""

    exit_code = EXIT_SAML_ERROR


class ConfigError(KionCliError):
    """Raised for configuration problems (invalid JSON, bad values)."""

    exit_code = EXIT_GENERIC_FAILURE


class SecretNotFoundError(LookupError):
    """Raised by a :class:`~kioncli.cache.store.SecretStore` when no item exists under a name."""
