"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~kioncli.exceptions.KionCliError` subclass.
Shell wrappers (and the AWS SDK, when ``kion-cli`` runs as a
``credential_process``) can inspect the exit code to determine the failure
class without parsing stderr.

Example::

    $ kion-cli stak --car Admin --account 123456789012 --print
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- credentials were rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or the cached session could not be used."""

EXIT_API_ERROR = 5
"""The Kion API returned an error response."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_CACHE_ERROR = 8
"""The credential cache could not be read or written."""

EXIT_SAML_ERROR = 9
"""The SAML handshake failed (bad metadata, missing SSO code, token exchange)."""
