"""kioncli -- broker temporary cloud credentials from a Kion installation.

The package authenticates a user against the Kion API (static API key,
username/password, or browser-driven SAML), caches the resulting session
and short-term access keys (STAKs) in the platform secret store, and
hands the credentials to a shell or to the AWS SDK's ``credential_process``
hook.

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration loading with env-var precedence.
    client: httpx client for the remote Kion API.
    validity: Action-specific cache validity buffers.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.9.0"
