"""Shared test fixtures for kioncli.

Provides isolated config directories, a clean output manager between
tests, an in-memory secret store, IDP metadata with a freshly generated
signing certificate, and a fake prompter.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from kioncli.cache.store import MemorySecretStore
from kioncli.output import OutputManager, reset_output, set_output

from tests.helpers import FakePrompter, make_certificate_b64, make_metadata_xml


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stderr at creation time.
    When Typer's CliRunner redirects the streams and the test finishes,
    those references go stale. Resetting forces a fresh manager.
    """
    yield
    reset_output()


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet, colourless OutputManager for the test."""
    output = OutputManager(no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME and XDG_DATA_HOME into tmp_path, forces the XDG
    layout, and clears every KION_* variable so tests never see the real
    user environment.
    """
    monkeypatch.setattr("kioncli.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in [
        "KION_URL",
        "KION_API_KEY",
        "KION_USERNAME",
        "KION_PASSWORD",
        "KION_IDMS_ID",
        "KION_SAML_METADATA_FILE",
        "KION_SAML_SP_ISSUER",
        "KION_SAML_PRINT_URL",
        "KION_DISABLE_CACHE",
        "KION_CACHE_PASSPHRASE",
    ]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Secret store / prompts
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store() -> MemorySecretStore:
    return MemorySecretStore()


@pytest.fixture
def prompter() -> FakePrompter:
    return FakePrompter()


# ---------------------------------------------------------------------------
# SAML metadata
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def cert_b64() -> str:
    return make_certificate_b64()


@pytest.fixture
def metadata_xml(cert_b64: str) -> str:
    return make_metadata_xml(cert_b64)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
