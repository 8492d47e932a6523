"""Where kion-cli keeps its files, and how its settings are resolved.

Files:

* ``config.json`` under the config directory holds a
  :class:`~kioncli.models.KionConfig` (see :func:`load_config` /
  :func:`save_config`).
* The data directory holds the encrypted secret files of the ``file``
  backend and crash logs.

On Linux and the BSDs both directories follow the XDG base directory
layout (``$XDG_CONFIG_HOME/kion-cli``, ``$XDG_DATA_HOME/kion-cli``);
elsewhere everything lives under ``~/.kion-cli``.

Effective settings come from :func:`resolve_config`: CLI flags, then
``KION_*`` environment variables, then the config file. Every write goes
through :func:`atomic_write`.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from kioncli.exceptions import ConfigError
from kioncli.models import KionConfig

_APP_NAME = "kion-cli"
_CONFIG_FILENAME = "config.json"

# env var -> KionConfig field
_ENV_OVERRIDES: dict[str, str] = {
    "KION_URL": "url",
    "KION_API_KEY": "api_key",
    "KION_USERNAME": "username",
    "KION_PASSWORD": "password",
    "KION_IDMS_ID": "idms_id",
    "KION_SAML_METADATA_FILE": "saml_metadata_file",
    "KION_SAML_SP_ISSUER": "saml_issuer",
    "KION_SAML_PRINT_URL": "saml_print_url",
    "KION_DISABLE_CACHE": "disable_cache",
}

# (XDG variable, default relative to $HOME, sub-directory on other platforms)
_DIRS: dict[str, tuple[str, str, str]] = {
    "config": ("XDG_CONFIG_HOME", ".config", ""),
    "data": ("XDG_DATA_HOME", ".local/share", "data"),
}


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(kind: str) -> Path:
    env_var, home_default, fallback_sub = _DIRS[kind]
    if _is_xdg_platform():
        root = Path(os.environ.get(env_var) or Path.home() / home_default)
        path = root / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json``; created on demand."""
    return _app_dir("config")


def get_data_dir() -> Path:
    """Directory for secret files and crash logs; created on demand."""
    return _app_dir("data")


# --- Atomic file writes ---


def atomic_write(path: Path, data: str | bytes, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* so readers never see a partial file.

    The content goes to a sibling temporary file that is fsynced and then
    renamed over *path*. With *mode* (e.g. ``0o600`` for secrets) the
    permissions are set before any byte is written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode("utf-8") if isinstance(data, str) else data
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            if mode is not None:
                os.fchmod(handle.fileno(), mode)
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


# --- User config ---


def config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> KionConfig:
    """Load the user configuration.

    Args:
        path: Explicit file to read. Defaults to :func:`config_path`.

    Returns:
        The deserialised :class:`~kioncli.models.KionConfig`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = path or config_path()
    if not path.is_file():
        return KionConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return KionConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_config(config: KionConfig, path: Optional[Path] = None) -> None:
    """Persist the configuration atomically with ``0o600`` permissions.

    The file may hold a password or API key, so it is never world-readable.
    """
    data = config.model_dump(mode="json")
    atomic_write(path or config_path(), json.dumps(data, indent=2) + "\n", mode=0o600)


# --- Precedence resolution ---


def _env_overrides() -> dict[str, Any]:
    """Collect ``KION_*`` environment overrides as KionConfig field values."""
    overrides: dict[str, Any] = {}
    for var, field in _ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            overrides[field] = value
    return overrides


def resolve_config(
    cli_overrides: Optional[dict[str, Any]] = None,
    path: Optional[Path] = None,
) -> KionConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_overrides``; ``None`` values are ignored)
        2. Environment variables (``KION_URL``, ``KION_API_KEY``, ...)
        3. User config (``~/.config/kion-cli/config.json``)
        4. Defaults

    Returns:
        The effective :class:`~kioncli.models.KionConfig`.

    Raises:
        ConfigError: If the merged values fail validation.
    """
    base = load_config(path).model_dump()
    base.update(_env_overrides())
    for key, value in (cli_overrides or {}).items():
        if value is not None:
            base[key] = value
    try:
        config = KionConfig.model_validate(base)
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc
    config.url = config.url.rstrip("/")
    return config
