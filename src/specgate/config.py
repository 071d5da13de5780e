"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for specgate:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.specgate/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **User config** -- A single :class:`~specgate.models.GateConfig` JSON file
  storing defaults (failure threshold, output names, resolver policy).
* **Project config** -- ``./specgate.json`` pins settings for one repository,
  for example ``{"resolver": {"allow_file_refs": true}}``.
* **Precedence resolution** -- :func:`resolve_config` merges CLI flags,
  environment variables, project config, and user config into the final
  effective configuration.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) so that an interrupted run never leaves a truncated
output behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from specgate.exceptions import ConfigError
from specgate.models import GateConfig

_APP_NAME = "specgate"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "specgate.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/specgate/`` (default ``~/.config/specgate/``).
    On macOS/Windows: ``~/.specgate/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/specgate/`` (default ``~/.local/share/specgate/``).
    On macOS/Windows: ``~/.specgate/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.

    Args:
        path: Destination file.
        data: Text to write (UTF-8).
        mode: Permission bits for the final file. Temp files are created
            ``0600``, so callers producing shared artefacts pass ``0o644``.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- User config ---


def _user_config_path() -> Path:
    """Path to the user config file."""
    return get_config_dir() / _CONFIG_FILENAME


def _read_json_object(path: Path, label: str) -> Optional[dict[str, Any]]:
    """Read a JSON object from *path*, or return ``None`` if the file is absent."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigError(f"Invalid {label} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {label} at {path}: expected a JSON object")
    return data


def load_user_config() -> GateConfig:
    """Load the user configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~specgate.models.GateConfig`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _user_config_path()
    data = _read_json_object(path, "user config")
    if data is None:
        return GateConfig()
    try:
        return GateConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid user config at {path}: {exc}") from exc


# --- Project-local config ---


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./specgate.json``.

    Project-local config sits between user config and environment variables
    in the precedence chain. Only the keys present in the file override the
    user config.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON.
    """
    return _read_json_object(Path.cwd() / _PROJECT_CONFIG_FILENAME, "project config")


# --- Environment ---


def _env_bool(name: str) -> Optional[bool]:
    """Parse a boolean environment variable, or return ``None`` if unset."""
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean for {name}: {raw!r}")


def load_env_overrides() -> dict[str, Any]:
    """Collect overrides from ``SPECGATE_*`` environment variables.

    Recognised variables: ``SPECGATE_FAIL_ON``, ``SPECGATE_OUTPUT_DIR``,
    ``SPECGATE_ALLOW_REMOTE``, ``SPECGATE_ALLOW_FILE_REFS``,
    ``SPECGATE_ON_CYCLE``.
    """
    overrides: dict[str, Any] = {}
    resolver: dict[str, Any] = {}

    fail_on = os.environ.get("SPECGATE_FAIL_ON")
    if fail_on:
        overrides["fail_on"] = fail_on.strip().lower()
    output_dir = os.environ.get("SPECGATE_OUTPUT_DIR")
    if output_dir:
        overrides["output_dir"] = output_dir

    allow_remote = _env_bool("SPECGATE_ALLOW_REMOTE")
    if allow_remote is not None:
        resolver["allow_remote"] = allow_remote
    allow_file_refs = _env_bool("SPECGATE_ALLOW_FILE_REFS")
    if allow_file_refs is not None:
        resolver["allow_file_refs"] = allow_file_refs
    on_cycle = os.environ.get("SPECGATE_ON_CYCLE")
    if on_cycle:
        resolver["on_cycle"] = on_cycle.strip().lower()

    if resolver:
        overrides["resolver"] = resolver
    return overrides


# --- Precedence resolution ---


def resolve_config(cli_overrides: Optional[dict[str, Any]] = None) -> GateConfig:
    """Resolve config with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_overrides``; ``None`` values are ignored)
        2. Environment variables (``SPECGATE_*``)
        3. Project config (``./specgate.json``)
        4. User config (``~/.config/specgate/config.json``)
        5. Defaults

    Args:
        cli_overrides: Flat or nested overrides from the command line. A
            nested ``resolver`` dict is merged key by key.

    Returns:
        The effective :class:`~specgate.models.GateConfig`.

    Raises:
        ConfigError: If any layer holds invalid JSON or invalid values.
    """
    # 5 + 4. Defaults and user config
    config = load_user_config()

    layers: list[tuple[str, Optional[dict[str, Any]]]] = [
        # 3. Project-local config
        ("project config", load_project_config()),
        # 2. Environment variables
        ("environment", load_env_overrides()),
        # 1. CLI flags (highest precedence)
        ("command line", _drop_none(cli_overrides or {})),
    ]
    for label, layer in layers:
        if not layer:
            continue
        try:
            config = config.merged(layer)
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings from {label}: {exc}") from exc

    return config


def _drop_none(overrides: dict[str, Any]) -> dict[str, Any]:
    """Remove unset CLI options, recursing into the nested ``resolver`` dict."""
    cleaned: dict[str, Any] = {}
    for key, value in overrides.items():
        if isinstance(value, dict):
            nested = _drop_none(value)
            if nested:
                cleaned[key] = nested
        elif value is not None:
            cleaned[key] = value
    return cleaned
