"""Configuration with XDG paths, atomic writes, and precedence resolution.

This module turns the process environment and the user's config file into
the explicit values the library consumes; nothing in :mod:`goslings.auth`
reads the environment on its own.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.goslings/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Auth parameters** -- :func:`load_auth_params` reads the ``GOSLING_*``
  environment variables into an :class:`~goslings.models.AuthParams`.
* **Manager options** -- :func:`load_manager_options` merges explicit
  overrides, ``GOSLINGS_*`` environment variables, and
  ``<config_dir>/config.json`` into a
  :class:`~goslings.models.ManagerOptions`.
* **Key material** -- :func:`resolve_credential` reads secrets from env
  vars, files, or an interactive prompt; :func:`decode_key` and
  :func:`generate_key` handle the 32-byte store key.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) with ``0o600`` permissions.
"""

from __future__ import annotations

import base64
import binascii
import getpass
import json
import os
import platform
import sys
import tempfile
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from goslings.exceptions import ConfigError, UnsupportedStoreTypeError
from goslings.models import AuthParams, GoslingsConfig, ManagerOptions, StoreType

_APP_NAME = "goslings"
_CONFIG_FILENAME = "config.json"
_KEY_FILENAME = "key"
_STORE_DIRNAME = "credentials"

KEY_SIZE = 32

# Environment variable -> AuthParams field.
_PARAM_ENV_VARS: dict[str, str] = {
    "GOSLING_USER": "username",
    "GOSLING_PASS": "password",
    "GOSLING_TENANT": "tenant_id",
    "GOSLING_APP_ID": "client_id",
    "GOSLING_APP_SECRET": "client_secret",
    "GOSLING_SUBSCRIPTION": "subscription_id",
    "GOSLING_USGOV_CLOUD": "us_government",
    "GOSLING_USGOV_EXO": "exo_us_government",
    "GOSLING_M365_AUTH": "m365_enabled",
    "GOSLING_EXO_MSG_TRACE": "message_trace_enabled",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
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
    """Return the configuration directory.

    On Linux/BSD: ``$XDG_CONFIG_HOME/goslings/`` (default ``~/.config/goslings/``).
    On macOS/Windows: ``~/.goslings/``.

    The directory is not created; nothing is written there by goslings.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    return _fallback_base_dir()


def get_data_dir() -> Path:
    """Return the data directory (encrypted store, key file).

    On Linux/BSD: ``$XDG_DATA_HOME/goslings/`` (default ``~/.local/share/goslings/``).
    On macOS/Windows: ``~/.goslings/data/``.

    The directory is not created here; the store creates its own
    subdirectory with ``0o700`` permissions.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    return _fallback_base_dir() / "data"


def default_store_path() -> Path:
    return get_data_dir() / _STORE_DIRNAME


def default_key_path() -> Path:
    return get_data_dir() / _KEY_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: bytes) -> None:
    """Write *data* to *path* atomically with ``0o600`` permissions.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    Permissions are restricted before any content is written. On any
    failure the temp file is cleaned up.
    """
    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = fd.name
        os.chmod(tmp_path, 0o600)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
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


# --- Config file ---


def _config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_config(path: Optional[Path] = None) -> GoslingsConfig:
    """Load the user configuration file.

    Args:
        path: Explicit file to read; defaults to ``<config_dir>/config.json``.

    Returns:
        The deserialised :class:`~goslings.models.GoslingsConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = path or _config_path()
    if not path.is_file():
        return GoslingsConfig()
    try:
        text = path.read_text(encoding="utf-8")
        return GoslingsConfig.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


# --- Auth parameters ---


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"Environment variable '{name}' must be a boolean, got {value!r}")


def load_auth_params(environ: Optional[Mapping[str, str]] = None) -> AuthParams:
    """Build :class:`~goslings.models.AuthParams` from ``GOSLING_*`` variables.

    Args:
        environ: Mapping to read; defaults to :data:`os.environ`.

    Raises:
        ConfigError: If a boolean variable holds an unrecognised value.
    """
    environ = os.environ if environ is None else environ
    bool_fields = {
        name for name, info in AuthParams.model_fields.items() if info.annotation is bool
    }
    values: dict[str, Any] = {}
    for var, field_name in _PARAM_ENV_VARS.items():
        raw = environ.get(var)
        if raw is None:
            continue
        values[field_name] = _parse_bool(var, raw) if field_name in bool_fields else raw
    return AuthParams(**values)


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Key file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read key file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for encryption key: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter encryption key: ")

    raise ConfigError(f"Unknown key source format: {source}")


# --- Key material ---


def decode_key(text: str) -> bytes:
    """Decode a 32-byte key from 64 hex characters or URL-safe base64.

    Raises:
        ConfigError: If *text* is neither encoding or not 32 bytes long.
    """
    text = text.strip()
    key: Optional[bytes] = None
    if len(text) == KEY_SIZE * 2:
        try:
            key = bytes.fromhex(text)
        except ValueError:
            key = None
    if key is None:
        try:
            key = base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
        except (binascii.Error, ValueError) as exc:
            raise ConfigError("Encryption key is neither hex nor base64") from exc
    if len(key) != KEY_SIZE:
        raise ConfigError(
            f"Encryption key must decode to {KEY_SIZE} bytes, got {len(key)}"
        )
    return key


def generate_key() -> str:
    """Return a fresh random key, URL-safe base64 encoded."""
    return base64.urlsafe_b64encode(os.urandom(KEY_SIZE)).decode("ascii")


def save_key(encoded: str, path: Optional[Path] = None) -> Path:
    """Persist an encoded key to *path* (default :func:`default_key_path`).

    The parent directory is created ``0o700`` and the file written ``0o600``.
    """
    path = path or default_key_path()
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    atomic_write(path, (encoded + "\n").encode("ascii"))
    return path


# --- Precedence resolution ---


def load_manager_options(
    *,
    store_type: Optional[str] = None,
    store_path: Optional[Path] = None,
    key_source: Optional[str] = None,
    debug: Optional[bool] = None,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ManagerOptions:
    """Resolve :class:`~goslings.models.ManagerOptions` with full precedence.

    Precedence (high to low):
        1. Explicit arguments
        2. Environment variables (``GOSLINGS_STORE_TYPE``,
           ``GOSLINGS_STORE_PATH``, ``GOSLINGS_KEY_SOURCE``)
        3. User config (``~/.config/goslings/config.json``)
        4. Defaults (file store under the data dir, key in ``<data_dir>/key``)

    Raises:
        ConfigError: If the config file is invalid or the key cannot be
            resolved or decoded.
        UnsupportedStoreTypeError: If the store selector names no known
            backend.
    """
    environ = os.environ if environ is None else environ
    cfg = load_config(config_path)

    resolved_type: Any = (
        store_type
        or environ.get("GOSLINGS_STORE_TYPE")
        or cfg.store_type
        or StoreType.FILE
    )
    try:
        resolved_type = StoreType(resolved_type)
    except ValueError:
        raise UnsupportedStoreTypeError(
            f"unsupported store type: {resolved_type}"
        ) from None
    env_path = environ.get("GOSLINGS_STORE_PATH")
    resolved_path = (
        store_path
        or (Path(env_path) if env_path else None)
        or cfg.store_path
        or default_store_path()
    )
    resolved_source = (
        key_source
        or environ.get("GOSLINGS_KEY_SOURCE")
        or cfg.key_source
        or f"file:{default_key_path()}"
    )

    key = decode_key(resolve_credential(resolved_source))
    try:
        return ManagerOptions(
            store_type=resolved_type,
            store_path=Path(resolved_path).expanduser(),
            encryption_key=key,
            debug=cfg.debug if debug is None else debug,
            enable_m365=cfg.enable_m365,
            enable_managed_identity=cfg.enable_managed_identity,
            renewal_grace=timedelta(minutes=cfg.renewal_grace_minutes),
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid manager options: {exc}") from exc
