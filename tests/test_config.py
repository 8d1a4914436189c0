"""Tests for configuration resolution."""

from __future__ import annotations

import base64
import json
import os
import stat
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from goslings.config import (
    decode_key,
    default_key_path,
    default_store_path,
    generate_key,
    get_config_dir,
    get_data_dir,
    load_auth_params,
    load_config,
    load_manager_options,
    resolve_credential,
    save_key,
)
from goslings.exceptions import ConfigError, UnsupportedStoreTypeError
from goslings.models import StoreType

HEX_KEY = bytes(range(32)).hex()


class TestPaths:
    def test_xdg_dirs(self, isolated_config: Path) -> None:
        assert get_config_dir() == isolated_config / "config" / "goslings"
        assert get_data_dir() == isolated_config / "data" / "goslings"
        assert default_store_path() == get_data_dir() / "credentials"
        assert default_key_path() == get_data_dir() / "key"

    def test_paths_are_not_created(self, isolated_config: Path) -> None:
        get_config_dir()
        get_data_dir()
        assert not (isolated_config / "config").exists()
        assert not (isolated_config / "data").exists()

    def test_fallback_dir(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr("goslings.config._is_xdg_platform", lambda: False)
        monkeypatch.setattr(Path, "home", lambda: tmp_path)
        assert get_config_dir() == tmp_path / ".goslings"
        assert get_data_dir() == tmp_path / ".goslings" / "data"


class TestLoadAuthParams:
    def test_reads_environment(self) -> None:
        params = load_auth_params(
            {
                "GOSLING_USER": "user@example.com",
                "GOSLING_PASS": "pw",
                "GOSLING_TENANT": "tenant",
                "GOSLING_APP_ID": "app",
                "GOSLING_APP_SECRET": "secret",
                "GOSLING_SUBSCRIPTION": "sub",
                "GOSLING_USGOV_CLOUD": "true",
                "GOSLING_USGOV_EXO": "0",
                "GOSLING_M365_AUTH": "yes",
                "GOSLING_EXO_MSG_TRACE": "",
            }
        )
        assert params.username == "user@example.com"
        assert params.password == "pw"
        assert params.tenant_id == "tenant"
        assert params.client_id == "app"
        assert params.client_secret == "secret"
        assert params.subscription_id == "sub"
        assert params.us_government is True
        assert params.exo_us_government is False
        assert params.m365_enabled is True
        assert params.message_trace_enabled is False

    def test_empty_environment(self) -> None:
        params = load_auth_params({})
        assert params.tenant_id == ""
        assert params.m365_enabled is False

    def test_bad_boolean(self) -> None:
        with pytest.raises(ConfigError, match="GOSLING_M365_AUTH"):
            load_auth_params({"GOSLING_M365_AUTH": "maybe"})

    def test_defaults_to_os_environ(self, isolated_config, monkeypatch) -> None:
        monkeypatch.setenv("GOSLING_TENANT", "from-env")
        assert load_auth_params().tenant_id == "from-env"


class TestResolveCredential:
    def test_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOSLINGS_TEST_SECRET", "value")
        assert resolve_credential("env:GOSLINGS_TEST_SECRET") == "value"

    def test_env_missing(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GOSLINGS_TEST_SECRET", raising=False)
        with pytest.raises(ConfigError, match="not set"):
            resolve_credential("env:GOSLINGS_TEST_SECRET")

    def test_file(self, tmp_path: Path) -> None:
        path = tmp_path / "secret.txt"
        path.write_text("  file-value\n")
        assert resolve_credential(f"file:{path}") == "file-value"

    def test_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            resolve_credential(f"file:{tmp_path / 'nope'}")

    def test_prompt_without_tty(self) -> None:
        with patch("goslings.config.sys.stdin") as mock_stdin:
            mock_stdin.isatty.return_value = False
            with pytest.raises(ConfigError, match="not a TTY"):
                resolve_credential("prompt")

    def test_prompt_with_tty(self) -> None:
        with patch("goslings.config.sys.stdin") as mock_stdin, patch(
            "goslings.config.getpass.getpass", return_value="typed"
        ):
            mock_stdin.isatty.return_value = True
            assert resolve_credential("prompt") == "typed"

    def test_unknown(self) -> None:
        with pytest.raises(ConfigError, match="Unknown"):
            resolve_credential("keyring:foo")


class TestKeys:
    def test_hex(self) -> None:
        assert decode_key(HEX_KEY) == bytes(range(32))

    def test_base64(self) -> None:
        encoded = base64.urlsafe_b64encode(bytes(range(32))).decode()
        assert decode_key(encoded) == bytes(range(32))
        assert decode_key(encoded.rstrip("=")) == bytes(range(32))

    @pytest.mark.parametrize("text", ["", "abc", "zz" * 32, "!!!!"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ConfigError):
            decode_key(text)

    def test_wrong_length(self) -> None:
        with pytest.raises(ConfigError, match="32 bytes"):
            decode_key(base64.urlsafe_b64encode(bytes(16)).decode())

    def test_generate(self) -> None:
        first, second = generate_key(), generate_key()
        assert first != second
        assert len(decode_key(first)) == 32

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_save_key(self, tmp_path: Path) -> None:
        key = generate_key()
        path = save_key(key, tmp_path / "nested" / "key")
        assert path.read_text().strip() == key
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


class TestLoadConfig:
    def test_missing_file(self, isolated_config: Path) -> None:
        assert load_config().store_type is None

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(path)

    def test_invalid_field(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"renewal_grace_minutes": -1}))
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(path)


class TestLoadManagerOptions:
    @pytest.fixture
    def key_env(self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        monkeypatch.setenv("GOSLINGS_TEST_KEY", HEX_KEY)
        return isolated_config

    def _write_config(self, root: Path, data: dict) -> None:
        config_dir = root / "config" / "goslings"
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.json").write_text(json.dumps(data))

    def test_defaults(self, isolated_config: Path) -> None:
        save_key(generate_key())
        options = load_manager_options()
        assert options.store_type == StoreType.FILE
        assert options.store_path == default_store_path()
        assert len(options.encryption_key) == 32
        assert options.renewal_grace == timedelta(minutes=5)

    def test_missing_default_key(self, isolated_config: Path) -> None:
        with pytest.raises(ConfigError, match="Key file not found"):
            load_manager_options()

    def test_precedence(self, key_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        self._write_config(
            key_env,
            {
                "store_path": str(key_env / "from-file"),
                "key_source": "env:GOSLINGS_TEST_KEY",
                "renewal_grace_minutes": 10,
                "enable_m365": False,
            },
        )
        assert load_manager_options().store_path == key_env / "from-file"

        monkeypatch.setenv("GOSLINGS_STORE_PATH", str(key_env / "from-env"))
        assert load_manager_options().store_path == key_env / "from-env"

        options = load_manager_options(store_path=key_env / "explicit")
        assert options.store_path == key_env / "explicit"
        assert options.renewal_grace == timedelta(minutes=10)
        assert options.enable_m365 is False

    def test_key_source_from_env(self, key_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOSLINGS_KEY_SOURCE", "env:GOSLINGS_TEST_KEY")
        assert load_manager_options().encryption_key == bytes(range(32))

    def test_store_type_from_env(self, key_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOSLINGS_STORE_TYPE", "vault")
        options = load_manager_options(key_source="env:GOSLINGS_TEST_KEY")
        assert options.store_type == StoreType.VAULT

    def test_unknown_store_type_from_env(self, key_env: Path) -> None:
        with pytest.raises(UnsupportedStoreTypeError, match="s3"):
            load_manager_options(
                key_source="env:GOSLINGS_TEST_KEY",
                environ={"GOSLINGS_STORE_TYPE": "s3"},
            )

    def test_unknown_store_type_from_file(self, key_env: Path) -> None:
        self._write_config(key_env, {"store_type": "s3"})
        with pytest.raises(UnsupportedStoreTypeError, match="s3"):
            load_manager_options(key_source="env:GOSLINGS_TEST_KEY")

    def test_explicit_debug(self, key_env: Path) -> None:
        options = load_manager_options(key_source="env:GOSLINGS_TEST_KEY", debug=True)
        assert options.debug is True
