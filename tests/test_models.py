"""Tests for the shared Pydantic models."""

from __future__ import annotations

import json
import random
from datetime import datetime, timedelta, timezone

from goslings.models import (
    AuthParams,
    AuthType,
    Credentials,
    GoslingsConfig,
    M365Resources,
    ManagerOptions,
    StoreType,
    Token,
    as_utc,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _token(value: str, minutes: int) -> Token:
    return Token(value=value, expires_at=T0 + timedelta(minutes=minutes))


class TestToken:
    def test_defaults(self) -> None:
        token = _token("abc", 5)
        assert token.type == "Bearer"
        assert token.refresh_token is None
        assert token.scopes == []

    def test_naive_expiry_is_utc(self) -> None:
        token = Token(value="abc", expires_at=datetime(2024, 1, 1, 12, 0))
        assert token.expires_at.tzinfo is not None
        assert token.expires_at == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_repr_hides_secrets(self) -> None:
        token = Token(value="super-secret", expires_at=T0, refresh_token="refresh-me")
        assert "super-secret" not in repr(token)
        assert "refresh-me" not in repr(token)


class TestCredentials:
    def test_expires_at_none_without_tokens(self) -> None:
        assert Credentials().expires_at is None

    def test_expires_at_is_minimum(self) -> None:
        creds = Credentials(tokens={"graph": _token("g", 60), "exchange": _token("e", 30)})
        assert creds.expires_at == T0 + timedelta(minutes=30)

    def test_expires_at_tracks_random_bundles(self) -> None:
        rng = random.Random(1234)
        for _ in range(50):
            offsets = [rng.randint(-600, 600) for _ in range(rng.randint(1, 6))]
            tokens = {f"t{i}": _token(f"v{i}", m) for i, m in enumerate(offsets)}
            creds = Credentials(tokens=tokens)
            assert creds.expires_at == T0 + timedelta(minutes=min(offsets))

    def test_merged_never_overwrites(self) -> None:
        primary = Credentials(
            tokens={"graph": _token("primary", 60)}, auth_type=AuthType.DEVICE_CODE
        )
        secondary = Credentials(
            tokens={"graph": _token("other", 90), "exchange": _token("exo", 45)},
            auth_type=AuthType.CLIENT_SECRET,
        )
        merged = primary.merged(secondary)
        assert merged.tokens["graph"].value == "primary"
        assert merged.tokens["exchange"].value == "exo"
        assert merged.auth_type == AuthType.DEVICE_CODE
        assert merged.expires_at == T0 + timedelta(minutes=45)
        # inputs are untouched
        assert set(primary.tokens) == {"graph"}

    def test_json_roundtrip_ignores_computed_expiry(self) -> None:
        creds = Credentials(
            tokens={"graph": _token("g", 10)},
            auth_type=AuthType.CLIENT_SECRET,
            last_refreshed=T0,
        )
        data = json.loads(creds.model_dump_json())
        assert "expires_at" in data
        restored = Credentials.model_validate(data)
        assert restored == creds

    def test_auth_type_values(self) -> None:
        assert AuthType("client_credentials") is AuthType.CLIENT_SECRET
        assert AuthType("interactive") is AuthType.INTERACTIVE_BROWSER


class TestAuthParams:
    def test_defaults_are_empty(self) -> None:
        params = AuthParams()
        assert params.tenant_id == ""
        assert params.m365_enabled is False
        assert params.message_trace_enabled is False

    def test_repr_hides_secrets(self) -> None:
        params = AuthParams(password="hunter2", client_secret="s3cret", tenant_id="t")
        assert "hunter2" not in repr(params)
        assert "s3cret" not in repr(params)
        assert "tenant_id='t'" in repr(params)


class TestOptions:
    def test_manager_defaults(self, tmp_path) -> None:
        options = ManagerOptions(store_path=tmp_path, encryption_key=bytes(32))
        assert options.store_type == StoreType.FILE
        assert options.enable_m365 is True
        assert options.enable_managed_identity is False
        assert options.renewal_grace == timedelta(minutes=5)
        assert "encryption_key" not in repr(options)

    def test_config_defaults(self) -> None:
        cfg = GoslingsConfig()
        assert cfg.store_type is None
        assert cfg.renewal_grace_minutes == 5

    def test_m365_resources_defaults(self) -> None:
        resources = M365Resources()
        assert resources.exchange_cookies == {}
        assert resources.validation_key == ""


def test_as_utc_converts_offsets() -> None:
    eastern = timezone(timedelta(hours=-5))
    assert as_utc(datetime(2024, 1, 1, 7, 0, tzinfo=eastern)) == datetime(
        2024, 1, 1, 12, 0, tzinfo=timezone.utc
    )
