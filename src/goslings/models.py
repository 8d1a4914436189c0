"""Canonical Pydantic models shared across all goslings modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Authentication state** -- what the credential store persists:
    :class:`AuthParams`, :class:`Token`, :class:`Credentials`, and
    :class:`M365Resources`.

**Configuration** -- what the embedding application hands to
:class:`~goslings.auth.manager.AuthManager`:
    :class:`ManagerOptions`, the persisted :class:`GoslingsConfig`, and the
    :class:`AuthType`, :class:`Service`, and :class:`StoreType` selectors.

All timestamps are timezone-aware UTC. Naive datetimes supplied by callers
are interpreted as UTC.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator


def utcnow() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Normalise *value* to UTC, treating naive datetimes as already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Selectors ---


class AuthType(str, enum.Enum):
    """Acquisition strategy that produced a set of credentials.

    The same tag selects the strategy when calling an
    :class:`~goslings.auth.acquisition.AcquisitionCapability`.
    """

    DEVICE_CODE = "device_code"
    CLIENT_SECRET = "client_credentials"
    INTERACTIVE_BROWSER = "interactive"
    MANAGED_IDENTITY = "managed_identity"


class Service(str, enum.Enum):
    """Logical services a caller can request a token for."""

    AZURE = "azure"
    M365 = "m365"
    GRAPH = "graph"


class StoreType(str, enum.Enum):
    """Credential store backends.

    Only ``FILE`` is implemented; the others are recognised so that selecting
    them fails loudly instead of degrading to a different backend.
    """

    FILE = "file"
    KUBERNETES = "kubernetes"
    VAULT = "vault"


# --- Authentication state ---


class AuthParams(BaseModel):
    """Inputs for acquiring credentials.

    Supplied fresh on each :meth:`~goslings.auth.manager.AuthManager.authenticate`
    call and persisted alongside the credentials so that renewals can reuse
    them. Secret fields are excluded from ``repr``.
    """

    username: str = ""
    password: str = Field(default="", repr=False)
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = Field(default="", repr=False)
    subscription_id: str = ""
    us_government: bool = Field(
        default=False, description="Use US Government cloud endpoints"
    )
    exo_us_government: bool = Field(
        default=False, description="Use US Government Exchange Online endpoints"
    )
    m365_enabled: bool = Field(
        default=False, description="Also authenticate to Microsoft 365 services"
    )
    message_trace_enabled: bool = Field(
        default=False, description="Also acquire an Exchange message trace token"
    )


class Token(BaseModel):
    """A single bearer (or cookie) token for one resource."""

    value: str = Field(repr=False)
    type: str = "Bearer"
    expires_at: datetime
    refresh_token: Optional[str] = Field(default=None, repr=False)
    scopes: list[str] = Field(default_factory=list)
    resource: str = ""

    @field_validator("expires_at")
    @classmethod
    def _expires_at_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class Credentials(BaseModel):
    """A bundle of named tokens produced by one authentication.

    Token names are logical (``"graph"``, ``"exchange"``, ``"msgtrace"``).
    :attr:`expires_at` is always the earliest expiry among the contained
    tokens; it is computed on access and never stored independently.
    """

    tokens: dict[str, Token] = Field(default_factory=dict)
    auth_type: Optional[AuthType] = None
    last_refreshed: datetime = Field(default_factory=utcnow)

    @field_validator("last_refreshed")
    @classmethod
    def _last_refreshed_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def expires_at(self) -> Optional[datetime]:
        """Earliest expiry across all tokens, or ``None`` when there are none."""
        if not self.tokens:
            return None
        return min(token.expires_at for token in self.tokens.values())

    def merged(self, other: Credentials) -> Credentials:
        """Return a new bundle holding this bundle's tokens plus *other*'s.

        Tokens from *other* are added under their own names and never
        replace a name already present here. ``auth_type`` and
        ``last_refreshed`` are kept from this bundle.
        """
        tokens = dict(self.tokens)
        for name, token in other.tokens.items():
            tokens.setdefault(name, token)
        return Credentials(
            tokens=tokens,
            auth_type=self.auth_type,
            last_refreshed=self.last_refreshed,
        )


class M365Resources(BaseModel):
    """Auxiliary Microsoft 365 session state with its own lifecycle."""

    exchange_cookies: dict[str, str] = Field(default_factory=dict, repr=False)
    validation_key: str = Field(default="", repr=False)
    additional_tokens: dict[str, str] = Field(default_factory=dict, repr=False)


# --- Configuration ---


class ManagerOptions(BaseModel):
    """Construction-time configuration for :class:`~goslings.auth.manager.AuthManager`.

    Built once by the embedding application (see
    :func:`goslings.config.load_manager_options`) and passed in explicitly;
    no component reads process-wide configuration on its own.

    Example::

        ManagerOptions(
            store_type=StoreType.FILE,
            store_path=Path("~/.local/share/goslings/credentials").expanduser(),
            encryption_key=bytes(32),
        )
    """

    store_type: StoreType = StoreType.FILE
    store_path: Path = Field(description="Directory holding the encrypted blobs")
    encryption_key: bytes = Field(repr=False, description="Exactly 32 bytes")
    debug: bool = Field(
        default=False, description="Attach tracebacks to strategy-failure diagnostics"
    )
    enable_m365: bool = Field(
        default=True, description="Register the Microsoft 365 lease"
    )
    enable_managed_identity: bool = Field(
        default=False, description="Append managed identity to the fallback chain"
    )
    renewal_grace: timedelta = Field(
        default=timedelta(minutes=5),
        description="Renew when credentials expire within this window",
    )


class GoslingsConfig(BaseModel):
    """User-wide settings persisted at ``~/.config/goslings/config.json``.

    Loaded by :func:`~goslings.config.load_config`. Every field is optional;
    environment variables and explicit overrides take precedence. See
    :func:`~goslings.config.load_manager_options` for the full chain.
    """

    store_type: Optional[str] = Field(
        default=None, description="Store backend selector (file, kubernetes, vault)"
    )
    store_path: Optional[Path] = None
    key_source: Optional[str] = Field(
        default=None, description="Where the encryption key lives (env:/file:/prompt)"
    )
    debug: bool = False
    enable_m365: bool = True
    enable_managed_identity: bool = False
    renewal_grace_minutes: int = Field(default=5, ge=0)
