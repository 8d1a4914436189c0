"""MSAL-based acquisition capability for Microsoft Entra ID.

Maps each :class:`~goslings.models.AuthType` onto an MSAL flow:

- ``DEVICE_CODE`` -- :class:`msal.PublicClientApplication` device flow; the
  code is handed to the configured ``user_prompt``.
- ``CLIENT_SECRET`` -- :class:`msal.ConfidentialClientApplication`
  client-credentials grant.
- ``INTERACTIVE_BROWSER`` -- :class:`msal.PublicClientApplication`
  interactive login through the system browser.
- ``MANAGED_IDENTITY`` -- :class:`msal.ManagedIdentityClient`, system
  assigned unless a client id selects a user-assigned identity.

:class:`MsalAcquisition` keeps one in-memory token cache per client id and
authority and hands it to every public-client credential it builds, so
once the user has signed in for Graph, the Exchange lease is served
silently instead of prompting again.

MSAL reports failures as result dictionaries with ``error`` and
``error_description`` keys; these become
:class:`~goslings.exceptions.AcquisitionError`.
"""

from __future__ import annotations

import logging
import time
from abc import abstractmethod
from datetime import timedelta
from typing import Any, Optional, Sequence
from urllib.parse import urlparse

import msal
import requests

from goslings.auth.acquisition import (
    AccessToken,
    AcquisitionCapability,
    DeviceCodePrompt,
    StrategyOptions,
    TokenCredential,
)
from goslings.cancellation import CancellationToken
from goslings.exceptions import AcquisitionError
from goslings.models import AuthType, utcnow

logger = logging.getLogger(__name__)

DEFAULT_INTERACTIVE_TIMEOUT = 300


def _to_access_token(result: Optional[dict[str, Any]], flow: str) -> AccessToken:
    if not result or "access_token" not in result:
        result = result or {}
        error_desc = result.get("error_description") or result.get("error") or "Unknown error"
        raise AcquisitionError(f"{flow} authentication failed: {error_desc}")
    return AccessToken(
        token=result["access_token"],
        expires_on=utcnow() + timedelta(seconds=int(result.get("expires_in", 0))),
        refresh_token=result.get("refresh_token"),
    )


def _resource_for(scopes: Sequence[str]) -> str:
    """Turn ``["https://host/.default"]`` into ``"https://host"`` for MSI."""
    if not scopes:
        raise AcquisitionError("managed identity requires a resource scope")
    scope = scopes[0]
    suffix = "/.default"
    return scope[: -len(suffix)] if scope.endswith(suffix) else scope


class _PublicClientCredential(TokenCredential):
    """Shared silent-first behaviour for delegated (user) flows."""

    flow_name = ""

    def __init__(
        self,
        options: StrategyOptions,
        token_cache: Optional[msal.SerializableTokenCache] = None,
    ) -> None:
        self._options = options
        self._app = msal.PublicClientApplication(
            client_id=options.client_id,
            authority=options.authority,
            token_cache=token_cache,
        )

    def get_token(self, scopes: Sequence[str], cancel: CancellationToken) -> AccessToken:
        cancel.raise_if_cancelled()
        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent(list(scopes), account=accounts[0])
            if result and "access_token" in result:
                logger.debug("Token acquired from cache (%s)", self.flow_name)
                return _to_access_token(result, self.flow_name)
        return self._acquire(list(scopes), cancel)

    @abstractmethod
    def _acquire(self, scopes: list[str], cancel: CancellationToken) -> AccessToken:
        """Run the interactive part of the flow."""


class DeviceCodeCredential(_PublicClientCredential):
    flow_name = "Device code"

    def _acquire(self, scopes: list[str], cancel: CancellationToken) -> AccessToken:
        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise AcquisitionError(
                f"Failed to create device flow: {flow.get('error_description', 'Unknown error')}"
            )

        if self._options.user_prompt is not None:
            self._options.user_prompt(
                DeviceCodePrompt(
                    user_code=flow["user_code"],
                    verification_uri=flow.get("verification_uri", ""),
                    message=flow.get("message", ""),
                )
            )

        def exit_condition(flow: dict[str, Any]) -> bool:
            return cancel.cancelled or flow.get("expires_at", 0) < time.time()

        result = self._app.acquire_token_by_device_flow(flow, exit_condition=exit_condition)
        cancel.raise_if_cancelled()
        return _to_access_token(result, self.flow_name)


class InteractiveBrowserCredential(_PublicClientCredential):
    flow_name = "Interactive browser"

    def _acquire(self, scopes: list[str], cancel: CancellationToken) -> AccessToken:
        remaining = cancel.remaining()
        timeout = DEFAULT_INTERACTIVE_TIMEOUT if remaining is None else max(1, int(remaining))
        kwargs: dict[str, Any] = {"timeout": timeout}
        if self._options.redirect_uri:
            kwargs["port"] = _port_of(self._options.redirect_uri)
        result = self._app.acquire_token_interactive(scopes, **kwargs)
        cancel.raise_if_cancelled()
        return _to_access_token(result, self.flow_name)


class ClientSecretCredential(TokenCredential):
    def __init__(self, options: StrategyOptions) -> None:
        self._app = msal.ConfidentialClientApplication(
            client_id=options.client_id,
            client_credential=options.client_secret,
            authority=options.authority,
        )

    def get_token(self, scopes: Sequence[str], cancel: CancellationToken) -> AccessToken:
        cancel.raise_if_cancelled()
        result = self._app.acquire_token_for_client(scopes=list(scopes))
        cancel.raise_if_cancelled()
        return _to_access_token(result, "Client credentials")


class ManagedIdentityCredential(TokenCredential):
    def __init__(self, options: StrategyOptions) -> None:
        if options.client_id:
            identity: Any = msal.UserAssignedManagedIdentity(client_id=options.client_id)
        else:
            identity = msal.SystemAssignedManagedIdentity()
        self._client = msal.ManagedIdentityClient(identity, http_client=requests.Session())

    def get_token(self, scopes: Sequence[str], cancel: CancellationToken) -> AccessToken:
        cancel.raise_if_cancelled()
        result = self._client.acquire_token_for_client(resource=_resource_for(scopes))
        cancel.raise_if_cancelled()
        return _to_access_token(result, "Managed identity")


def _port_of(redirect_uri: str) -> Optional[int]:
    return urlparse(redirect_uri).port


_CREDENTIALS: dict[AuthType, type[TokenCredential]] = {
    AuthType.DEVICE_CODE: DeviceCodeCredential,
    AuthType.CLIENT_SECRET: ClientSecretCredential,
    AuthType.INTERACTIVE_BROWSER: InteractiveBrowserCredential,
    AuthType.MANAGED_IDENTITY: ManagedIdentityCredential,
}


class MsalAcquisition(AcquisitionCapability):
    """Production :class:`AcquisitionCapability` backed by MSAL."""

    def __init__(self) -> None:
        self._caches: dict[tuple[str, str], msal.SerializableTokenCache] = {}

    def _cache_for(self, options: StrategyOptions) -> msal.SerializableTokenCache:
        key = (options.client_id, options.authority)
        if key not in self._caches:
            self._caches[key] = msal.SerializableTokenCache()
        return self._caches[key]

    def get_credential(
        self, strategy: AuthType, options: StrategyOptions
    ) -> TokenCredential:
        credential_type = _CREDENTIALS.get(strategy)
        if credential_type is None:
            raise AcquisitionError(f"unsupported authentication strategy: {strategy}")
        try:
            if issubclass(credential_type, _PublicClientCredential):
                return credential_type(options, token_cache=self._cache_for(options))
            return credential_type(options)  # type: ignore[call-arg]
        except ValueError as exc:
            # MSAL validates the authority eagerly.
            raise AcquisitionError(f"failed to create credential: {exc}") from exc
