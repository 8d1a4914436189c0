"""Leases -- ordered-fallback acquisition and renewal of credentials.

A lease turns :class:`~goslings.models.AuthParams` into a
:class:`~goslings.models.Credentials` bundle by walking a priority-ordered
chain of acquisition strategies, and later renews that bundle.

The chain is data: a tuple of :class:`StrategyStep` values. Each step names
a strategy and the ``AuthParams`` fields it cannot work without. While
acquiring:

* a step whose required fields are empty is **skipped** -- the capability is
  never called and the step does not count as a failure;
* an attempted step that raises is logged at debug level and the next step
  is tried;
* the first success short-circuits the chain;
* when nothing succeeds, :class:`~goslings.exceptions.AllMethodsFailedError`
  is raised and no partial credentials escape.

Cancellation is checked before each step and around every token request; it
propagates as :class:`~goslings.exceptions.OperationCancelledError` and is
never folded into "all methods failed".

See Also:
    :mod:`goslings.auth.acquisition` -- the capability the chain drives.
    :class:`~goslings.auth.manager.AuthManager` -- composes leases per service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, cast

from goslings.auth.acquisition import (
    AcquisitionCapability,
    CloudEndpoints,
    DeviceCodePrompt,
    StrategyOptions,
    TokenCredential,
    UserPrompt,
    cloud_for,
    exchange_cloud_for,
)
from goslings.cancellation import CancellationToken
from goslings.exceptions import (
    AllMethodsFailedError,
    NotAuthenticatedError,
    OperationCancelledError,
    RenewalFailedError,
)
from goslings.models import AuthParams, AuthType, Credentials, Token, utcnow

logger = logging.getLogger(__name__)

STALENESS_CEILING = timedelta(hours=1)
"""Credentials expired for longer than this are re-acquired instead of renewed."""


@dataclass(frozen=True)
class StrategyStep:
    """One entry of a fallback chain.

    Attributes:
        strategy: The strategy tag passed to the capability.
        required: ``AuthParams`` field names that must be non-empty for the
            step to be attempted.
        label: Human-readable name used in log messages.
    """

    strategy: AuthType
    required: tuple[str, ...] = ()
    label: str = ""

    def missing(self, params: AuthParams) -> list[str]:
        """Return the required fields that are empty in *params*."""
        return [name for name in self.required if not getattr(params, name)]


DEVICE_CODE = StrategyStep(
    AuthType.DEVICE_CODE, ("tenant_id", "client_id"), "device code"
)
CLIENT_SECRET = StrategyStep(
    AuthType.CLIENT_SECRET,
    ("client_id", "client_secret", "tenant_id"),
    "client credentials",
)
INTERACTIVE_BROWSER = StrategyStep(
    AuthType.INTERACTIVE_BROWSER, ("tenant_id", "client_id"), "interactive browser"
)
MANAGED_IDENTITY = StrategyStep(AuthType.MANAGED_IDENTITY, (), "managed identity")

_STEPS_BY_STRATEGY = {
    step.strategy: step
    for step in (DEVICE_CODE, CLIENT_SECRET, INTERACTIVE_BROWSER, MANAGED_IDENTITY)
}

# Strategies that hold no usable refresh token and must start over.
_REACQUIRED_ON_RENEWAL = frozenset({AuthType.DEVICE_CODE, AuthType.INTERACTIVE_BROWSER})


def default_chain(managed_identity: bool = False) -> tuple[StrategyStep, ...]:
    """Return the standard priority order.

    Device code first, then client credentials, then the interactive browser;
    managed identity last when enabled.
    """
    chain = (DEVICE_CODE, CLIENT_SECRET, INTERACTIVE_BROWSER)
    if managed_identity:
        chain += (MANAGED_IDENTITY,)
    return chain


def log_device_code(prompt: DeviceCodePrompt) -> None:
    """Default device-code prompt: announce the code through the log."""
    logger.info("Device code authentication - your code is: %s", prompt.user_code)
    logger.info("Please authenticate at: %s", prompt.verification_uri)


class Lease(ABC):
    """Acquires and renews the credentials for one logical service."""

    token_names: tuple[str, ...] = ()
    """Names of the tokens this lease places in a credentials bundle."""

    @abstractmethod
    def acquire(
        self, params: AuthParams, cancel: Optional[CancellationToken] = None
    ) -> Credentials:
        """Acquire a new credentials bundle.

        Raises:
            AllMethodsFailedError: Every strategy was skipped or failed.
            OperationCancelledError: *cancel* fired.
        """
        ...

    @abstractmethod
    def renew(
        self,
        creds: Credentials,
        params: AuthParams,
        cancel: Optional[CancellationToken] = None,
    ) -> Credentials:
        """Renew *creds*, returning a new bundle.

        Raises:
            NotAuthenticatedError: *creds* holds no tokens.
            RenewalFailedError: The recorded strategy could not be re-run.
            OperationCancelledError: *cancel* fired.
        """
        ...

    @abstractmethod
    def is_expired(self, creds: Optional[Credentials], grace: timedelta) -> bool:
        """Whether *creds* is absent, empty, or expires within *grace*."""
        ...


class FallbackLease(Lease):
    """Lease driving an :class:`AcquisitionCapability` through a strategy chain.

    Subclasses choose the token name and the scopes to request.

    Args:
        acquisition: The capability performing the actual token exchange.
        chain: Strategy order; defaults to :func:`default_chain`.
        clock: Returns the current UTC time; injectable for tests.
        user_prompt: Device-code display callback.
        staleness: How long past expiry a renewal is still a renewal.
        debug: Attach tracebacks to strategy-failure log records.
    """

    token_name: str = ""

    def __init__(
        self,
        acquisition: AcquisitionCapability,
        chain: Optional[Sequence[StrategyStep]] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        user_prompt: Optional[UserPrompt] = None,
        staleness: timedelta = STALENESS_CEILING,
        debug: bool = False,
    ) -> None:
        self._acquisition = acquisition
        self._chain = tuple(chain) if chain is not None else default_chain()
        self._clock = clock or utcnow
        self._user_prompt = user_prompt or log_device_code
        self._staleness = staleness
        self._debug = debug

    @property
    def chain(self) -> tuple[StrategyStep, ...]:
        return self._chain

    # ------------------------------------------------------------------ #
    # Lease interface
    # ------------------------------------------------------------------ #

    def acquire(
        self, params: AuthParams, cancel: Optional[CancellationToken] = None
    ) -> Credentials:
        cancel = cancel or CancellationToken()
        attempts: list[tuple[str, str]] = []

        for step in self._chain:
            cancel.raise_if_cancelled()

            missing = step.missing(params)
            if missing:
                logger.debug(
                    "Skipping %s authentication: missing %s",
                    step.label, ", ".join(missing),
                )
                attempts.append((step.strategy.value, f"skipped (missing {', '.join(missing)})"))
                continue

            logger.info("Attempting to authenticate via %s", step.label)
            try:
                tokens = self._tokens_via(step.strategy, params, cancel)
            except OperationCancelledError:
                raise
            except Exception as exc:
                cancel.raise_if_cancelled()
                logger.debug(
                    "%s authentication failed: %s",
                    step.label.capitalize(), exc, exc_info=self._debug,
                )
                attempts.append((step.strategy.value, str(exc)))
                continue

            logger.debug("Successfully authenticated via %s", step.label)
            return Credentials(
                tokens=tokens, auth_type=step.strategy, last_refreshed=self._clock()
            )

        raise AllMethodsFailedError(attempts=attempts)

    def renew(
        self,
        creds: Credentials,
        params: AuthParams,
        cancel: Optional[CancellationToken] = None,
    ) -> Credentials:
        cancel = cancel or CancellationToken()
        if creds is None or not creds.tokens:
            raise NotAuthenticatedError()

        expires_at = cast(datetime, creds.expires_at)
        if self._clock() - expires_at > self._staleness:
            logger.info("Credentials expired too long ago, acquiring new ones")
            return self.acquire(params, cancel)

        step = _STEPS_BY_STRATEGY.get(creds.auth_type) if creds.auth_type else None
        if step is None:
            raise RenewalFailedError(
                f"failed to renew credentials: unsupported auth type: {creds.auth_type}"
            )
        missing = step.missing(params)
        if missing:
            raise RenewalFailedError(
                f"failed to renew credentials: {step.label} requires {', '.join(missing)}"
            )

        if step.strategy in _REACQUIRED_ON_RENEWAL:
            logger.debug("Re-acquiring %s credentials from scratch", step.label)
        else:
            logger.debug("Requesting a fresh token via %s", step.label)

        cancel.raise_if_cancelled()
        try:
            tokens = self._tokens_via(step.strategy, params, cancel)
        except OperationCancelledError:
            raise
        except Exception as exc:
            cancel.raise_if_cancelled()
            raise RenewalFailedError(f"failed to renew credentials: {exc}") from exc

        return Credentials(
            tokens=tokens, auth_type=step.strategy, last_refreshed=self._clock()
        )

    def is_expired(self, creds: Optional[Credentials], grace: timedelta) -> bool:
        if creds is None or not creds.tokens:
            return True
        return self._clock() + grace >= cast(datetime, creds.expires_at)

    # ------------------------------------------------------------------ #
    # Token requests
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _cloud(self, params: AuthParams) -> CloudEndpoints:
        """Endpoints this lease requests tokens from."""
        ...

    @abstractmethod
    def _primary_target(self, cloud: CloudEndpoints) -> tuple[list[str], str]:
        """``(scopes, resource)`` of the token stored under :attr:`token_name`."""
        ...

    def _options(self, params: AuthParams, cloud: CloudEndpoints) -> StrategyOptions:
        return StrategyOptions(
            tenant_id=params.tenant_id,
            client_id=params.client_id,
            client_secret=params.client_secret,
            authority_host=cloud.authority_host,
            user_prompt=self._user_prompt,
        )

    def _tokens_via(
        self, strategy: AuthType, params: AuthParams, cancel: CancellationToken
    ) -> dict[str, Token]:
        cloud = self._cloud(params)
        credential = self._acquisition.get_credential(
            strategy, self._options(params, cloud)
        )
        scopes, resource = self._primary_target(cloud)
        tokens = {self.token_name: self._fetch(credential, scopes, resource, cancel)}
        self._extra_tokens(credential, params, cloud, tokens, cancel)
        return tokens

    def _extra_tokens(
        self,
        credential: TokenCredential,
        params: AuthParams,
        cloud: CloudEndpoints,
        tokens: dict[str, Token],
        cancel: CancellationToken,
    ) -> None:
        """Hook for leases that obtain more than one token per strategy."""

    def _fetch(
        self,
        credential: TokenCredential,
        scopes: list[str],
        resource: str,
        cancel: CancellationToken,
    ) -> Token:
        cancel.raise_if_cancelled()
        access = credential.get_token(scopes, cancel)
        cancel.raise_if_cancelled()
        return Token(
            value=access.token,
            type="Bearer",
            expires_at=access.expires_on,
            refresh_token=access.refresh_token,
            scopes=list(scopes),
            resource=resource,
        )


class AzureLease(FallbackLease):
    """Lease for Azure / Microsoft Graph, stored under the ``"graph"`` token name."""

    token_name = "graph"
    token_names = ("graph",)

    def _cloud(self, params: AuthParams) -> CloudEndpoints:
        return cloud_for(params)

    def _primary_target(self, cloud: CloudEndpoints) -> tuple[list[str], str]:
        return cloud.graph_scopes, cloud.graph_resource


class M365Lease(FallbackLease):
    """Lease for Exchange Online, stored under ``"exchange"``.

    With ``message_trace_enabled`` a ``"msgtrace"`` token for the Exchange
    admin resource is requested from the same credential. Failing to get it
    is logged and does not fail the lease.
    """

    token_name = "exchange"
    message_trace_name = "msgtrace"
    token_names = ("exchange", "msgtrace")

    def _cloud(self, params: AuthParams) -> CloudEndpoints:
        return exchange_cloud_for(params)

    def _primary_target(self, cloud: CloudEndpoints) -> tuple[list[str], str]:
        return cloud.exchange_scopes, cloud.exchange_resource

    def _extra_tokens(
        self,
        credential: TokenCredential,
        params: AuthParams,
        cloud: CloudEndpoints,
        tokens: dict[str, Token],
        cancel: CancellationToken,
    ) -> None:
        if not params.message_trace_enabled:
            return
        try:
            tokens[self.message_trace_name] = self._fetch(
                credential,
                cloud.message_trace_scopes,
                cloud.message_trace_resource,
                cancel,
            )
        except OperationCancelledError:
            raise
        except Exception as exc:
            cancel.raise_if_cancelled()
            logger.warning("Failed to authenticate for message trace: %s", exc)
