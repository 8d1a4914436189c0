"""Auth manager -- the facade over leases and the credential store.

The :class:`AuthManager` owns one :class:`~goslings.auth.lease.Lease` per
logical service, the encrypted :class:`~goslings.auth.store.Store`, and the
in-memory authentication state (at most one
:class:`~goslings.models.AuthParams`, one
:class:`~goslings.models.Credentials`, one
:class:`~goslings.models.M365Resources`).

Concurrency: a single reader/writer lock guards the state.
:meth:`~AuthManager.get_token` and the accessors take the shared side;
:meth:`~AuthManager.authenticate`, :meth:`~AuthManager.renew_tokens`, and
:meth:`~AuthManager.clear` take the exclusive side for their whole duration,
store I/O included. New bundles are built off to the side and swapped in
whole, so readers see either the old or the new credentials, never a
half-merged map.

Persistence is best effort: failures to load at startup or to save after a
successful authentication/renewal are logged and the in-memory result
stands. Renewal is pull-only -- nothing here runs in the background.

See Also:
    :mod:`goslings.auth.lease` -- the fallback state machine.
    :mod:`goslings.auth.store` -- encrypted persistence.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence, TypeVar

from goslings.auth.acquisition import AcquisitionCapability, UserPrompt
from goslings.auth.lease import AzureLease, Lease, M365Lease, default_chain
from goslings.auth.rwlock import ReadWriteLock
from goslings.auth.store import Store, create_store
from goslings.cancellation import CancellationToken
from goslings.exceptions import (
    ConfigError,
    CredentialsExpiredError,
    GoslingsError,
    NotAuthenticatedError,
    OperationCancelledError,
    StoreError,
    StoreNotFoundError,
    StoreNotInitializedError,
    TokenNotFoundError,
    UnsupportedServiceError,
)
from goslings.models import (
    AuthParams,
    Credentials,
    M365Resources,
    ManagerOptions,
    Service,
    Token,
    utcnow,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# Token names tried, in order, for each service.  Graph tokens stand in for
# an Azure token that was never requested separately.
_TOKEN_LOOKUP: dict[Service, tuple[str, ...]] = {
    Service.AZURE: ("azure", "graph"),
    Service.GRAPH: ("graph",),
    Service.M365: ("exchange",),
}

# Secondary services only run when the caller opts in through AuthParams.
_SERVICE_ENABLED: dict[Service, Callable[[AuthParams], bool]] = {
    Service.M365: lambda params: params.m365_enabled,
}


class AuthManager:
    """Top-level entry point for authentication state.

    Args:
        options: Construction-time configuration.
        acquisition: The token-acquisition capability handed to the default
            leases. Not needed when *services* is given.
        services: Explicit ordered ``(service, lease)`` pairs. The first
            pair is the primary service; its failure fails
            :meth:`authenticate`. Later pairs are optional and merged in.
            Defaults to Azure/Graph, then M365 when ``options.enable_m365``.
        store: A pre-built store; defaults to :func:`create_store`.
        clock: Returns the current UTC time; injectable for tests.
        user_prompt: Device-code display callback for the default leases.

    Raises:
        StoreBackendNotImplementedError: Kubernetes or Vault backend selected.
        UnsupportedStoreTypeError: Unknown backend selector.
        EncryptionError: Encryption key is not 32 bytes.
        ConfigError: Neither *acquisition* nor *services* was supplied.

    Example::

        with AuthManager(options, MsalAcquisition()) as manager:
            manager.authenticate(params)
            token = manager.get_token(Service.GRAPH)
    """

    def __init__(
        self,
        options: ManagerOptions,
        acquisition: Optional[AcquisitionCapability] = None,
        *,
        services: Optional[Sequence[tuple[Service, Lease]]] = None,
        store: Optional[Store] = None,
        clock: Optional[Callable[[], datetime]] = None,
        user_prompt: Optional[UserPrompt] = None,
    ) -> None:
        self._options = options
        self._clock = clock or utcnow
        self._lock = ReadWriteLock()

        self._store: Optional[Store] = store if store is not None else create_store(options)

        if services is None:
            if acquisition is None:
                raise ConfigError("an acquisition capability is required")
            services = self._default_services(acquisition, user_prompt)
        if not services:
            raise ConfigError("at least one service lease is required")
        self._services: tuple[tuple[Service, Lease], ...] = tuple(services)

        self._params: Optional[AuthParams] = None
        self._credentials: Optional[Credentials] = None
        self._m365_resources: Optional[M365Resources] = None

        self._load_from_store()

    def _default_services(
        self, acquisition: AcquisitionCapability, user_prompt: Optional[UserPrompt]
    ) -> list[tuple[Service, Lease]]:
        chain = default_chain(managed_identity=self._options.enable_managed_identity)
        common = dict(clock=self._clock, user_prompt=user_prompt, debug=self._options.debug)
        services: list[tuple[Service, Lease]] = [
            (Service.AZURE, AzureLease(acquisition, chain, **common)),
        ]
        if self._options.enable_m365:
            services.append((Service.M365, M365Lease(acquisition, chain, **common)))
        return services

    @property
    def services(self) -> tuple[Service, ...]:
        """Configured services, primary first."""
        return tuple(service for service, _ in self._services)

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> AuthManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the store, discarding its key. Idempotent."""
        with self._lock.write():
            if self._store is not None:
                self._store.close()
                self._store = None

    # ------------------------------------------------------------------ #
    # Store I/O (callers hold the write lock, or run from __init__)
    # ------------------------------------------------------------------ #

    def _load_from_store(self) -> None:
        if self._store is None:
            logger.debug("No credential store; starting with empty state")
            return
        self._params = self._load_aggregate("auth params", self._store.load_params)
        self._credentials = self._load_aggregate("credentials", self._store.load_credentials)
        self._m365_resources = self._load_aggregate(
            "M365 resources", self._store.load_m365_resources
        )

    @staticmethod
    def _load_aggregate(label: str, loader: Callable[[], _T]) -> Optional[_T]:
        try:
            return loader()
        except StoreNotFoundError:
            logger.debug("No stored %s", label)
        except StoreError as exc:
            logger.warning("Failed to load %s from store: %s", label, exc)
        return None

    def _save_to_store(self) -> None:
        if self._store is None:
            raise StoreNotInitializedError()
        if self._params is not None:
            self._store.store_params(self._params)
        if self._credentials is not None:
            self._store.store_credentials(self._credentials)
        if self._m365_resources is not None:
            self._store.store_m365_resources(self._m365_resources)

    def _persist(self, what: str) -> None:
        try:
            self._save_to_store()
        except StoreError as exc:
            logger.warning("Failed to save %s: %s", what, exc)

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def authenticate(
        self, params: AuthParams, cancel: Optional[CancellationToken] = None
    ) -> Credentials:
        """Authenticate every enabled service and cache the merged result.

        The primary lease runs first and must succeed. Secondary leases run
        in order when enabled for *params*; their failures are logged and
        skipped. Their tokens are added under their own names and never
        replace a primary token.

        Args:
            params: Acquisition inputs; recorded as the current parameters.
            cancel: Cancellation token checked throughout.

        Returns:
            A copy of the merged credentials now cached.

        Raises:
            AllMethodsFailedError: The primary lease's whole chain failed.
            OperationCancelledError: *cancel* fired; cached credentials are
                left untouched.
        """
        cancel = cancel or CancellationToken()
        with self._lock.write():
            logger.debug("Starting authentication process")
            self._params = params.model_copy()

            (_, primary), *secondary = self._services
            creds = primary.acquire(params, cancel)

            for service, lease in secondary:
                if not self._enabled(service, params):
                    continue
                try:
                    extra = lease.acquire(params, cancel)
                except OperationCancelledError:
                    raise
                except GoslingsError as exc:
                    logger.warning("Failed to authenticate to %s: %s", service.value, exc)
                    continue
                creds = creds.merged(extra)

            self._credentials = creds
            self._persist("authentication state")
            logger.info("Authentication completed successfully")
            return creds.model_copy(deep=True)

    def get_token(self, service: Service | str) -> Token:
        """Return the cached token for *service*.

        ``azure`` falls back to the ``graph`` token when no Azure-specific
        token was acquired.

        Raises:
            UnsupportedServiceError: *service* is not a known service tag.
            NotAuthenticatedError: No credentials are cached.
            TokenNotFoundError: Credentials hold no token for *service*.
            CredentialsExpiredError: The token is past its expiry.
        """
        try:
            service = Service(service)
        except ValueError:
            raise UnsupportedServiceError(f"unsupported service: {service}") from None

        with self._lock.read():
            creds = self._credentials
            if creds is None or not creds.tokens:
                raise NotAuthenticatedError()

            token = next(
                (creds.tokens[name] for name in _TOKEN_LOOKUP[service] if name in creds.tokens),
                None,
            )
            if token is None:
                raise TokenNotFoundError(f"token not found for service: {service.value}")
            if self._clock() > token.expires_at:
                raise CredentialsExpiredError()
            return token.model_copy()

    def renew_tokens(self, cancel: Optional[CancellationToken] = None) -> bool:
        """Renew cached credentials when they are within the renewal grace window.

        The primary lease renews according to the recorded strategy.
        Secondary services that held tokens are re-acquired; their failures
        are logged and their stale tokens dropped.

        Returns:
            ``True`` if credentials were renewed, ``False`` if they were still
            fresh and nothing was done.

        Raises:
            NotAuthenticatedError: No credentials or parameters are cached.
            RenewalFailedError: The primary lease could not renew.
            AllMethodsFailedError: Credentials were too stale to renew and a
                full re-acquisition failed.
            OperationCancelledError: *cancel* fired.
        """
        cancel = cancel or CancellationToken()
        with self._lock.write():
            current, params = self._credentials, self._params
            if current is None or params is None:
                raise NotAuthenticatedError()

            (_, primary), *secondary = self._services
            if not primary.is_expired(current, self._options.renewal_grace):
                logger.debug("Tokens are not expired, skipping renewal")
                return False

            logger.debug("Starting token renewal process")
            renewed = primary.renew(current, params, cancel)

            for service, lease in secondary:
                if not self._enabled(service, params):
                    continue
                if not any(name in current.tokens for name in lease.token_names):
                    continue
                try:
                    extra = lease.acquire(params, cancel)
                except OperationCancelledError:
                    raise
                except GoslingsError as exc:
                    logger.warning("Failed to renew %s tokens: %s", service.value, exc)
                    continue
                renewed = renewed.merged(extra)

            self._credentials = renewed
            self._persist("renewed tokens")
            logger.info("Token renewal completed successfully")
            return True

    def clear(self) -> None:
        """Wipe the store's aggregates and the in-memory state.

        Raises:
            StoreNotInitializedError: There is no (open) store.
            StoreError: Deleting a stored aggregate failed; in-memory state is
                kept in that case.
        """
        with self._lock.write():
            if self._store is None:
                raise StoreNotInitializedError()
            self._store.clear()
            self._params = None
            self._credentials = None
            self._m365_resources = None
            logger.info("Cleared all authentication state")

    def set_m365_resources(self, resources: M365Resources) -> None:
        """Record Microsoft 365 session state and persist it (best effort)."""
        with self._lock.write():
            self._m365_resources = resources.model_copy(deep=True)
            self._persist("M365 resources")

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    def get_auth_params(self) -> Optional[AuthParams]:
        """Return a copy of the current parameters, or ``None``."""
        with self._lock.read():
            return self._params.model_copy() if self._params is not None else None

    def get_m365_resources(self) -> Optional[M365Resources]:
        """Return a copy of the current M365 resources, or ``None``."""
        with self._lock.read():
            if self._m365_resources is None:
                return None
            return self._m365_resources.model_copy(deep=True)

    def get_credentials(self) -> Optional[Credentials]:
        """Return a copy of the cached credentials, or ``None``."""
        with self._lock.read():
            if self._credentials is None:
                return None
            return self._credentials.model_copy(deep=True)

    def is_expired(self) -> bool:
        """Whether the cached credentials are missing or inside the renewal window."""
        with self._lock.read():
            primary = self._services[0][1]
            return primary.is_expired(self._credentials, self._options.renewal_grace)

    @staticmethod
    def _enabled(service: Service, params: AuthParams) -> bool:
        predicate = _SERVICE_ENABLED.get(service)
        return predicate is None or predicate(params)
