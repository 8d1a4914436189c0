"""Credential lifecycle for goslings.

This package acquires, caches, renews, and persists the tokens goslings
needs for Microsoft cloud services.

The main entry points are:

- :class:`AuthManager` -- facade owning the leases, the store, and the
  cached state; thread-safe.
- :class:`Lease` and :class:`FallbackLease` -- the ordered-fallback
  acquisition/renewal state machine, with :class:`AzureLease` and
  :class:`M365Lease` as the built-in services.
- :class:`Store` and :class:`FileStore` -- encrypted persistence for
  parameters, credentials, and M365 resources.
- :class:`AcquisitionCapability` -- the pluggable boundary that performs
  the provider-specific token exchange.

Typical usage::

    from goslings.auth import AuthManager
    from goslings.auth.msal_capability import MsalAcquisition

    manager = AuthManager(options, MsalAcquisition())
    manager.authenticate(params)
    token = manager.get_token("graph")
"""

from goslings.auth.acquisition import (
    AccessToken,
    AcquisitionCapability,
    DeviceCodePrompt,
    StrategyOptions,
    TokenCredential,
)
from goslings.auth.lease import (
    AzureLease,
    FallbackLease,
    Lease,
    M365Lease,
    StrategyStep,
    default_chain,
)
from goslings.auth.manager import AuthManager
from goslings.auth.store import FileStore, Store, create_store

__all__ = [
    "AccessToken",
    "AcquisitionCapability",
    "AuthManager",
    "AzureLease",
    "DeviceCodePrompt",
    "FallbackLease",
    "FileStore",
    "Lease",
    "M365Lease",
    "Store",
    "StrategyOptions",
    "StrategyStep",
    "TokenCredential",
    "create_store",
    "default_chain",
]
