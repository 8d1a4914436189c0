"""The token-acquisition capability boundary.

goslings never speaks an identity provider's wire protocol itself. It
sequences calls to an :class:`AcquisitionCapability` supplied by the
embedding application -- :class:`~goslings.auth.msal_capability.MsalAcquisition`
in production, a scripted fake in tests.

The capability is one polymorphic interface parameterised by a strategy tag
(:class:`~goslings.models.AuthType`) and a single :class:`StrategyOptions`
structure whose fields are optional; each strategy reads the fields it
needs.

To plug in a different provider library, subclass
:class:`AcquisitionCapability` and :class:`TokenCredential`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Sequence

from goslings.cancellation import CancellationToken
from goslings.models import AuthParams, AuthType


@dataclass(frozen=True)
class DeviceCodePrompt:
    """What the user needs to complete a device-code login on another device."""

    user_code: str
    verification_uri: str
    message: str = ""


UserPrompt = Callable[[DeviceCodePrompt], None]


@dataclass
class StrategyOptions:
    """Strategy-specific inputs, all optional.

    Attributes:
        tenant_id: Directory (tenant) to authenticate against.
        client_id: Application (client) id; for managed identity, selects a
            user-assigned identity when set.
        client_secret: Secret for the client-credentials strategy.
        authority_host: Login host for the selected cloud.
        user_prompt: Called with the device code for the user to enter.
        redirect_uri: Loopback redirect for the interactive browser
            strategy, when the provider needs an explicit one.
    """

    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    authority_host: str = ""
    user_prompt: Optional[UserPrompt] = None
    redirect_uri: Optional[str] = None

    @property
    def authority(self) -> str:
        """Full authority URL (``<host>/<tenant>``)."""
        return f"{self.authority_host.rstrip('/')}/{self.tenant_id}"


@dataclass
class AccessToken:
    """A token as returned by a :class:`TokenCredential`."""

    token: str = field(repr=False)
    expires_on: datetime
    refresh_token: Optional[str] = field(default=None, repr=False)


class TokenCredential(ABC):
    """Something able to produce a bearer token for a scope list."""

    @abstractmethod
    def get_token(
        self, scopes: Sequence[str], cancel: CancellationToken
    ) -> AccessToken:
        """Return a token for *scopes*.

        Implementations must check *cancel* at every network boundary and
        while waiting on the user.

        Raises:
            AcquisitionError: When the provider refuses or the flow fails.
            OperationCancelledError: When *cancel* fires.
        """
        ...


class AcquisitionCapability(ABC):
    """Factory turning a strategy tag and options into a :class:`TokenCredential`."""

    @abstractmethod
    def get_credential(
        self, strategy: AuthType, options: StrategyOptions
    ) -> TokenCredential:
        """Build a credential for *strategy*.

        Raises:
            AcquisitionError: If the credential cannot be constructed
                (for example, the strategy is unsupported).
        """
        ...


@dataclass(frozen=True)
class CloudEndpoints:
    """Login host and resource identifiers for one Microsoft cloud."""

    authority_host: str
    graph_resource: str
    exchange_resource: str
    message_trace_resource: str

    @property
    def graph_scopes(self) -> list[str]:
        return [f"{self.graph_resource}/.default"]

    @property
    def exchange_scopes(self) -> list[str]:
        return [f"{self.exchange_resource}/.default"]

    @property
    def message_trace_scopes(self) -> list[str]:
        return [f"{self.message_trace_resource}/.default"]


COMMERCIAL_CLOUD = CloudEndpoints(
    authority_host="https://login.microsoftonline.com",
    graph_resource="https://graph.microsoft.com",
    exchange_resource="https://outlook.office.com",
    message_trace_resource="https://admin.exchange.microsoft.com",
)

US_GOVERNMENT_CLOUD = CloudEndpoints(
    authority_host="https://login.microsoftonline.us",
    graph_resource="https://graph.microsoft.us",
    exchange_resource="https://outlook.office365.us",
    message_trace_resource="https://admin.exchange.office365.us",
)


def cloud_for(params: AuthParams) -> CloudEndpoints:
    """Pick the Azure AD / Graph endpoints for *params*."""
    return US_GOVERNMENT_CLOUD if params.us_government else COMMERCIAL_CLOUD


def exchange_cloud_for(params: AuthParams) -> CloudEndpoints:
    """Pick the Exchange Online endpoints for *params*.

    Exchange has its own government switch, independent of the Azure one;
    the login host still follows ``us_government``.
    """
    base = cloud_for(params)
    exo = US_GOVERNMENT_CLOUD if params.exo_us_government else COMMERCIAL_CLOUD
    return CloudEndpoints(
        authority_host=base.authority_host,
        graph_resource=base.graph_resource,
        exchange_resource=exo.exchange_resource,
        message_trace_resource=exo.message_trace_resource,
    )
