"""goslings -- credential lifecycle management for Microsoft cloud clients.

This package acquires, caches, renews, and durably persists the bearer
tokens a multi-service Microsoft cloud client needs (Microsoft Graph,
Azure, Exchange Online). Tokens are obtained through an ordered fallback
of acquisition strategies -- device code, client secret, interactive
browser, managed identity -- and stored encrypted at rest.

Typical usage::

    from goslings.auth import AuthManager
    from goslings.auth.msal_capability import MsalAcquisition
    from goslings.models import AuthParams, ManagerOptions, Service

    options = ManagerOptions(store_path=".credentials", encryption_key=key)
    with AuthManager(options, MsalAcquisition()) as manager:
        manager.authenticate(AuthParams(tenant_id="...", client_id="..."))
        token = manager.get_token(Service.GRAPH)

Modules:
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware paths, environment parameters, and key sources.
    cancellation: Cancellation tokens with optional deadlines.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
