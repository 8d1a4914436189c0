"""Auth commands -- acquire, inspect, renew, and wipe credentials.

Provides the ``goslings auth`` sub-command group. Every command builds an
:class:`~goslings.auth.manager.AuthManager` from the resolved configuration
(see :func:`goslings.config.load_manager_options`), so the encrypted store
is shared between invocations.

Typical workflow::

    goslings auth key-gen --save       # one-time: create the store key
    goslings auth login --m365         # device code / client secret / browser
    goslings auth token graph          # print a bearer token for scripting
    goslings auth renew                # refresh when close to expiry
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer

from goslings.auth.manager import AuthManager
from goslings.cancellation import CancellationToken
from goslings.exceptions import GoslingsError
from goslings.exit_codes import EXIT_INVALID_USAGE
from goslings.models import AuthParams, Credentials, Service
from goslings.output import (
    device_code,
    error,
    info,
    print_data,
    print_record,
    success,
    suggest,
)

auth_app = typer.Typer(no_args_is_help=True)


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Turn :class:`GoslingsError` into an error line plus its exit code."""
    try:
        yield
    except GoslingsError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _open_manager(ctx: typer.Context) -> AuthManager:
    from goslings.auth.msal_capability import MsalAcquisition
    from goslings.config import load_manager_options

    obj = ctx.find_root().obj or {}
    options = load_manager_options(
        store_path=obj.get("store_path"),
        key_source=obj.get("key_source"),
        debug=True if obj.get("verbose") else None,
    )
    return AuthManager(options, MsalAcquisition(), user_prompt=device_code)


def _cancel_token(timeout: Optional[float]) -> CancellationToken:
    if timeout is None:
        return CancellationToken()
    return CancellationToken.with_timeout(timeout)


def _summary(creds: Credentials) -> dict[str, object]:
    return {
        "auth_type": creds.auth_type.value if creds.auth_type else None,
        "expires_at": creds.expires_at.isoformat() if creds.expires_at else None,
        "last_refreshed": creds.last_refreshed.isoformat(),
        "tokens": sorted(creds.tokens),
    }


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    tenant: Optional[str] = typer.Option(None, "--tenant", help="Directory (tenant) id."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="Application id."),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        help="Client secret source: env:VAR, file:/path, prompt.",
    ),
    m365: Optional[bool] = typer.Option(
        None, "--m365/--no-m365", help="Also authenticate to Exchange Online."
    ),
    message_trace: Optional[bool] = typer.Option(
        None, "--message-trace/--no-message-trace", help="Also get a message trace token."
    ),
    us_government: Optional[bool] = typer.Option(
        None, "--us-gov/--no-us-gov", help="Use US Government cloud endpoints."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=1, help="Give up after this many seconds."
    ),
) -> None:
    """Authenticate and store the resulting credentials.

    Parameters come from the ``GOSLING_*`` environment variables; options
    given here override them. Strategies are tried in order (device code,
    client credentials, interactive browser) and the first that succeeds
    wins.

    Example::

        GOSLING_TENANT=... GOSLING_APP_ID=... goslings auth login
    """
    from goslings.config import load_auth_params, resolve_credential

    with _reported_errors():
        params = load_auth_params()
        overrides: dict[str, object] = {}
        if tenant is not None:
            overrides["tenant_id"] = tenant
        if client_id is not None:
            overrides["client_id"] = client_id
        if client_secret_source is not None:
            overrides["client_secret"] = resolve_credential(client_secret_source)
        if m365 is not None:
            overrides["m365_enabled"] = m365
        if message_trace is not None:
            overrides["message_trace_enabled"] = message_trace
        if us_government is not None:
            overrides["us_government"] = us_government
        params = params.model_copy(update=overrides)
        _require_identity(params)

        with _open_manager(ctx) as manager:
            creds = manager.authenticate(params, _cancel_token(timeout))

    success("Authenticated.")
    print_record(_summary(creds), title="Credentials")
    suggest("Get a token: goslings auth token graph")


def _require_identity(params: AuthParams) -> None:
    if not params.tenant_id and not params.client_id:
        error("No tenant or application id configured.")
        suggest("Set GOSLING_TENANT and GOSLING_APP_ID, or pass --tenant and --client-id.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show what is cached without contacting the identity provider."""
    with _reported_errors():
        with _open_manager(ctx) as manager:
            creds = manager.get_credentials()
            expired = manager.is_expired()

    if creds is None or not creds.tokens:
        print_record({"authenticated": False})
        suggest("Log in: goslings auth login")
        return

    record: dict[str, object] = {"authenticated": True, "renewal_due": expired}
    record.update(_summary(creds))
    print_record(record, title="Credentials")
    if expired:
        suggest("Renew: goslings auth renew")


@auth_app.command("token")
def auth_token(
    ctx: typer.Context,
    service: Service = typer.Argument(Service.GRAPH, help="Service to get a token for."),
) -> None:
    """Print the cached bearer token for SERVICE to stdout.

    Fails with exit code 4 when the token has expired; run ``goslings auth
    renew`` first.

    Example::

        curl -H "Authorization: Bearer $(goslings auth token graph)" ...
    """
    from goslings.output import OutputFormat, get_output

    with _reported_errors():
        with _open_manager(ctx) as manager:
            token = manager.get_token(service)

    if get_output().format == OutputFormat.JSON:
        print_record(
            {
                "service": service.value,
                "type": token.type,
                "token": token.value,
                "expires_at": token.expires_at.isoformat(),
            }
        )
    else:
        print_data(token.value)


@auth_app.command("renew")
def auth_renew(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=1, help="Give up after this many seconds."
    ),
) -> None:
    """Renew cached credentials if they are close to expiry."""
    with _reported_errors():
        with _open_manager(ctx) as manager:
            renewed = manager.renew_tokens(_cancel_token(timeout))
            creds = manager.get_credentials()

    if renewed:
        success("Credentials renewed.")
    else:
        info("Credentials are still valid; nothing to renew.")
    if creds is not None:
        print_record(_summary(creds), title="Credentials")


@auth_app.command("clear")
def auth_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete all stored credentials, parameters, and M365 resources."""
    if not yes:
        typer.confirm("Delete all stored authentication state?", abort=True)

    with _reported_errors():
        with _open_manager(ctx) as manager:
            manager.clear()

    success("Authentication state cleared.")


@auth_app.command("key-gen")
def auth_key_gen(
    save: bool = typer.Option(
        False, "--save", help="Write the key to the default key file."
    ),
    path: Optional[Path] = typer.Option(
        None, "--path", help="Write the key to this file (implies --save)."
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing key file."),
) -> None:
    """Generate a random 32-byte store encryption key.

    Without ``--save`` the key is printed to stdout. Replacing a key makes
    everything already in the store unreadable.
    """
    from goslings.config import default_key_path, generate_key, save_key

    key = generate_key()
    if not save and path is None:
        print_data(key)
        return

    target = path or default_key_path()
    if target.exists() and not force:
        error(f"Key file already exists: {target}")
        suggest("Pass --force to replace it; stored credentials will become unreadable.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    with _reported_errors():
        try:
            written = save_key(key, target)
        except OSError as exc:
            raise GoslingsError(f"Cannot write key file {target}: {exc}") from exc
    success(f"Key written to {written}")
