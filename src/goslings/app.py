"""Typer application and CLI entry point for goslings.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It registers the built-in sub-commands, invokes the
Typer app, and maps :class:`~goslings.exceptions.GoslingsError` to its exit
code. Unhandled exceptions are written to a crash log under the data
directory.

See Also:
    :mod:`goslings.config`: Option and parameter resolution.
    :mod:`goslings.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from goslings import __version__
from goslings.commands.auth import auth_app
from goslings.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="goslings",
    help="Acquire, cache, and renew Microsoft cloud credentials.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.add_typer(auth_app, name="auth", help="Authentication management.")


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"goslings {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
    store_path: Optional[Path] = typer.Option(
        None, "--store-path", help="Directory holding the encrypted store."
    ),
    key_source: Optional[str] = typer.Option(
        None, "--key-source", help="Encryption key source: env:VAR, file:/path, prompt."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~goslings.output.OutputManager` and the Rich
    log handler, and stores the store/key overrides in ``ctx.obj`` for the
    sub-commands.
    """
    from goslings.log import setup_logging
    from goslings.output import OutputFormat, OutputManager, set_output

    output = OutputManager(
        format=OutputFormat.JSON if json_output else OutputFormat.AUTO,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    setup_logging(verbose=verbose, no_color=output.no_color)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["store_path"] = store_path
    ctx.obj["key_source"] = key_source


def _write_crash_log() -> str:
    """Write the current traceback to disk and return the log file path."""
    from goslings.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``goslings`` console script.

    :class:`~goslings.exceptions.GoslingsError` instances that escape a
    command cause a clean exit with the error's ``exit_code``; Ctrl-C exits
    130. All other exceptions produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from goslings.exceptions import GoslingsError
        from goslings.output import error

        if isinstance(exc, GoslingsError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
