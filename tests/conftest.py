"""Shared test fixtures for goslings.

Provides a scripted acquisition capability, a controllable clock, isolated
config/data directories, and helpers for the output and logging globals.
These fixtures are automatically discovered by pytest and available to all
test modules without explicit imports.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest

from goslings.auth.acquisition import (
    AccessToken,
    AcquisitionCapability,
    StrategyOptions,
    TokenCredential,
)
from goslings.cancellation import CancellationToken
from goslings.exceptions import AcquisitionError
from goslings.models import AuthParams, AuthType, ManagerOptions, utcnow
from goslings.output import OutputFormat, OutputManager, reset_output, set_output

START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
TEST_KEY = bytes(range(32))


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """A settable UTC clock. Call it to read the time."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeCredential(TokenCredential):
    def __init__(self, owner: FakeAcquisition, strategy: AuthType) -> None:
        self._owner = owner
        self._strategy = strategy

    def get_token(self, scopes: Sequence[str], cancel: CancellationToken) -> AccessToken:
        return self._owner.issue(self._strategy, list(scopes), cancel)


class FakeAcquisition(AcquisitionCapability):
    """Scripted capability recording every credential built and token issued.

    By default every strategy succeeds with a token valid for ``lifetime``.
    :meth:`fail` makes a strategy raise; :meth:`fail_scope` makes any request
    whose scope contains a substring raise; ``before_issue`` runs ahead of
    each token request.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        lifetime: timedelta = timedelta(hours=1),
    ) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.built: list[AuthType] = []
        self.options: list[StrategyOptions] = []
        self.issued: list[tuple[AuthType, list[str], str]] = []
        self.strategy_failures: dict[AuthType, Exception] = {}
        self.scope_failures: dict[str, Exception] = {}
        self.before_issue: Optional[Callable[[AuthType, list[str], CancellationToken], None]] = None
        self._counter = itertools.count(1)

    def fail(self, strategy: AuthType, exc: Optional[Exception] = None) -> None:
        self.strategy_failures[strategy] = exc or AcquisitionError(f"{strategy.value} refused")

    def fail_scope(self, fragment: str, exc: Optional[Exception] = None) -> None:
        self.scope_failures[fragment] = exc or AcquisitionError(f"no consent for {fragment}")

    def get_credential(self, strategy: AuthType, options: StrategyOptions) -> TokenCredential:
        self.built.append(strategy)
        self.options.append(options)
        return FakeCredential(self, strategy)

    def issue(
        self, strategy: AuthType, scopes: list[str], cancel: CancellationToken
    ) -> AccessToken:
        if self.before_issue is not None:
            self.before_issue(strategy, scopes, cancel)
        if strategy in self.strategy_failures:
            raise self.strategy_failures[strategy]
        for fragment, exc in self.scope_failures.items():
            if any(fragment in scope for scope in scopes):
                raise exc
        value = f"{strategy.value}-{next(self._counter)}"
        self.issued.append((strategy, scopes, value))
        return AccessToken(token=value, expires_on=self.clock() + self.lifetime)

    def last_value(self) -> str:
        return self.issued[-1][2]


# ---------------------------------------------------------------------------
# Auto-reset global state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during a
    test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def _reset_package_logger() -> None:
    """Undo :func:`goslings.log.setup_logging` so ``caplog`` keeps working."""
    yield
    logger = logging.getLogger("goslings")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# ---------------------------------------------------------------------------
# Auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def acquisition(clock: FakeClock) -> FakeAcquisition:
    return FakeAcquisition(clock)


@pytest.fixture
def live_acquisition() -> FakeAcquisition:
    """A fake capability on the real clock, for code paths that use :func:`utcnow`."""
    return FakeAcquisition()


@pytest.fixture
def params() -> AuthParams:
    """Parameters that satisfy every strategy in the default chain."""
    return AuthParams(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="s3cret",
    )


@pytest.fixture
def manager_options(tmp_path: Path) -> ManagerOptions:
    """File-store options rooted in a temporary directory."""
    return ManagerOptions(store_path=tmp_path / "store", encryption_key=TEST_KEY)


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Points XDG_CONFIG_HOME and XDG_DATA_HOME at subdirectories of tmp_path,
    forces XDG path resolution, and clears all GOSLING(S)_* environment
    variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("goslings.config._is_xdg_platform", lambda: True)

    for var in [
        "GOSLING_USER",
        "GOSLING_PASS",
        "GOSLING_TENANT",
        "GOSLING_APP_ID",
        "GOSLING_APP_SECRET",
        "GOSLING_SUBSCRIPTION",
        "GOSLING_USGOV_CLOUD",
        "GOSLING_USGOV_EXO",
        "GOSLING_M365_AUTH",
        "GOSLING_EXO_MSG_TRACE",
        "GOSLINGS_STORE_TYPE",
        "GOSLINGS_STORE_PATH",
        "GOSLINGS_KEY_SOURCE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
