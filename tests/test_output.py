"""Tests for CLI output routing.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose suppression rules
- print_record in each format
- Device code prompts
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from goslings import output as output_module
from goslings.auth.acquisition import DeviceCodePrompt
from goslings.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    reset_output,
    set_output,
)


@pytest.fixture()
def non_tty(monkeypatch):
    monkeypatch.setattr("goslings.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    monkeypatch.setattr("goslings.output._is_tty", lambda: True)
    monkeypatch.delenv("NO_COLOR", raising=False)
    monkeypatch.delenv("TERM", raising=False)


def _plain(**kwargs) -> OutputManager:
    return OutputManager(format=OutputFormat.PLAIN, no_color=True, **kwargs)


class TestOutputFormatResolution:
    def test_auto_is_plain_without_tty(self, non_tty):
        assert OutputManager().format == OutputFormat.PLAIN

    def test_auto_is_rich_on_tty(self, tty):
        assert OutputManager().format == OutputFormat.RICH

    def test_no_color_flag_forces_plain(self, tty):
        assert OutputManager(no_color=True).format == OutputFormat.PLAIN

    def test_explicit_json(self, tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


class TestStdoutStderrDiscipline:
    def test_data_goes_to_stdout(self, capfd):
        _plain().print_data("eyJ0eXAi")
        captured = capfd.readouterr()
        assert captured.out == "eyJ0eXAi\n"
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, method):
        getattr(_plain(), method)("a message")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "a message" in captured.err

    def test_error_prefix(self, capfd):
        _plain().error("store locked")
        assert capfd.readouterr().err == "Error: store locked\n"


class TestQuietAndVerbose:
    @pytest.mark.parametrize("method", ["info", "success", "suggest"])
    def test_quiet_suppresses(self, capfd, method):
        getattr(_plain(quiet=True), method)("hidden")
        assert capfd.readouterr().err == ""

    @pytest.mark.parametrize("method", ["warning", "error"])
    def test_quiet_keeps_problems(self, capfd, method):
        getattr(_plain(quiet=True), method)("shown")
        assert "shown" in capfd.readouterr().err

    def test_debug_needs_verbose(self, capfd):
        _plain().debug("trace")
        assert capfd.readouterr().err == ""
        _plain(verbose=True).debug("trace")
        assert "[debug] trace" in capfd.readouterr().err


class TestRecords:
    RECORD = {"auth_type": "device_code", "tokens": ["exchange", "graph"], "expires_at": None}

    def test_json(self, capfd):
        OutputManager(format=OutputFormat.JSON).print_record(self.RECORD)
        assert json.loads(capfd.readouterr().out) == self.RECORD

    def test_plain(self, capfd):
        _plain().print_record(self.RECORD)
        assert capfd.readouterr().out.splitlines() == [
            "auth_type\tdevice_code",
            "tokens\texchange, graph",
            "expires_at\t-",
        ]

    def test_rich(self, capfd):
        OutputManager(format=OutputFormat.RICH, no_color=True).print_record(
            self.RECORD, title="Credentials"
        )
        out = capfd.readouterr().out
        assert "Credentials" in out
        assert "device_code" in out


class TestDeviceCode:
    PROMPT = DeviceCodePrompt(
        user_code="ABCD-1234",
        verification_uri="https://microsoft.com/devicelogin",
        message="To sign in...",
    )

    def test_shown_even_when_quiet(self, capfd):
        _plain(quiet=True).device_code(self.PROMPT)
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "ABCD-1234" in captured.err
        assert "https://microsoft.com/devicelogin" in captured.err

    def test_rich_panel(self, capfd):
        OutputManager(format=OutputFormat.RICH).device_code(self.PROMPT)
        assert "ABCD-1234" in capfd.readouterr().err


class TestGlobalInstance:
    def test_lazy_default(self):
        reset_output()
        assert isinstance(get_output(), OutputManager)
        assert get_output() is get_output()

    def test_module_helpers_delegate(self, capfd):
        set_output(_plain())
        output_module.print_data("value")
        output_module.warning("careful")
        captured = capfd.readouterr()
        assert captured.out == "value\n"
        assert "careful" in captured.err
