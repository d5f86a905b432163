"""Tests for the fmt module (ANSI-formatted stderr helpers and logging setup)."""

import logging
from io import StringIO

from rich.console import Console

from shrew import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestModelCall:
    def test_contains_turn_info(self):
        out = _capture(fmt.model_call, 3, "gemini", "gemini-3-flash-preview", 4200)
        assert "model call 3" in out
        assert "gemini/gemini-3-flash-preview" in out
        assert "4200 tokens" in out


class TestExecuting:
    def test_command_shown(self):
        out = _capture(fmt.executing, "ls -la")
        assert "[Executing]" in out
        assert "ls -la" in out


class TestCommandResult:
    def test_success(self):
        out = _capture(fmt.command_result, True, "hello")
        assert "command finished" in out
        assert "hello" in out

    def test_failure(self):
        out = _capture(fmt.command_result, False, "")
        assert "command failed" in out

    def test_preview_limited_to_ten_lines(self):
        preview = "\n".join(f"line{i}" for i in range(20))
        out = _capture(fmt.command_result, True, preview)
        assert "line9" in out
        assert "line10" not in out


class TestDiagnostics:
    def test_info(self):
        assert "no saved sessions" in _capture(fmt.info, "no saved sessions")

    def test_warning(self):
        out = _capture(fmt.warning, "disk full")
        assert "Warning:" in out
        assert "disk full" in out

    def test_error(self):
        out = _capture(fmt.error, "boom")
        assert out.startswith("Error: boom")

    def test_long_error_not_wrapped(self):
        path = "/tmp/" + "nested/" * 20 + "shrew.toml"
        out = _capture(fmt.error, f"{path}: invalid TOML: Invalid value")
        assert out == f"Error: {path}: invalid TOML: Invalid value\n"

    def test_long_warning_not_wrapped(self):
        msg = "could not restore session 'x': " + "y" * 120
        assert msg in _capture(fmt.warning, msg)


class TestInit:
    def test_no_color(self):
        old = fmt._console
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color is True
        finally:
            fmt._console = old

    def test_force_color(self):
        old = fmt._console
        try:
            fmt.init(color=True)
            assert fmt._console.is_terminal
        finally:
            fmt._console = old


class TestSetupLogging:
    def teardown_method(self):
        root = logging.getLogger("shrew")
        for handler in root.handlers:
            handler.close()
        root.handlers.clear()

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "debug.log"
        fmt.setup_logging(verbose=True, log_file=str(log_file), to_stderr=False)
        logger = logging.getLogger("shrew.agent")
        logger.debug("hello from the loop")
        for handler in logging.getLogger("shrew").handlers:
            handler.flush()
        assert "shrew.agent: hello from the loop" in log_file.read_text()

    def test_quiet_under_tui(self):
        fmt.setup_logging(verbose=False, to_stderr=False)
        root = logging.getLogger("shrew")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0], logging.NullHandler)
        assert root.propagate is False

    def test_levels(self):
        fmt.setup_logging(verbose=True)
        assert logging.getLogger("shrew").level == logging.DEBUG
        fmt.setup_logging(verbose=False)
        assert logging.getLogger("shrew").level == logging.WARNING
