"""ANSI-formatted stderr output using Rich."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


def setup_logging(
    *, verbose: bool, log_file: str | None = None, to_stderr: bool = True
) -> None:
    """Route the ``shrew`` loggers to stderr or a file (or nowhere, under the TUI)."""
    root = logging.getLogger("shrew")
    root.handlers.clear()
    root.propagate = False
    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(name)s: %(message)s", "%Y-%m-%d %H:%M:%S")
        )
    elif to_stderr:
        handler = RichHandler(console=_console, show_path=False, markup=False)
    else:
        handler = logging.NullHandler()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


# -- Turn structure ----------------------------------------------------------


def model_call(turn: int, provider: str, model: str, token_est: int) -> None:
    line = Text()
    line.append(f"  ▶ model call {turn}", style="bold magenta")
    line.append(f"  {provider}/{model} (~{token_est} tokens)", style="dim")
    _console.print(line, soft_wrap=True)


def executing(command: str) -> None:
    line = Text()
    line.append("  [Executing] ", style="bold yellow")
    line.append(command, style="italic yellow")
    _console.print(line, soft_wrap=True)


def command_result(succeeded: bool, preview: str) -> None:
    if succeeded:
        _console.print(Text("  ✓ command finished", style="green"), soft_wrap=True)
    else:
        _console.print(Text("  ✗ command failed", style="bold red"), soft_wrap=True)
    if preview:
        for line in preview.splitlines()[:10]:
            _console.print(Text(f"    {line}", style="dim"), soft_wrap=True)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"), soft_wrap=True)


def warning(msg: str) -> None:
    line = Text()
    line.append("  ⚠ Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line, soft_wrap=True)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line, soft_wrap=True)
