"""Extraction of <run>, <think> and <output> directives from message text."""

import re
from dataclasses import dataclass, field

RUN_RE = re.compile(r"<run>(.*?)</run>", re.DOTALL)
THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)
OUTPUT_RE = re.compile(r"<output>(.*?)</output>", re.DOTALL)


@dataclass
class Directives:
    """Everything the loop and the renderer need from one model reply."""

    command: str | None = None
    thoughts: list[str] = field(default_factory=list)
    runs: list[str] = field(default_factory=list)
    prose: str = ""


def find_command(text: str) -> str | None:
    """Return the first <run> span's command, trimmed, or None.

    Only the first well-formed span counts. Unterminated tags and spans
    that are blank after trimming yield None, so the reply is final.
    """
    match = RUN_RE.search(text or "")
    if match is None:
        return None
    command = match.group(1).strip()
    return command or None


def parse(text: str) -> Directives:
    text = text or ""
    thoughts = [m.group(1) for m in THINK_RE.finditer(text)]
    remaining = THINK_RE.sub("", text)
    runs = [m.group(1) for m in RUN_RE.finditer(remaining)]
    remaining = RUN_RE.sub("", remaining)
    command = find_command(text)
    # A <run> inside a <think> span still executes, so it is listed too
    if command is not None and command not in (r.strip() for r in runs):
        runs.insert(0, command)
    return Directives(
        command=command,
        thoughts=thoughts,
        runs=runs,
        prose=remaining.strip(),
    )


def is_command_output(text: str) -> bool:
    return OUTPUT_RE.search(text or "") is not None


def unwrap_output(text: str) -> str:
    """Return the body of the first <output> span (text unchanged if none)."""
    match = OUTPUT_RE.search(text or "")
    if match is None:
        return text
    return match.group(1)


def wrap_output(text: str) -> str:
    """Wrap command output for re-injection as a user message."""
    return f"<output>\n{text}\n</output>"
