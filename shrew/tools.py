"""Shell command execution and working-tree context for the agent."""

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

MAX_CONTEXT_FILES = 100
SKIP_DIRS = {"node_modules"}


@dataclass
class CommandResult:
    """Combined output of one shell command.

    ``output`` holds stdout and stderr interleaved as the process wrote
    them, trimmed. ``error`` describes a nonzero exit or a launch failure.
    """

    command: str
    output: str
    succeeded: bool
    exit_code: int | None = None
    error: str | None = None

    def observation(self) -> str:
        """Text fed back to the model for this command."""
        parts: list[str] = []
        if self.output:
            parts.append(self.output)
        if self.error:
            parts.append(f"error: {self.error}")
        return "\n".join(parts) if parts else "(no output)"


def _shell_argv(command: str) -> list[str]:
    if sys.platform == "win32":
        return ["cmd.exe", "/c", command]
    shell = shutil.which("bash") or "/bin/sh"
    return [shell, "-c", command]


def run_command(command: str, cwd: str | None = None) -> CommandResult:
    """Run a shell string and capture its combined output.

    Never raises for a failing command: nonzero exit status and launch
    errors are reported through ``succeeded``/``error``.
    """
    try:
        proc = subprocess.run(
            _shell_argv(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            cwd=cwd,
        )
    except OSError as e:
        return CommandResult(
            command=command,
            output="",
            succeeded=False,
            error=f"failed to start command: {e}",
        )

    output = proc.stdout.decode("utf-8", errors="replace").strip()
    if proc.returncode != 0:
        return CommandResult(
            command=command,
            output=output,
            succeeded=False,
            exit_code=proc.returncode,
            error=f"exit status {proc.returncode}",
        )
    return CommandResult(command=command, output=output, succeeded=True, exit_code=0)


def _is_hidden(rel: Path) -> bool:
    return any(part.startswith(".") for part in rel.parts)


def gather_context(base_dir: str = ".", limit: int = MAX_CONTEXT_FILES) -> str:
    """Describe the working directory for the first message of a conversation."""
    base = Path(base_dir).resolve()
    files: list[str] = []
    for root, dirs, names in os.walk(base):
        rel_root = Path(root).relative_to(base)
        # Prune in place so os.walk skips hidden and vendored trees
        dirs[:] = sorted(
            d for d in dirs if not d.startswith(".") and d not in SKIP_DIRS
        )
        for name in sorted(names):
            rel = rel_root / name
            if _is_hidden(rel):
                continue
            files.append(rel.as_posix())
            if len(files) >= limit:
                break
        if len(files) >= limit:
            break
    listing = "\n - ".join(files)
    return f"Working Dir: {base}\nFiles (top {limit}):\n - {listing}"
