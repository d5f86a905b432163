"""Configuration loading and merging for shrew.

Reads TOML config from ~/.config/shrew/config.toml (global) and
<base_dir>/shrew.toml (project), then the environment (including a .env
file in base_dir). Precedence: CLI > environment > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from .provider import DEFAULT_MODELS, DEFAULT_OLLAMA_URL, PROVIDERS
from .report import ConfigError
from .session import DEFAULT_HISTORY_FILE

_UNSET = object()  # Sentinel for "not set by CLI"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "provider": str,
    "model": str,
    "api_key": str,
    "base_url": str,
    "command": str,
    "gemini_api_key": str,
    "openai_api_key": str,
    "ollama_url": str,
    "system_prompt": str,
    "history_file": str,
    "no_skills": bool,
    "skills_dir": list,
    "no_context": bool,
    "color": bool,
    "quiet": bool,
}

_LIST_OF_STR_KEYS = {"skills_dir"}

# Environment variable -> config key
ENV_KEYS: dict[str, str] = {
    "GEMINI_API_KEY": "gemini_api_key",
    "OPENAI_API_KEY": "openai_api_key",
    "OLLAMA_URL": "ollama_url",
    "SHREW_PROVIDER": "provider",
    "SHREW_MODEL": "model",
    "SHREW_API_URL": "base_url",
    "SHREW_COMMAND": "command",
}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "provider": None,
    "model": None,
    "api_key": None,
    "base_url": None,
    "command": None,
    "gemini_api_key": None,
    "openai_api_key": None,
    "ollama_url": None,
    "system_prompt": None,
    "history_file": DEFAULT_HISTORY_FILE,
    "no_skills": False,
    "skills_dir": [],
    "no_context": False,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "shrew"
    return Path.home() / ".config" / "shrew"


def _type_name(expected: type | tuple[type, ...]) -> str:
    if expected is list:
        return "list"
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int; reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )

        if key in _LIST_OF_STR_KEYS:
            for i, elem in enumerate(value):
                if not isinstance(elem, str):
                    raise ConfigError(
                        f"{source}: {key}[{i}]: expected string, got {type(elem).__name__}"
                    )

    provider = config.get("provider")
    if provider is not None and provider not in PROVIDERS:
        raise ConfigError(
            f"{source}: 'provider' must be one of {', '.join(PROVIDERS)}, got {provider!r}"
        )


def _resolve_paths(config: dict, config_dir: Path) -> None:
    """Resolve relative paths against the config file's parent directory."""
    if "skills_dir" in config:
        resolved = []
        for p in config["skills_dir"]:
            expanded = Path(p).expanduser()
            resolved.append(str(expanded if expanded.is_absolute() else config_dir / p))
        config["skills_dir"] = resolved
    if "history_file" in config:
        expanded = Path(config["history_file"]).expanduser()
        if not expanded.is_absolute():
            expanded = config_dir / expanded
        config["history_file"] = str(expanded)


def _check_api_key_in_git(config: dict, config_path: Path) -> None:
    """Warn if an API key is set in a project config inside a git repo."""
    if not any(k in config for k in ("api_key", "gemini_api_key", "openai_api_key")):
        return
    parent = config_path.parent
    while parent != parent.parent:
        if (parent / ".git").exists():
            print(
                f"warning: {config_path}: API keys in a git-tracked project config "
                f"may be committed accidentally. Consider using an environment variable.",
                file=sys.stderr,
            )
            return
        parent = parent.parent


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e
    except OSError as e:
        raise ConfigError(f"{label}: cannot read file: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with only the keys actually set in config files.
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))
    if global_config:
        _resolve_paths(global_config, global_path.parent)

    project_path = Path(base_dir).resolve() / "shrew.toml"
    project_config = _load_single(project_path, str(project_path))
    if project_config:
        _check_api_key_in_git(project_config, project_path)
        _resolve_paths(project_config, project_path.parent)

    return {**global_config, **project_config}


def load_env(base_dir: Path, environ: dict | None = None) -> dict:
    """Collect config values from <base_dir>/.env and the process environment.

    Real environment variables win over the .env file. Empty values are
    treated as unset.
    """
    env_path = Path(base_dir) / ".env"
    values: dict = {}
    if env_path.is_file():
        values.update({k: v for k, v in dotenv_values(env_path).items() if v})
    environ = os.environ if environ is None else environ
    values.update({k: v for k, v in environ.items() if k in ENV_KEYS and v})

    config = {}
    for env_name, key in ENV_KEYS.items():
        if env_name in values:
            config[key] = values[env_name]
    if "provider" in config:
        _validate_config({"provider": config["provider"]}, "environment")
    return config


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, replaces the remaining _UNSET
    sentinels with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """
    # Dests that use None as sentinel (argparse append actions can't use _UNSET)
    _NONE_SENTINEL_DESTS = {"skills_dir"}

    def _is_unset(dest: str) -> bool:
        val = getattr(args, dest, _UNSET)
        if dest in _NONE_SENTINEL_DESTS:
            return val is None
        return val is _UNSET

    # Special handling for color: single config key controls mutual-exclusive pair
    if "color" in config:
        color_val = config["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


@dataclass
class Settings:
    """Resolved backend and session settings consumed by the agent."""

    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None
    command: str | None = None
    history_file: str = DEFAULT_HISTORY_FILE
    skills_dir: list[str] = field(default_factory=list)


def default_provider(args: argparse.Namespace) -> str:
    """Gemini when a Gemini key is present, else OpenAI, else local Ollama."""
    if getattr(args, "gemini_api_key", None):
        return "gemini"
    if getattr(args, "openai_api_key", None):
        return "openai"
    return "ollama"


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Turn merged CLI/config values into Settings, validating per provider."""
    provider = args.provider or default_provider(args)
    if provider not in PROVIDERS:
        raise ConfigError(
            f"unknown provider {provider!r} (expected one of {', '.join(PROVIDERS)})"
        )

    model = args.model or DEFAULT_MODELS.get(provider, "")
    api_key = args.api_key
    base_url = args.base_url

    if provider == "gemini":
        api_key = api_key or args.gemini_api_key
        if not api_key:
            raise ConfigError(
                "--api-key or GEMINI_API_KEY env var required for gemini provider"
            )
    elif provider == "openai":
        api_key = api_key or args.openai_api_key
        if not api_key:
            raise ConfigError(
                "--api-key or OPENAI_API_KEY env var required for openai provider"
            )
    elif provider == "ollama":
        base_url = base_url or args.ollama_url or DEFAULT_OLLAMA_URL
    elif provider == "cmd":
        if not args.command:
            raise ConfigError(
                "--command or SHREW_COMMAND env var required for cmd provider"
            )

    return Settings(
        provider=provider,
        model=model,
        api_key=api_key,
        base_url=base_url,
        command=args.command,
        history_file=args.history_file,
        skills_dir=list(args.skills_dir or []),
    )


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# shrew configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/shrew.toml' if project else '~/.config/shrew/config.toml'}",
        "#",
        "# CLI flags and environment variables override these values.",
        "",
        "# --- Provider / model ---",
        '# provider = "gemini"           # "gemini" | "openai" | "ollama" | "cmd"',
        '# model = "gemini-3-flash-preview"',
        '# gemini_api_key = "..."        # prefer GEMINI_API_KEY',
        '# openai_api_key = "..."        # prefer OPENAI_API_KEY',
        '# base_url = "https://..."      # OpenAI-compatible endpoint',
        '# ollama_url = "http://localhost:11434"',
        '# command = "./bridge.sh"        # bridge program for provider = "cmd"',
        "",
        "# --- Agent ---",
        '# system_prompt = "You are shrew..."',
        '# history_file = "history.json"',
        "# no_context = false",
        "# no_skills = false",
        '# skills_dir = ["../shared-skills"]',
        "",
        "# --- UI ---",
        "# color = true",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
