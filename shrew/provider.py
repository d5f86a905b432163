"""Language-model backends behind a single ``complete`` call."""

import json
import logging
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence

from .report import (
    BackendRejected,
    ConfigError,
    EmptyResponse,
    TransportFailure,
)
from .session import Message

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "openai", "ollama", "cmd")

DEFAULT_MODELS = {
    "gemini": "gemini-3-flash-preview",
    "openai": "gpt-4o",
    "ollama": "qwen2.5-coder:7b",
}

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def build_messages(system_prompt: str, history: Sequence[Message]) -> list[dict]:
    """Wire-format message list: system prompt first, then the conversation."""
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend({"role": m.role, "content": m.content} for m in history)
    return messages


class ProviderGateway(ABC):
    """One call to a language-model backend.

    ``complete`` returns the reply text or raises a ProviderError
    (TransportFailure, BackendRejected or EmptyResponse).
    """

    name = "provider"
    model = ""

    @abstractmethod
    def complete(self, system_prompt: str, history: Sequence[Message]) -> str: ...


class LiteLLMGateway(ProviderGateway):
    """Gemini, OpenAI(-compatible) and Ollama backends through LiteLLM."""

    def __init__(
        self,
        provider: str,
        model: str,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        if provider not in ("gemini", "openai", "ollama"):
            raise ConfigError(f"unknown provider {provider!r}")
        self.name = provider
        self.model = model
        self.api_key = api_key
        self.base_url = base_url

    def _route(self) -> tuple[str, dict]:
        kwargs: dict = {}
        if self.name == "gemini":
            model_str = f"gemini/{self.model.removeprefix('gemini/')}"
            kwargs["api_key"] = self.api_key
        elif self.name == "openai":
            model_str = f"openai/{self.model.removeprefix('openai/')}"
            kwargs["api_key"] = self.api_key
            if self.base_url:
                # A full chat-completions URL is accepted; LiteLLM wants the base
                kwargs["api_base"] = self.base_url.rstrip("/").removesuffix(
                    "/chat/completions"
                )
        else:
            model_str = f"ollama_chat/{self.model.removeprefix('ollama_chat/')}"
            kwargs["api_base"] = (self.base_url or DEFAULT_OLLAMA_URL).rstrip("/")
        return model_str, kwargs

    def complete(self, system_prompt: str, history: Sequence[Message]) -> str:
        import litellm

        litellm.suppress_debug_info = True

        model_str, kwargs = self._route()
        logger.debug("calling %s with %d messages", model_str, len(history))
        try:
            response = litellm.completion(
                model=model_str,
                messages=build_messages(system_prompt, history),
                **kwargs,
            )
        except (litellm.Timeout, litellm.APIConnectionError) as e:
            raise TransportFailure(str(e)) from e
        except Exception as e:
            status = getattr(e, "status_code", None)
            raise BackendRejected(str(e), status=status) from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise EmptyResponse("no choices in response")
        content = getattr(choices[0].message, "content", None)
        if not isinstance(content, str) or not content.strip():
            raise EmptyResponse("no content in response")
        return content


class CommandGateway(ProviderGateway):
    """Bridge to an external program.

    The command receives the JSON message list (system prompt first) on
    stdin and answers on stdout.
    """

    name = "cmd"

    def __init__(self, command: str, model: str = ""):
        if not command or not command.strip():
            raise ConfigError("the cmd provider needs a bridge command")
        self.command = command
        self.model = model

    def _argv(self) -> list[str]:
        if sys.platform == "win32":
            return ["cmd.exe", "/c", self.command]
        return [shutil.which("bash") or "/bin/sh", "-c", self.command]

    def complete(self, system_prompt: str, history: Sequence[Message]) -> str:
        payload = json.dumps(build_messages(system_prompt, history)).encode()
        logger.debug("running bridge command %r", self.command)
        try:
            proc = subprocess.run(
                self._argv(), input=payload, capture_output=True
            )
        except OSError as e:
            raise TransportFailure(f"bridge error: {e}") from e

        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            raise BackendRejected(
                f"bridge exited with status {proc.returncode}: {stderr}",
                status=proc.returncode,
            )
        text = proc.stdout.decode("utf-8", errors="replace").strip()
        if not text:
            raise EmptyResponse("bridge produced no output")
        return text


def make_gateway(settings) -> ProviderGateway:
    """Pick the backend once, at startup."""
    if settings.provider == "cmd":
        return CommandGateway(settings.command, model=settings.model or "")
    if settings.provider not in PROVIDERS:
        raise ConfigError(
            f"unknown provider {settings.provider!r} (expected one of {', '.join(PROVIDERS)})"
        )
    return LiteLLMGateway(
        settings.provider,
        settings.model,
        api_key=settings.api_key,
        base_url=settings.base_url,
    )
