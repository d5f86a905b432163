"""Error taxonomy for shrew."""


class AgentError(Exception):
    """Raised by the agent loop or setup helpers for reportable runtime failures."""


class ConfigError(AgentError):
    """Raised for invalid configuration (unknown provider, missing API key, etc.)."""


class PersistenceFailure(AgentError):
    """Raised when the session store cannot be read or written."""


class ProviderError(AgentError):
    """A categorized failure from a language-model backend.

    ``kind`` is one of ``transport``, ``rejected`` or ``empty``;
    ``diagnostic`` carries whatever the backend said about it.
    """

    kind = "provider"

    def __init__(self, diagnostic: str = ""):
        super().__init__(diagnostic)
        self.diagnostic = diagnostic

    def describe(self) -> str:
        return f"{self.kind}: {self.diagnostic}" if self.diagnostic else self.kind


class TransportFailure(ProviderError):
    """The backend could not be reached."""

    kind = "transport"


class BackendRejected(ProviderError):
    """The backend answered with a non-success status."""

    kind = "rejected"

    def __init__(self, diagnostic: str = "", status: int | None = None):
        super().__init__(diagnostic)
        self.status = status

    def describe(self) -> str:
        if self.status is None:
            return super().describe()
        return f"rejected ({self.status}): {self.diagnostic}"


class EmptyResponse(ProviderError):
    """The backend returned no usable content."""

    kind = "empty"

    def __init__(self, diagnostic: str = "no response"):
        super().__init__(diagnostic)
