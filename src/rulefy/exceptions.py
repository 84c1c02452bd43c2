from __future__ import annotations

from dataclasses import dataclass

from rulefy.config import ErrorCategory

_CATEGORY_LABELS: dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: "Authentication failed",
    ErrorCategory.RATE_LIMIT: "Rate limit exceeded",
    ErrorCategory.TIMEOUT: "Request timeout",
    ErrorCategory.NETWORK: "Network error",
}


@dataclass(frozen=True)
class RulefyError(Exception):
    """Base exception for errors in the rulefy package."""

    def __str__(self) -> str:
        return getattr(self, "message", "") or (self.__doc__ or "").strip()


@dataclass(frozen=True)
class ConfigurationError(RulefyError):
    """Raised when a provider configuration or a run option is invalid."""

    message: str
    field: str = ""


@dataclass(frozen=True)
class ProviderNotFoundError(RulefyError):
    """Raised when a provider name is not registered."""

    name: str
    available: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"Provider '{self.name}' not found. Available providers: {', '.join(self.available)}"


@dataclass(frozen=True)
class ProviderError(RulefyError):
    """Raised when a back end fails to produce a generation.

    ``category`` tells authentication, rate-limit, timeout and network failures
    apart from everything else; ``chunk_index`` is filled in by the summarizer.
    """

    message: str
    category: ErrorCategory = ErrorCategory.PROVIDER
    provider: str = ""
    display_name: str = ""
    status_code: int | None = None
    chunk_index: int | None = None

    def __str__(self) -> str:
        label = _CATEGORY_LABELS.get(self.category) or f"{self.display_name or self.provider} API error"
        text = f"{label}: {self.message}"
        if self.chunk_index is not None:
            text = f"chunk {self.chunk_index + 1}: {text}"
        return text


@dataclass(frozen=True)
class ExtractionError(RulefyError):
    """Raised when the final model output lacks the dialect's delimiter tags."""

    tag: str

    def __str__(self) -> str:
        return (
            f"Response does not contain <{self.tag}> tags. "
            "Make sure the model includes the required tags in its response."
        )


@dataclass(frozen=True)
class OperationCancelledError(RulefyError):
    """Raised when the operator declines to proceed. Not a failure."""

    message: str = "Operation cancelled by user."


@dataclass(frozen=True)
class RepositoryDigestError(RulefyError):
    """Raised when the repository digest cannot be read or produced."""

    source: str
    message: str = "Unable to obtain the repository digest."


@dataclass(frozen=True)
class FlattenCommandError(RulefyError):
    """Raised when the external repository flattener fails."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        return f"`{self.command}` exited with status {self.returncode}" + (f": {detail}" if detail else "")
