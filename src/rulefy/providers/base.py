from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from rulefy.config import ErrorCategory, GenerationResult, Message, Role, Usage
from rulefy.exceptions import ConfigurationError, ProviderError, RulefyError
from rulefy.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from rulefy.config import ProviderConfig

    SleepFn = Callable[[float], None]

MAX_RETRIES = 3
RETRY_BASE_DELAY = 2.0  # seconds; attempt n waits RETRY_BASE_DELAY * 2**n

_AUTH_MARKERS = ("api key", "api_key", "unauthorized", "authentication", "invalid x-api-key")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "quota", "too many requests", "throttl")
_TIMEOUT_MARKERS = ("timeout", "timed out")
_NETWORK_MARKERS = ("network", "connection")


def get_field(obj: Any, name: str) -> Any:  # noqa: ANN401
    """Read ``name`` from a mapping or an attribute-style response object."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def status_code_of(exc: BaseException) -> int | None:
    """HTTP status carried by an SDK or httpx error, if any."""
    code = getattr(exc, "status_code", None)
    if code is None:
        code = get_field(getattr(exc, "response", None), "status_code")
    if code is None:
        code = getattr(exc, "status", None)
    return code if isinstance(code, int) else None


class BaseProvider(ABC):
    """Common behaviour of every generation back end.

    Subclasses implement ``_generate`` for one logical request; this class adds
    config validation, error classification and the rate-limit retry loop.
    """

    name: ClassVar[str]
    display_name: ClassVar[str]
    requires_api_key: ClassVar[bool] = True
    default_model: ClassVar[str]
    api_key_env_var: ClassVar[str | None] = None
    retry_on_rate_limit: ClassVar[bool] = True

    def __init__(self, *, sleep: SleepFn = time.sleep, max_retries: int = MAX_RETRIES) -> None:
        self._sleep = sleep
        self.max_retries = max_retries

    def validate_config(self, config: ProviderConfig) -> None:
        """Check ``config`` before any network activity.

        Raises:
            ConfigurationError: naming the first violated constraint.
        """
        if self.requires_api_key and not config.api_key:
            msg = (
                f"{self.display_name} requires an API key. "
                f"Please set the {self.api_key_env_var} environment variable."
            )
            raise ConfigurationError(message=msg, field="api_key")
        if not config.model:
            raise ConfigurationError(message="Model is required for LLM generation", field="model")
        if config.max_tokens <= 0:
            raise ConfigurationError(message="max_tokens must be a positive number", field="max_tokens")
        if not 0 <= config.temperature <= 2:  # noqa: PLR2004
            raise ConfigurationError(message="temperature must be between 0 and 2", field="temperature")

    @abstractmethod
    def available_models(self) -> list[str]:
        """Static catalogue of models known to work with this provider."""

    @abstractmethod
    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        """Perform one request against the back end; raise the native error on failure."""

    def generate_response(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        """Generate a completion for ``messages``.

        Rate-limited attempts are retried up to ``max_retries`` times, waiting
        2 s, 4 s, then 8 s. Other failures are raised at once.

        Raises:
            ConfigurationError: if ``config`` is invalid.
            ProviderError: classified failure from the back end.
        """
        self.validate_config(config)
        attempt = 0
        while True:
            try:
                return self._generate(messages, config)
            except RulefyError:
                raise
            except Exception as exc:
                category = self.classify_error(exc)
                if category is ErrorCategory.RATE_LIMIT and self.retry_on_rate_limit and attempt < self.max_retries:
                    delay = RETRY_BASE_DELAY * 2**attempt
                    attempt += 1
                    logger.warning(
                        "rate_limited",
                        provider=self.name,
                        delay=delay,
                        attempt=attempt,
                        max_retries=self.max_retries,
                    )
                    self._sleep(delay)
                    continue
                raise self.wrap_error(exc, category) from exc

    def classify_error(self, exc: BaseException) -> ErrorCategory:
        """Sort a back-end failure into one of the reporting categories."""
        code = status_code_of(exc)
        if code in {401, 403}:
            return ErrorCategory.AUTHENTICATION
        if code == 429:  # noqa: PLR2004
            return ErrorCategory.RATE_LIMIT
        if code in {408, 504}:
            return ErrorCategory.TIMEOUT
        if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
            return ErrorCategory.TIMEOUT
        text = str(exc).lower()
        if any(marker in text for marker in _AUTH_MARKERS):
            return ErrorCategory.AUTHENTICATION
        if any(marker in text for marker in _RATE_LIMIT_MARKERS):
            return ErrorCategory.RATE_LIMIT
        if any(marker in text for marker in _TIMEOUT_MARKERS):
            return ErrorCategory.TIMEOUT
        if isinstance(exc, (ConnectionError, httpx.TransportError)):
            return ErrorCategory.NETWORK
        if any(marker in text for marker in _NETWORK_MARKERS):
            return ErrorCategory.NETWORK
        return ErrorCategory.PROVIDER

    def wrap_error(self, exc: BaseException, category: ErrorCategory) -> ProviderError:
        return ProviderError(
            message=str(exc) or type(exc).__name__,
            category=category,
            provider=self.name,
            display_name=self.display_name,
            status_code=status_code_of(exc),
        )

    def missing_content(self) -> ProviderError:
        return ProviderError(
            message=f"Unable to extract content from {self.display_name} response",
            provider=self.name,
            display_name=self.display_name,
        )

    @staticmethod
    def format_messages(messages: Sequence[Message]) -> list[dict[str, str]]:
        """OpenAI-style chat messages with trimmed content."""
        return [{"role": str(msg.role), "content": msg.content.strip()} for msg in messages]

    @staticmethod
    def split_system(messages: Sequence[Message]) -> tuple[str | None, list[Message]]:
        """Separate the system prompt from the conversation turns."""
        system = next((msg.content for msg in messages if msg.role is Role.SYSTEM), None)
        turns = [msg for msg in messages if msg.role is not Role.SYSTEM]
        return system, turns

    @staticmethod
    def usage_from(prompt_tokens: Any, completion_tokens: Any, total_tokens: Any = None) -> Usage:  # noqa: ANN401
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total_tokens or prompt + completion,
        )

    def info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "requires_api_key": self.requires_api_key,
            "default_model": self.default_model,
            "available_models": self.available_models(),
        }
