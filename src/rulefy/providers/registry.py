from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from rulefy.config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ProviderConfig
from rulefy.exceptions import ProviderNotFoundError
from rulefy.providers.anthropic_provider import AnthropicProvider
from rulefy.providers.bedrock_provider import DEFAULT_REGION, BedrockProvider
from rulefy.providers.local_provider import DEFAULT_BASE_URL, LocalProvider
from rulefy.providers.openai_provider import OpenAIProvider

if TYPE_CHECKING:
    from rulefy.providers.base import BaseProvider

DEFAULT_PROVIDER = "anthropic"

PROVIDER_CLASSES: tuple[type[BaseProvider], ...] = (
    AnthropicProvider,
    OpenAIProvider,
    LocalProvider,
    BedrockProvider,
)


class ProviderRegistry:
    """Name-keyed set of provider instances.

    Providers are registered in a fixed order; ``register`` replaces any
    provider already known under the same name.
    """

    def __init__(self, providers: list[BaseProvider] | None = None, **provider_kwargs: Any) -> None:  # noqa: ANN401
        self._providers: dict[str, BaseProvider] = {}
        if providers is None:
            providers = [cls(**provider_kwargs) for cls in PROVIDER_CLASSES]
        for provider in providers:
            self.register(provider)

    def register(self, provider: BaseProvider) -> None:
        self._providers[provider.name] = provider

    def get(self, name: str) -> BaseProvider:
        """Return the provider registered as ``name``.

        Raises:
            ProviderNotFoundError: listing the registered names.
        """
        try:
            return self._providers[name]
        except KeyError:
            raise ProviderNotFoundError(name=name, available=tuple(self.names())) from None

    def names(self) -> list[str]:
        return list(self._providers)

    def providers(self) -> list[BaseProvider]:
        return list(self._providers.values())

    def info(self) -> list[dict[str, Any]]:
        return [provider.info() for provider in self.providers()]

    def api_key_env_var(self, name: str) -> str | None:
        return self.get(name).api_key_env_var

    def default_config(self, name: str) -> ProviderConfig:
        """Defaults for ``name``: its default model, token/temperature defaults and env API key."""
        provider = self.get(name)
        env_var = provider.api_key_env_var
        values: dict[str, Any] = {
            "model": provider.default_model,
            "api_key": os.environ.get(env_var) if env_var else None,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "temperature": DEFAULT_TEMPERATURE,
        }
        if isinstance(provider, LocalProvider):
            values["base_url"] = DEFAULT_BASE_URL
        if isinstance(provider, BedrockProvider):
            values["region"] = DEFAULT_REGION
        return ProviderConfig(**values)

    def build_config(self, name: str, **overrides: Any) -> ProviderConfig:  # noqa: ANN401
        """Merge the non-``None`` ``overrides`` onto the defaults of ``name``."""
        defaults = self.default_config(name)
        return defaults.model_copy(update={k: v for k, v in overrides.items() if v is not None})
