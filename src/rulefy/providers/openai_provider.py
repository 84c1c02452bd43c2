from __future__ import annotations

from typing import TYPE_CHECKING, Any

import openai

from rulefy.config import GenerationResult, Usage
from rulefy.providers.base import BaseProvider, get_field

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import Message, ProviderConfig


def extract_chat_content(provider: BaseProvider, response: Any) -> str:  # noqa: ANN401
    """Text of the first choice of a chat-completions response."""
    choices = get_field(response, "choices")
    if choices is None:
        raise provider.missing_content()
    if not choices:
        return ""
    return get_field(get_field(choices[0], "message"), "content") or ""


def extract_chat_usage(provider: BaseProvider, response: Any) -> Usage | None:  # noqa: ANN401
    usage = get_field(response, "usage")
    if usage is None:
        return None
    return provider.usage_from(
        get_field(usage, "prompt_tokens"),
        get_field(usage, "completion_tokens"),
        get_field(usage, "total_tokens"),
    )


class OpenAIProvider(BaseProvider):
    """OpenAI chat-completions API (roles embedded per message)."""

    name = "openai"
    display_name = "OpenAI"
    requires_api_key = True
    default_model = "gpt-4o"
    api_key_env_var = "OPENAI_API_KEY"

    def __init__(self, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self._clients: dict[tuple[str | None, str | None, float], openai.OpenAI] = {}

    def available_models(self) -> list[str]:
        return [
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4-turbo",
            "gpt-4",
            "gpt-3.5-turbo",
            "gpt-3.5-turbo-16k",
        ]

    def _client(self, config: ProviderConfig) -> openai.OpenAI:
        key = (config.api_key, config.base_url, config.timeout)
        if key not in self._clients:
            self._clients[key] = openai.OpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
                max_retries=0,
            )
        return self._clients[key]

    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        response = self._client(config).chat.completions.create(
            model=config.model,
            messages=self.format_messages(messages),
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
        return GenerationResult(
            content=extract_chat_content(self, response),
            usage=extract_chat_usage(self, response),
            model=config.model,
            provider=self.name,
        )
