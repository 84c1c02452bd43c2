from __future__ import annotations

from typing import TYPE_CHECKING, Any

import anthropic

from rulefy.config import GenerationResult, Role, Usage
from rulefy.exceptions import ConfigurationError
from rulefy.providers.base import BaseProvider, get_field

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import Message, ProviderConfig


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API.

    The API takes the system prompt separately and a list of user/assistant
    turns that must end with a user turn.
    """

    name = "anthropic"
    display_name = "Anthropic Claude"
    requires_api_key = True
    default_model = "claude-3-5-sonnet-20241022"
    api_key_env_var = "ANTHROPIC_API_KEY"

    def __init__(self, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self._clients: dict[tuple[str | None, str | None, float], anthropic.Anthropic] = {}

    def available_models(self) -> list[str]:
        return [
            "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-20241022",
            "claude-3-opus-20240229",
            "claude-3-sonnet-20240229",
            "claude-3-haiku-20240307",
        ]

    def _client(self, config: ProviderConfig) -> anthropic.Anthropic:
        key = (config.api_key, config.base_url, config.timeout)
        if key not in self._clients:
            # retries are handled by generate_response
            self._clients[key] = anthropic.Anthropic(
                api_key=config.api_key,
                base_url=config.base_url,
                timeout=config.timeout,
                max_retries=0,
            )
        return self._clients[key]

    def build_request(self, messages: Sequence[Message], config: ProviderConfig) -> dict[str, Any]:
        """Shape ``messages`` into keyword arguments for ``messages.create``.

        Raises:
            ConfigurationError: if the conversation does not end with a user turn.
        """
        system, turns = self.split_system(messages)
        if not turns or turns[-1].role is not Role.USER:
            raise ConfigurationError(
                message=f"{self.display_name} expects the last message to come from the user",
                field="messages",
            )
        request: dict[str, Any] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [{"role": str(msg.role), "content": msg.content} for msg in turns],
        }
        if system:
            request["system"] = system
        return request

    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        request = self.build_request(messages, config)
        response = self._client(config).messages.create(**request)
        return GenerationResult(
            content=self.extract_content(response),
            usage=self.extract_usage(response),
            model=config.model,
            provider=self.name,
        )

    def extract_content(self, response: Any) -> str:  # noqa: ANN401
        blocks = get_field(response, "content")
        if blocks is None:
            raise self.missing_content()
        for block in blocks:
            text = get_field(block, "text")
            if text is not None:
                return text
        return ""

    def extract_usage(self, response: Any) -> Usage | None:  # noqa: ANN401
        usage = get_field(response, "usage")
        if usage is None:
            return None
        return self.usage_from(get_field(usage, "input_tokens"), get_field(usage, "output_tokens"))
