from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from rulefy.config import GenerationResult
from rulefy.exceptions import ConfigurationError
from rulefy.providers.base import BaseProvider
from rulefy.providers.openai_provider import extract_chat_content, extract_chat_usage

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import Message, ProviderConfig

DEFAULT_BASE_URL = "http://localhost:11434/v1"  # Ollama


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


class LocalProvider(BaseProvider):
    """Self-hosted OpenAI-compatible server (Ollama, LM Studio, vLLM, ...).

    Requests go straight to ``{base_url}/chat/completions`` with httpx; the API
    key is optional and sent as a bearer token when present.
    """

    name = "local"
    display_name = "Local (OpenAI-compatible)"
    requires_api_key = False
    default_model = "llama3.1"
    api_key_env_var = "LOCAL_API_KEY"

    def __init__(self, *, transport: httpx.BaseTransport | None = None, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self._transport = transport

    def available_models(self) -> list[str]:
        # the server is unknown until a request is made, so this list is static
        return [
            "llama3.1",
            "llama3.1:8b",
            "llama3.1:70b",
            "llama3.2",
            "llama3.2:3b",
            "codellama",
            "codellama:13b",
            "mistral",
            "mixtral:8x7b",
            "phi3",
            "gemma:7b",
            "qwen2.5",
            "deepseek-coder",
            "starcoder2",
        ]

    def validate_config(self, config: ProviderConfig) -> None:
        super().validate_config(config)
        if config.base_url and not is_valid_url(config.base_url):
            raise ConfigurationError(message="base_url must be a valid URL", field="base_url")

    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        payload = {
            "model": config.model,
            "messages": self.format_messages(messages),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "stream": False,
        }
        with httpx.Client(timeout=config.timeout, transport=self._transport) as client:
            response = client.post(f"{base_url}/chat/completions", json=payload, headers=headers)
            if response.is_error:
                msg = f"HTTP {response.status_code}: {response.text}"
                raise httpx.HTTPStatusError(msg, request=response.request, response=response)
            data = response.json()

        return GenerationResult(
            content=extract_chat_content(self, data),
            usage=extract_chat_usage(self, data),
            model=config.model,
            provider=self.name,
        )
