"""Generation back ends behind one interface, looked up by name."""

from rulefy.providers.anthropic_provider import AnthropicProvider
from rulefy.providers.base import BaseProvider
from rulefy.providers.bedrock_provider import BedrockProvider
from rulefy.providers.local_provider import LocalProvider
from rulefy.providers.openai_provider import OpenAIProvider
from rulefy.providers.registry import DEFAULT_PROVIDER, ProviderRegistry

__all__ = [
    "DEFAULT_PROVIDER",
    "AnthropicProvider",
    "BaseProvider",
    "BedrockProvider",
    "LocalProvider",
    "OpenAIProvider",
    "ProviderRegistry",
]
