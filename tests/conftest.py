from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from rulefy.config import GenerationResult, ProviderConfig, Usage
from rulefy.providers.base import BaseProvider

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import Message


class CharEncoding:
    """One token per character, so token arithmetic is easy to follow."""

    def encode(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(chr(t) for t in tokens)


class ScriptedProvider(BaseProvider):
    """Provider returning canned replies (or raising canned errors) in order."""

    name = "scripted"
    display_name = "Scripted"
    requires_api_key = False
    default_model = "scripted-1"

    def __init__(self, replies: Sequence[Any] = (), **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.replies = list(replies)
        self.calls: list[list[Message]] = []

    def available_models(self) -> list[str]:
        return [self.default_model]

    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return GenerationResult(
            content=reply,
            usage=Usage(prompt_tokens=1, completion_tokens=1, total_tokens=2),
            model=config.model,
            provider=self.name,
        )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def char_encoding() -> CharEncoding:
    return CharEncoding()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def scripted_provider(sleep_recorder: SleepRecorder) -> ScriptedProvider:
    return ScriptedProvider(sleep=sleep_recorder)


@pytest.fixture
def scripted_config() -> ProviderConfig:
    return ProviderConfig(model="scripted-1")


@pytest.fixture
def api_config() -> ProviderConfig:
    return ProviderConfig(model="test-model", api_key="sk-test")
