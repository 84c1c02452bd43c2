from __future__ import annotations

import httpx
import pytest

from rulefy.config import ErrorCategory, Message, ProviderConfig, Role
from rulefy.exceptions import ConfigurationError, ProviderError
from rulefy.providers.base import BaseProvider, status_code_of


class StatusError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


MESSAGES = [Message(role=Role.SYSTEM, content="sys"), Message(role=Role.USER, content="hi")]


@pytest.mark.unit
def test_rate_limit_is_retried_with_exponential_backoff(scripted_provider, scripted_config, sleep_recorder) -> None:
    scripted_provider.replies = [StatusError("slow down", 429), StatusError("slow down", 429), "done"]

    result = scripted_provider.generate_response(MESSAGES, scripted_config)

    assert result.content == "done"
    assert sleep_recorder.delays == [2.0, 4.0]
    assert len(scripted_provider.calls) == 3


@pytest.mark.unit
def test_rate_limit_gives_up_after_three_retries(scripted_provider, scripted_config, sleep_recorder) -> None:
    scripted_provider.replies = [StatusError("Too Many Requests", 429)] * 4

    with pytest.raises(ProviderError) as exc_info:
        scripted_provider.generate_response(MESSAGES, scripted_config)

    assert exc_info.value.category is ErrorCategory.RATE_LIMIT
    assert exc_info.value.status_code == 429
    assert sleep_recorder.delays == [2.0, 4.0, 8.0]
    assert str(exc_info.value).startswith("Rate limit exceeded: ")


@pytest.mark.unit
@pytest.mark.parametrize(
    ("error", "category"),
    [
        (StatusError("bad key", 401), ErrorCategory.AUTHENTICATION),
        (RuntimeError("Invalid API key provided"), ErrorCategory.AUTHENTICATION),
        (TimeoutError("read timed out"), ErrorCategory.TIMEOUT),
        (ConnectionError("reset by peer"), ErrorCategory.NETWORK),
        (RuntimeError("model exploded"), ErrorCategory.PROVIDER),
    ],
)
def test_other_errors_are_never_retried(
    scripted_provider,
    scripted_config,
    sleep_recorder,
    error: Exception,
    category: ErrorCategory,
) -> None:
    scripted_provider.replies = [error, "unused"]

    with pytest.raises(ProviderError) as exc_info:
        scripted_provider.generate_response(MESSAGES, scripted_config)

    assert exc_info.value.category is category
    assert exc_info.value.__cause__ is error
    assert sleep_recorder.delays == []
    assert len(scripted_provider.calls) == 1


@pytest.mark.unit
def test_retry_can_be_disabled_per_provider(scripted_provider, scripted_config, sleep_recorder, mocker) -> None:
    mocker.patch.object(type(scripted_provider), "retry_on_rate_limit", False)
    scripted_provider.replies = [StatusError("quota", 429), "unused"]

    with pytest.raises(ProviderError):
        scripted_provider.generate_response(MESSAGES, scripted_config)

    assert sleep_recorder.delays == []


@pytest.mark.unit
def test_provider_error_string_uses_display_name_for_generic_failures(scripted_provider, scripted_config) -> None:
    scripted_provider.replies = [RuntimeError("boom")]

    with pytest.raises(ProviderError) as exc_info:
        scripted_provider.generate_response(MESSAGES, scripted_config)

    assert str(exc_info.value) == "Scripted API error: boom"
    assert exc_info.value.provider == "scripted"


@pytest.mark.unit
def test_classify_error_reads_httpx_status(scripted_provider) -> None:
    request = httpx.Request("POST", "http://localhost/v1/chat/completions")
    response = httpx.Response(504, request=request)
    error = httpx.HTTPStatusError("gateway", request=request, response=response)

    assert status_code_of(error) == 504
    assert scripted_provider.classify_error(error) is ErrorCategory.TIMEOUT
    assert scripted_provider.classify_error(httpx.ConnectError("refused")) is ErrorCategory.NETWORK
    assert scripted_provider.classify_error(httpx.ReadTimeout("slow")) is ErrorCategory.TIMEOUT


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"model": ""}, "model"),
        ({"max_tokens": 0}, "max_tokens"),
        ({"max_tokens": -1}, "max_tokens"),
        ({"temperature": -0.0001}, "temperature"),
        ({"temperature": 2.0001}, "temperature"),
    ],
)
def test_validate_config_rejects_invalid_values(scripted_provider, overrides: dict, field: str) -> None:
    config = ProviderConfig(model="scripted-1").model_copy(update=overrides)

    with pytest.raises(ConfigurationError) as exc_info:
        scripted_provider.validate_config(config)

    assert exc_info.value.field == field


@pytest.mark.unit
@pytest.mark.parametrize("temperature", [0.0, 2.0])
def test_validate_config_accepts_temperature_bounds(scripted_provider, temperature: float) -> None:
    scripted_provider.validate_config(ProviderConfig(model="scripted-1", temperature=temperature))


@pytest.mark.unit
def test_validate_config_accepts_one_max_token(scripted_provider) -> None:
    scripted_provider.validate_config(ProviderConfig(model="scripted-1", max_tokens=1))


@pytest.mark.unit
def test_invalid_config_fails_before_any_request(scripted_provider) -> None:
    scripted_provider.replies = ["unused"]

    with pytest.raises(ConfigurationError):
        scripted_provider.generate_response(MESSAGES, ProviderConfig(model="scripted-1", max_tokens=0))

    assert scripted_provider.calls == []


@pytest.mark.unit
def test_missing_api_key_names_environment_variable() -> None:
    class KeyedProvider(BaseProvider):
        name = "keyed"
        display_name = "Keyed"
        default_model = "k-1"
        api_key_env_var = "KEYED_API_KEY"

        def available_models(self) -> list[str]:
            return ["k-1"]

        def _generate(self, messages, config):
            raise AssertionError

    with pytest.raises(ConfigurationError) as exc_info:
        KeyedProvider().validate_config(ProviderConfig(model="k-1"))

    assert exc_info.value.field == "api_key"
    assert "KEYED_API_KEY" in str(exc_info.value)


@pytest.mark.unit
def test_format_messages_trims_content() -> None:
    messages = [Message(role=Role.USER, content="  hello \n")]

    assert BaseProvider.format_messages(messages) == [{"role": "user", "content": "hello"}]


@pytest.mark.unit
def test_usage_from_defaults_missing_counts_to_zero() -> None:
    usage = BaseProvider.usage_from(None, 7)

    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (0, 7, 7)
