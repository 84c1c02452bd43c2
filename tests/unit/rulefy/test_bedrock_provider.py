from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from rulefy.config import ErrorCategory, Message, ProviderConfig, Role
from rulefy.exceptions import ProviderError
from rulefy.providers import bedrock_provider
from rulefy.providers.bedrock_provider import (
    BedrockProvider,
    ModelFamily,
    PayloadDialect,
    build_payload,
    model_family,
)

if TYPE_CHECKING:
    from pytest_mock import MockerFixture

MESSAGES = [Message(role=Role.SYSTEM, content="sys"), Message(role=Role.USER, content="hi")]


def client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "InvokeModel")


def invoke_response(body: dict) -> dict:
    return {"body": io.BytesIO(json.dumps(body).encode())}


@pytest.mark.unit
@pytest.mark.parametrize(
    ("model_id", "family", "dialect"),
    [
        ("anthropic.claude-3-7-sonnet-20250219-v1:0", ModelFamily.CLAUDE, PayloadDialect.CHAT),
        ("us.anthropic.claude-3-5-haiku-20241022-v1:0", ModelFamily.CLAUDE, PayloadDialect.CHAT),
        ("amazon.titan-text-express-v1", ModelFamily.TITAN, PayloadDialect.PLAIN),
        ("meta.llama3-70b-instruct-v1:0", ModelFamily.LLAMA, PayloadDialect.INSTRUCT),
        ("eu.meta.llama3-2-3b-instruct-v1:0", ModelFamily.LLAMA, PayloadDialect.INSTRUCT),
        ("mistral.mixtral-8x7b-instruct-v0:1", ModelFamily.MISTRAL, PayloadDialect.INSTRUCT),
        ("cohere.command-text-v14", ModelFamily.COHERE, PayloadDialect.PLAIN),
        ("ai21.j2-ultra-v1", ModelFamily.CLAUDE, PayloadDialect.CHAT),
    ],
)
def test_model_family_selects_payload_dialect(model_id: str, family: ModelFamily, dialect: PayloadDialect) -> None:
    assert model_family(model_id) is family
    assert family.dialect is dialect


@pytest.mark.unit
def test_claude_payload_keeps_system_apart() -> None:
    config = ProviderConfig(model="anthropic.claude-3-7-sonnet-20250219-v1:0", max_tokens=50)

    payload = build_payload(MESSAGES, config)

    assert payload["anthropic_version"] == "bedrock-2023-05-31"
    assert payload["system"] == "sys"
    assert payload["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hi"}]}]
    assert payload["max_tokens"] == 50


@pytest.mark.unit
def test_llama_payload_uses_instruction_tags() -> None:
    payload = build_payload(MESSAGES, ProviderConfig(model="meta.llama3-8b-instruct-v1:0", max_tokens=64))

    assert payload["prompt"] == "<s>[INST] <<SYS>>\nsys\n<</SYS>>\n\nhi [/INST]"
    assert payload["max_gen_len"] == 64


@pytest.mark.unit
def test_titan_payload_is_a_plain_transcript() -> None:
    payload = build_payload(MESSAGES, ProviderConfig(model="amazon.titan-text-lite-v1", max_tokens=64))

    assert payload["inputText"] == "System: sys\n\nHuman: hi\n\nAssistant:"
    assert payload["textGenerationConfig"]["maxTokenCount"] == 64


@pytest.mark.unit
def test_cohere_payload_is_a_plain_prompt() -> None:
    payload = build_payload(MESSAGES, ProviderConfig(model="cohere.command-light-text-v14"))

    assert payload["prompt"] == "System: sys\n\nHuman: hi\n\n"
    assert "p" in payload


@pytest.mark.unit
@pytest.mark.parametrize(
    ("body", "text"),
    [
        ({"content": [{"type": "text", "text": "claude"}], "usage": {"input_tokens": 1, "output_tokens": 2}}, "claude"),
        ({"results": [{"outputText": "titan", "tokenCount": 4}], "inputTextTokenCount": 3}, "titan"),
        ({"generation": "llama", "prompt_token_count": 5, "generation_token_count": 6}, "llama"),
        ({"outputs": [{"text": "mistral"}]}, "mistral"),
        ({"generations": [{"text": "cohere"}]}, "cohere"),
        ({"text": "plain"}, "plain"),
        ({"content": []}, ""),
    ],
)
def test_extract_content_per_family(body: dict, text: str) -> None:
    assert BedrockProvider().extract_content(body) == text


@pytest.mark.unit
def test_unrecognized_body_raises() -> None:
    with pytest.raises(ProviderError) as exc_info:
        BedrockProvider().extract_content({"unexpected": True})

    assert "Unable to extract content from AWS Bedrock response" in str(exc_info.value)


@pytest.mark.unit
def test_extract_usage_per_family() -> None:
    provider = BedrockProvider()

    titan = provider.extract_usage({"inputTextTokenCount": 3, "results": [{"tokenCount": 4}]})
    llama = provider.extract_usage({"prompt_token_count": 5, "generation_token_count": 6})

    assert titan is not None
    assert titan.total_tokens == 7
    assert llama is not None
    assert llama.total_tokens == 11
    assert provider.extract_usage({"outputs": []}) is None


@pytest.mark.unit
def test_generate_response_invokes_model(mocker: MockerFixture) -> None:
    provider = BedrockProvider()
    client = mocker.MagicMock()
    client.invoke_model.return_value = invoke_response(
        {
            "content": [{"type": "text", "text": "<roomodes>x</roomodes>"}],
            "usage": {"input_tokens": 9, "output_tokens": 1},
        },
    )
    mocker.patch.object(provider, "_client", return_value=client)
    config = ProviderConfig(model="anthropic.claude-3-7-sonnet-20250219-v1:0", region="eu-west-1")

    result = provider.generate_response(MESSAGES, config)

    assert result.content == "<roomodes>x</roomodes>"
    assert result.usage is not None
    assert result.usage.total_tokens == 10
    kwargs = client.invoke_model.call_args.kwargs
    assert kwargs["modelId"] == config.model
    assert json.loads(kwargs["body"])["system"] == "sys"


@pytest.mark.unit
def test_throttling_is_retried(mocker: MockerFixture) -> None:
    delays: list[float] = []
    provider = BedrockProvider(sleep=delays.append)
    client = mocker.MagicMock()
    client.invoke_model.side_effect = [client_error("ThrottlingException"), invoke_response({"generation": "ok"})]
    mocker.patch.object(provider, "_client", return_value=client)

    result = provider.generate_response(MESSAGES, ProviderConfig(model="meta.llama3-8b-instruct-v1:0"))

    assert result.content == "ok"
    assert delays == [2.0]


@pytest.mark.unit
def test_classify_error_maps_botocore_failures() -> None:
    provider = BedrockProvider()

    assert provider.classify_error(client_error("AccessDeniedException")) is ErrorCategory.AUTHENTICATION
    assert provider.classify_error(client_error("ModelTimeoutException")) is ErrorCategory.TIMEOUT
    assert provider.classify_error(client_error("ValidationException")) is ErrorCategory.PROVIDER
    assert provider.classify_error(ReadTimeoutError(endpoint_url="https://bedrock")) is ErrorCategory.TIMEOUT
    assert provider.classify_error(EndpointConnectionError(endpoint_url="https://bedrock")) is ErrorCategory.NETWORK


@pytest.mark.unit
def test_no_api_key_required() -> None:
    BedrockProvider().validate_config(ProviderConfig(model="anthropic.claude-3-7-sonnet-20250219-v1:0"))


@pytest.mark.unit
def test_list_remote_models_keeps_active_models(mocker: MockerFixture) -> None:
    client = mocker.MagicMock()
    client.list_foundation_models.return_value = {
        "modelSummaries": [
            {"modelId": "anthropic.claude-3-haiku-20240307-v1:0", "modelLifecycle": {"status": "ACTIVE"}},
            {"modelId": "anthropic.claude-v2", "modelLifecycle": {"status": "LEGACY"}},
        ],
    }
    factory = mocker.patch.object(bedrock_provider.boto3, "client", return_value=client)

    models = BedrockProvider().list_remote_models("us-west-2")

    assert models == ["anthropic.claude-3-haiku-20240307-v1:0"]
    factory.assert_called_once_with("bedrock", region_name="us-west-2")


@pytest.mark.unit
def test_list_remote_models_returns_empty_on_failure(mocker: MockerFixture) -> None:
    client = mocker.MagicMock()
    client.list_foundation_models.side_effect = client_error("AccessDeniedException")
    mocker.patch.object(bedrock_provider.boto3, "client", return_value=client)

    assert BedrockProvider().list_remote_models() == []
