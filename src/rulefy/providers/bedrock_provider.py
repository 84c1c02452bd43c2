"""AWS Bedrock back end.

Bedrock hosts models from several vendors that do not share a wire format,
so the model id prefix picks one of three payload dialects:

- chat: Anthropic-style system string plus message list (``anthropic.claude*``
  and any unknown id),
- instruct: a single prompt with ``[INST]`` instruction tags (``meta.llama*``,
  ``mistral.*``),
- plain: a single ``System:/Human:/Assistant:`` transcript (``amazon.titan*``,
  ``cohere.command*``).
"""

from __future__ import annotations

import json
from enum import StrEnum, auto
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from rulefy.config import ErrorCategory, GenerationResult, Role, Usage
from rulefy.logging import logger
from rulefy.providers.base import BaseProvider, get_field

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import Message, ProviderConfig

DEFAULT_REGION = "us-east-1"
ANTHROPIC_VERSION = "bedrock-2023-05-31"
TOP_P = 0.9

_THROTTLING_CODES = {"ThrottlingException", "TooManyRequestsException", "ServiceQuotaExceededException"}
_AUTH_CODES = {"AccessDeniedException", "UnrecognizedClientException", "ExpiredTokenException"}
_TIMEOUT_CODES = {"ModelTimeoutException"}


class PayloadDialect(StrEnum):
    CHAT = auto()
    INSTRUCT = auto()
    PLAIN = auto()


class ModelFamily(StrEnum):
    CLAUDE = auto()
    TITAN = auto()
    LLAMA = auto()
    MISTRAL = auto()
    COHERE = auto()

    @property
    def dialect(self) -> PayloadDialect:
        return _FAMILY_DIALECT[self]


_FAMILY_DIALECT: dict[ModelFamily, PayloadDialect] = {
    ModelFamily.CLAUDE: PayloadDialect.CHAT,
    ModelFamily.TITAN: PayloadDialect.PLAIN,
    ModelFamily.LLAMA: PayloadDialect.INSTRUCT,
    ModelFamily.MISTRAL: PayloadDialect.INSTRUCT,
    ModelFamily.COHERE: PayloadDialect.PLAIN,
}

# cross-region inference profiles prefix the model id with a geography
_INFERENCE_PROFILE_PREFIXES = ("us.", "eu.", "apac.")

_FAMILY_PREFIXES: list[tuple[str, ModelFamily]] = [
    ("anthropic.claude", ModelFamily.CLAUDE),
    ("amazon.titan", ModelFamily.TITAN),
    ("meta.llama", ModelFamily.LLAMA),
    ("mistral.", ModelFamily.MISTRAL),
    ("cohere.command", ModelFamily.COHERE),
]


def model_family(model_id: str) -> ModelFamily:
    """Model family for a Bedrock model id; unknown ids are treated as Claude."""
    bare = model_id
    if model_id.startswith(_INFERENCE_PROFILE_PREFIXES):
        bare = model_id.split(".", 1)[1]
    for prefix, family in _FAMILY_PREFIXES:
        if bare.startswith(prefix):
            return family
    return ModelFamily.CLAUDE


def plain_transcript(messages: Sequence[Message]) -> str:
    labels = {Role.SYSTEM: "System", Role.USER: "Human", Role.ASSISTANT: "Assistant"}
    return "".join(f"{labels[msg.role]}: {msg.content}\n\n" for msg in messages)


def instruct_prompt(messages: Sequence[Message]) -> str:
    """Render messages with Llama-2 style ``[INST]`` / ``<<SYS>>`` tags."""
    prompt = "<s>[INST] "
    for msg in messages:
        if msg.role is Role.SYSTEM:
            prompt += f"<<SYS>>\n{msg.content}\n<</SYS>>\n\n"
        elif msg.role is Role.USER:
            prompt += f"{msg.content} [/INST]"
        else:
            prompt += f" {msg.content} </s><s>[INST] "
    return prompt


def build_payload(messages: Sequence[Message], config: ProviderConfig) -> dict[str, Any]:
    """Request body for ``invoke_model`` in the dialect of ``config.model``."""
    family = model_family(config.model)
    if family is ModelFamily.CLAUDE:
        system = next((msg.content for msg in messages if msg.role is Role.SYSTEM), None)
        payload: dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "messages": [
                {"role": str(msg.role), "content": [{"type": "text", "text": msg.content}]}
                for msg in messages
                if msg.role is not Role.SYSTEM
            ],
        }
        if system:
            payload["system"] = system
        return payload
    if family is ModelFamily.TITAN:
        return {
            "inputText": plain_transcript(messages) + "Assistant:",
            "textGenerationConfig": {
                "maxTokenCount": config.max_tokens,
                "temperature": config.temperature,
                "topP": TOP_P,
                "stopSequences": [],
            },
        }
    if family is ModelFamily.LLAMA:
        return {
            "prompt": instruct_prompt(messages),
            "max_gen_len": config.max_tokens,
            "temperature": config.temperature,
            "top_p": TOP_P,
        }
    if family is ModelFamily.MISTRAL:
        return {
            "prompt": instruct_prompt(messages),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "top_p": TOP_P,
        }
    return {
        "prompt": plain_transcript(messages),
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "p": TOP_P,
        "stop_sequences": [],
    }


def _first(items: Any, name: str) -> Any:  # noqa: ANN401
    if isinstance(items, list) and items:
        return get_field(items[0], name)
    return None


class BedrockProvider(BaseProvider):
    """Models hosted on AWS Bedrock, reached through ``bedrock-runtime``.

    Credentials come from the standard AWS chain (environment, shared
    credentials file, SSO, instance role), so no API key is required.
    """

    name = "bedrock"
    display_name = "AWS Bedrock"
    requires_api_key = False
    default_model = "anthropic.claude-3-7-sonnet-20250219-v1:0"
    api_key_env_var = None

    def __init__(self, **kwargs: Any) -> None:  # noqa: ANN401
        super().__init__(**kwargs)
        self._clients: dict[tuple[str, float], Any] = {}

    def available_models(self) -> list[str]:
        return [
            "anthropic.claude-3-7-sonnet-20250219-v1:0",
            "anthropic.claude-3-5-sonnet-20241022-v2:0",
            "anthropic.claude-3-5-haiku-20241022-v1:0",
            "anthropic.claude-sonnet-4-20250514-v1:0",
            "anthropic.claude-opus-4-20250514-v1:0",
            "anthropic.claude-3-haiku-20240307-v1:0",
            "amazon.titan-text-express-v1",
            "amazon.titan-text-lite-v1",
            "meta.llama3-8b-instruct-v1:0",
            "meta.llama3-70b-instruct-v1:0",
            "mistral.mistral-7b-instruct-v0:2",
            "mistral.mixtral-8x7b-instruct-v0:1",
            "cohere.command-text-v14",
            "cohere.command-light-text-v14",
        ]

    def _client(self, config: ProviderConfig) -> Any:  # noqa: ANN401
        region = config.region or DEFAULT_REGION
        key = (region, config.timeout)
        if key not in self._clients:
            self._clients[key] = boto3.client(
                "bedrock-runtime",
                region_name=region,
                config=Config(read_timeout=config.timeout, retries={"total_max_attempts": 1}),
            )
        return self._clients[key]

    def list_remote_models(self, region: str | None = None) -> list[str]:
        """Active foundation models of the account, or ``[]`` when the call fails."""
        client = boto3.client("bedrock", region_name=region or DEFAULT_REGION)
        try:
            response = client.list_foundation_models()
        except (BotoCoreError, ClientError) as e:
            logger.warning("bedrock_list_models_failed", error=str(e))
            return []
        return [
            summary["modelId"]
            for summary in response.get("modelSummaries", [])
            if summary.get("modelId") and summary.get("modelLifecycle", {}).get("status") == "ACTIVE"
        ]

    def _generate(self, messages: Sequence[Message], config: ProviderConfig) -> GenerationResult:
        family = model_family(config.model)
        logger.info("bedrock_invoke", model=config.model, family=str(family), dialect=str(family.dialect))
        response = self._client(config).invoke_model(
            modelId=config.model,
            body=json.dumps(build_payload(messages, config)),
            contentType="application/json",
            accept="application/json",
        )
        body = self.read_body(response)
        return GenerationResult(
            content=self.extract_content(body),
            usage=self.extract_usage(body),
            model=config.model,
            provider=self.name,
        )

    def read_body(self, response: Any) -> dict[str, Any]:  # noqa: ANN401
        raw = get_field(response, "body")
        if raw is None:
            raise self.missing_content()
        if hasattr(raw, "read"):
            raw = raw.read()
        return json.loads(raw)

    def extract_content(self, body: dict[str, Any]) -> str:
        if isinstance(body.get("content"), list):
            return _first(body["content"], "text") or ""
        if isinstance(body.get("results"), list):
            return _first(body["results"], "outputText") or ""
        if "generation" in body:
            return body["generation"] or ""
        if isinstance(body.get("outputs"), list):
            return _first(body["outputs"], "text") or ""
        if isinstance(body.get("generations"), list):
            return _first(body["generations"], "text") or ""
        if "text" in body:
            return body["text"] or ""
        raise self.missing_content()

    def extract_usage(self, body: dict[str, Any]) -> Usage | None:
        if isinstance(body.get("usage"), dict):
            usage = body["usage"]
            return self.usage_from(usage.get("input_tokens"), usage.get("output_tokens"))
        if "prompt_token_count" in body:
            return self.usage_from(body.get("prompt_token_count"), body.get("generation_token_count"))
        if "inputTextTokenCount" in body:
            return self.usage_from(body.get("inputTextTokenCount"), _first(body.get("results"), "tokenCount"))
        return None

    def classify_error(self, exc: BaseException) -> ErrorCategory:
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _THROTTLING_CODES:
                return ErrorCategory.RATE_LIMIT
            if code in _AUTH_CODES:
                return ErrorCategory.AUTHENTICATION
            if code in _TIMEOUT_CODES:
                return ErrorCategory.TIMEOUT
        if isinstance(exc, (ReadTimeoutError, ConnectTimeoutError)):
            return ErrorCategory.TIMEOUT
        if isinstance(exc, EndpointConnectionError):
            return ErrorCategory.NETWORK
        return super().classify_error(exc)
