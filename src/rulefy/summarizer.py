"""Progressive summarization of a chunked document into a rules file.

Chunk 0 asks the model to write a complete draft; every later chunk sends the
previous draft back together with the new chunk and asks for a revised,
complete document. Only the response to the last chunk is unwrapped from its
delimiter tags.
"""

from __future__ import annotations

import dataclasses
import re
import time
from typing import TYPE_CHECKING

from rulefy.chunking import iter_chunks
from rulefy.config import DEFAULT_CHUNK_DELAY_MS, DEFAULT_CHUNK_SIZE, Message, OutputDialect, Role
from rulefy.exceptions import ConfigurationError, ExtractionError, ProviderError
from rulefy.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from rulefy.chunking import ConfirmFn, Encoding
    from rulefy.config import Chunk, GenerationResult, ProviderConfig, SummaryRequest
    from rulefy.providers.base import BaseProvider

    ChunkCallback = Callable[[Chunk, str, GenerationResult], None]

_SYSTEM_PROMPTS: dict[OutputDialect, str] = {
    OutputDialect.CURSOR: (
        "You are an expert AI system designed to analyze code repositories and generate Cursor AI rules. "
        "Your task is to create a .cursorrules file based on the provided repository content and guidelines."
    ),
    OutputDialect.CLINE: (
        "You are an expert AI system designed to analyze code repositories and generate Cline rules. "
        "Your task is to create a .clinerules file based on the provided repository content and guidelines."
    ),
    OutputDialect.ROO: (
        "You are an expert AI system designed to analyze code repositories and generate Roo Custom Modes. "
        "Your task is to create a .roomodes YAML configuration file based on the provided repository content "
        "and guidelines."
    ),
}

_CREATE_ANALYSIS = """Analyze the repository content and structure, considering:
   - Main technologies, frameworks, and languages used
   - Coding patterns, naming conventions, and architectural decisions
   - Overall codebase structure including key directories and file types
   - Project-specific practices and testing guidelines
   - Guidelines and standards documented in comments or markdown files by developers

Present your analysis inside <repository_analysis> tags."""

_UPDATE_ANALYSIS = """Analyze this new chunk for:
   - New technologies, frameworks, or languages not previously covered
   - Additional coding patterns, naming conventions, or architectural decisions
   - Further insights into codebase structure
   - Project-specific practices and testing guidelines
   - Guidelines and standards documented in comments or markdown files by developers

Present your analysis inside <new_insights> tags."""


def system_prompt(dialect: OutputDialect) -> str:
    return _SYSTEM_PROMPTS[dialect]


def _output_type(dialect: OutputDialect) -> str:
    return f"{dialect.display_name} ({dialect.file_label})"


def _numbered(steps: list[str]) -> str:
    return "\n\n".join(f"{number}. {step}" for number, step in enumerate(steps, start=1))


def _request_bullets(request: SummaryRequest, *, rule_type_verb: str, description_verb: str) -> str:
    bullets = ""
    if request.rule_type:
        bullets += f'\n   - {rule_type_verb} the rule type: "{request.rule_type}"'
    if request.description:
        bullets += f'\n   - {description_verb} the specific request: "{request.description}"'
    return bullets


def _closing(dialect: OutputDialect, artifact: str) -> str:
    return (
        f"Include your final {artifact} content inside <{dialect.tag}> tags.\n"
        f"Be concise - the final {dialect.tag} file text must be not more than one page long."
    )


def build_create_prompt(chunk_text: str, request: SummaryRequest) -> str:
    """User prompt for the first chunk: analyze it and write a complete draft.

    Steps are numbered consecutively; the description and rule type steps only
    appear when the request carries them.
    """
    dialect = request.dialect
    artifact = f"{dialect.file_label} YAML configuration" if dialect is OutputDialect.ROO else dialect.file_label
    steps = [
        "First, carefully read and understand this codebase chunk:\n\n"
        f"<repository_chunk>\n{chunk_text}\n</repository_chunk>",
        f"Now, review these guidelines for creating effective {dialect.display_name}:\n\n"
        f"<guidelines>\n{request.guidelines}\n</guidelines>",
    ]
    if request.description:
        steps.append(f'I specifically want to create rules for: "{request.description}"')
    if request.rule_type:
        steps.append(f'The rule type should be: "{request.rule_type}"')
    steps.append(_CREATE_ANALYSIS)
    steps.append(
        f"Create a complete {artifact} file that:\n"
        "   - Is specific to this repository's structure and technologies\n"
        "   - Includes best practices and guidelines from code, comments, and documentation\n"
        "   - Organizes rules to match the codebase structure\n"
        "   - Is concise and actionable\n"
        "   - Includes testing best practices and guidelines\n"
        f"   - Uses valid {dialect.content_format} format"
        + _request_bullets(request, rule_type_verb="Follows", description_verb="Addresses")
    )
    kind = "YAML" if dialect is OutputDialect.ROO else "markdown"
    example = (
        f"<{dialect.tag}>\n...{kind} content of the {dialect.file_label} file, "
        f"following the guidelines and analysis...\n</{dialect.tag}>"
    )
    final_artifact = f"{dialect.tag} YAML" if dialect is OutputDialect.ROO else dialect.tag
    return (
        f"I need your help to create {_output_type(dialect)} for my project. Please follow this process:\n\n"
        f"{_numbered(steps)}\n\n"
        f"{_closing(dialect, final_artifact)}\n\n"
        f"Example structure:\n\n{example}"
    )


def build_update_prompt(draft: str, chunk_text: str, request: SummaryRequest) -> str:
    """User prompt for chunks after the first: revise ``draft`` with the new chunk.

    The draft is embedded verbatim; the model is asked to keep what is there,
    add only what the new chunk contributes and re-emit the whole document.
    """
    dialect = request.dialect
    artifact = f"{dialect.file_label} YAML" if dialect is OutputDialect.ROO else dialect.file_label
    steps = [
        f"Here is the current {dialect.file_label} file content:\n\n<current_rules>\n{draft}\n</current_rules>",
        f"Now, carefully review this new repository chunk:\n\n<repository_chunk>\n{chunk_text}\n</repository_chunk>",
        f"Review these guidelines for creating effective {dialect.display_name}:\n\n"
        f"<guidelines>\n{request.guidelines}\n</guidelines>",
    ]
    if request.description:
        steps.append(f'Remember, I specifically want to create rules for: "{request.description}"')
    if request.rule_type:
        steps.append(f'The rule type should be: "{request.rule_type}"')
    steps.append(_UPDATE_ANALYSIS)
    steps.append(
        "Update the existing rules by:\n"
        "   - Preserving all valuable information from existing rules\n"
        "   - Maintaining the same structure and organization\n"
        "   - Adding new information only for patterns not already covered\n"
        "   - Being specific about code structure and patterns\n"
        "   - Including testing-related insights and best practices\n"
        "   - Being concise but comprehensive"
        + _request_bullets(request, rule_type_verb="Following", description_verb="Addressing")
    )
    return (
        f"I need your help to update {_output_type(dialect)} based on a new chunk of my project:\n\n"
        f"{_numbered(steps)}\n\n"
        f"{_closing(dialect, f'updated {artifact}')}"
    )


def build_messages(draft: str, chunk: Chunk, request: SummaryRequest) -> list[Message]:
    """System and user messages for ``chunk``: create on the first chunk, update afterwards."""
    if chunk.is_first:
        user = build_create_prompt(chunk.text, request)
    else:
        user = build_update_prompt(draft, chunk.text, request)
    return [
        Message(role=Role.SYSTEM, content=system_prompt(request.dialect)),
        Message(role=Role.USER, content=user),
    ]


def process_chunk(
    draft: str,
    chunk: Chunk,
    *,
    provider: BaseProvider,
    config: ProviderConfig,
    request: SummaryRequest,
) -> tuple[str, GenerationResult]:
    """Advance the running draft by one chunk.

    Args:
        draft (str): the raw response to the previous chunk ("" before the first)
        chunk (Chunk): the chunk to fold into the draft
        provider (BaseProvider): back end that performs the generation
        config (ProviderConfig): provider settings
        request (SummaryRequest): guidelines, dialect and optional focus

    Returns:
        tuple[str, GenerationResult]: the new draft, which is the model's full raw
            response and replaces the previous one, and the result it came from

    Raises:
        ProviderError: with ``chunk_index`` set to the failing chunk.
    """
    messages = build_messages(draft, chunk, request)
    try:
        result = provider.generate_response(messages, config)
    except ProviderError as e:
        raise dataclasses.replace(e, chunk_index=chunk.index) from e
    return result.content, result


def extract_tagged_content(text: str, dialect: OutputDialect) -> str:
    """Return the stripped text between the first ``<tag>`` and the next ``</tag>``.

    Raises:
        ExtractionError: if ``text`` has no complete tag pair for ``dialect``.
    """
    tag = dialect.tag
    match = re.search(f"<{tag}>(.*?)</{tag}>", text, flags=re.DOTALL)
    if match is None:
        raise ExtractionError(tag=tag)
    return match.group(1).strip()


def summarize(
    text: str,
    request: SummaryRequest,
    *,
    provider: BaseProvider,
    config: ProviderConfig,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_delay_ms: int = DEFAULT_CHUNK_DELAY_MS,
    confirm: ConfirmFn,
    encoding: Encoding | None = None,
    sleep: Callable[[float], None] = time.sleep,
    on_chunk: ChunkCallback | None = None,
) -> str:
    """Run the whole document through the provider and return the extracted rules.

    Chunks are processed strictly in order, each one seeing the draft produced
    by the previous. ``chunk_delay_ms`` is waited between chunks, never after
    the last one. The configuration is validated before the confirmation gate.

    Args:
        text (str): the repository digest
        request (SummaryRequest): guidelines, dialect and optional focus
        provider (BaseProvider): generation back end
        config (ProviderConfig): provider settings
        chunk_size (int): maximum tokens per chunk
        chunk_delay_ms (int): pause between chunks, in milliseconds
        confirm (ConfirmFn): operator gate receiving the cost estimate
        encoding (Encoding | None): tokenizer override
        sleep (Callable[[float], None]): sleep function, in seconds
        on_chunk (ChunkCallback | None): called with each chunk, the new draft and the raw result

    Returns:
        str: the content of the dialect's tag pair in the final draft

    Raises:
        ConfigurationError: for an invalid config, chunk size or chunk delay.
        OperationCancelledError: if ``confirm`` declines.
        ProviderError: from the failing chunk, with ``chunk_index`` set.
        ExtractionError: if the final draft lacks the delimiter tags.
    """
    provider.validate_config(config)
    if chunk_delay_ms < 0:
        raise ConfigurationError(message="chunk delay must not be negative", field="chunk_delay")
    draft = ""
    for chunk in iter_chunks(text, chunk_size, confirm=confirm, encoding=encoding):
        logger.info(
            "chunk_start",
            chunk=chunk.index + 1,
            total_chunks=chunk.total_chunks,
            tokens=chunk.token_count,
            provider=provider.name,
            model=config.model,
        )
        started = time.perf_counter()
        draft, result = process_chunk(draft, chunk, provider=provider, config=config, request=request)
        logger.info(
            "chunk_done",
            chunk=chunk.index + 1,
            total_chunks=chunk.total_chunks,
            elapsed=round(time.perf_counter() - started, 2),
            usage=result.usage.model_dump() if result.usage else None,
        )
        if on_chunk is not None:
            on_chunk(chunk, draft, result)
        if not chunk.is_last:
            logger.info("chunk_delay", delay_ms=chunk_delay_ms)
            sleep(chunk_delay_ms / 1000)

    logger.info("summarize_complete", dialect=str(request.dialect))
    return extract_tagged_content(draft, request.dialect)
