from __future__ import annotations

import math
import re
from functools import cache
from typing import TYPE_CHECKING, Protocol

import tiktoken

from rulefy.config import COST_PER_TOKEN, DEFAULT_CHUNK_SIZE, ENCODING_NAME, Chunk, CostEstimate
from rulefy.exceptions import ConfigurationError, OperationCancelledError
from rulefy.logging import logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

    ConfirmFn = Callable[[CostEstimate], bool]

_PROBLEM_TOKENS = re.compile(r"<\|endoftext\|>|<\|end\|>|<\|start\|>|\x00|\ufffd")


class Encoding(Protocol):
    """The part of a tiktoken encoding the chunker relies on."""

    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


@cache
def get_encoding(name: str = ENCODING_NAME) -> tiktoken.Encoding:
    """Return the (cached) tiktoken encoding used to size documents."""
    return tiktoken.get_encoding(name)


def sanitize_text(text: str) -> str:
    """Strip special-token markers, null bytes and replacement characters.

    These sequences either make the tokenizer refuse the text or confuse the
    model; surrounding whitespace is trimmed as well.

    Args:
        text (str): the raw document text

    Returns:
        str: the cleaned text
    """
    return _PROBLEM_TOKENS.sub("", text).strip()


def calculate_chunk_count(total_tokens: int, chunk_size: int) -> int:
    """Number of chunks a document of ``total_tokens`` splits into.

    Raises:
        ConfigurationError: if ``chunk_size`` is not positive.
    """
    if chunk_size <= 0:
        raise ConfigurationError(message="chunk size must be a positive number of tokens", field="chunk_size")
    if total_tokens <= chunk_size:
        return 1
    return math.ceil(total_tokens / chunk_size)


def estimate_cost(total_tokens: int, chunk_size: int, cost_per_token: float = COST_PER_TOKEN) -> CostEstimate:
    """Build the sizing summary presented before processing starts."""
    return CostEstimate(
        total_tokens=total_tokens,
        chunk_size=chunk_size,
        total_chunks=calculate_chunk_count(total_tokens, chunk_size),
        cost_per_token=cost_per_token,
    )


def _encode(enc: Encoding, text: str) -> list[int]:
    if isinstance(enc, tiktoken.Encoding):
        # digests of tokenizer code can contain literal special-token strings
        return enc.encode(text, disallowed_special=())
    return enc.encode(text)


def iter_chunks(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    *,
    confirm: ConfirmFn,
    encoding: Encoding | None = None,
) -> Iterator[Chunk]:
    """Yield token-bounded chunks of ``text``, one at a time.

    The text is sanitized and tokenized once. Before the first chunk is
    produced, ``confirm`` receives the cost estimate; a falsy answer stops the
    run with ``OperationCancelledError`` before anything is sent to a provider.
    Chunks do not overlap and come in ascending index order. Each call
    re-tokenizes; the iterator cannot be restarted.

    Args:
        text (str): the document to split
        chunk_size (int): maximum number of tokens per chunk
        confirm (ConfirmFn): operator gate called once with the cost estimate
        encoding (Encoding | None): tokenizer; defaults to tiktoken ``cl100k_base``

    Yields:
        Iterator[Chunk]: the chunks of the document

    Raises:
        ConfigurationError: if ``chunk_size`` is not positive.
        OperationCancelledError: if ``confirm`` declines.
    """
    enc = encoding or get_encoding()
    tokens = _encode(enc, sanitize_text(text))
    total_tokens = len(tokens)
    estimate = estimate_cost(total_tokens, chunk_size)

    logger.info(
        "chunk_plan",
        document_tokens=total_tokens,
        chunk_size=chunk_size,
        total_chunks=estimate.total_chunks,
        estimated_cost=round(estimate.estimated_cost, 4),
    )
    if not confirm(estimate):
        logger.info("chunking_cancelled")
        raise OperationCancelledError

    if not tokens:
        yield Chunk(text="", index=0, token_count=0, total_chunks=1, start=0, end=0)
        return

    # a boundary can fall inside a multi-byte character; decode then yields U+FFFD at the cut
    for index, start in enumerate(range(0, total_tokens, chunk_size)):
        piece = tokens[start : start + chunk_size]
        yield Chunk(
            text=enc.decode(piece),
            index=index,
            token_count=len(piece),
            total_chunks=estimate.total_chunks,
            start=start,
            end=start + len(piece),
        )
