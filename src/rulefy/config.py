from __future__ import annotations

from enum import StrEnum, auto

from pydantic import BaseModel, ConfigDict, Field, computed_field

DEFAULT_CHUNK_SIZE = 100_000
DEFAULT_CHUNK_DELAY_MS = 5_000
DEFAULT_MAX_TOKENS = 8_000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT = 60.0
COST_PER_TOKEN = 3e-6  # 3 USD per million input tokens
ENCODING_NAME = "cl100k_base"


class OutputDialect(StrEnum):
    """Output format family of the generated rules file.

    The dialect only selects the delimiter tag, the prompt wording and the
    output file name; chunking and provider mechanics are the same for all.
    """

    CURSOR = auto()
    CLINE = auto()
    ROO = auto()

    @property
    def tag(self) -> str:
        """Name of the tag pair wrapping the generated document."""
        return _DIALECT_TAGS[self]

    @property
    def file_label(self) -> str:
        """File the dialect is known by, e.g. ``.cursorrules``."""
        return f".{self.tag}"

    @property
    def display_name(self) -> str:
        return _DIALECT_DISPLAY[self]

    @property
    def guidelines_file(self) -> str:
        """Name of the bundled guideline template for the dialect."""
        return _DIALECT_GUIDELINES[self]

    @property
    def content_format(self) -> str:
        return "YAML" if self is OutputDialect.ROO else "Markdown"

    def output_filename(self, repo_name: str) -> str:
        """File name the final document is written to."""
        if self is OutputDialect.CURSOR:
            return f"{repo_name}.rules.mdc"
        return self.file_label


_DIALECT_TAGS: dict[OutputDialect, str] = {
    OutputDialect.CURSOR: "cursorrules",
    OutputDialect.CLINE: "clinerules",
    OutputDialect.ROO: "roomodes",
}

_DIALECT_DISPLAY: dict[OutputDialect, str] = {
    OutputDialect.CURSOR: "Cursor rules",
    OutputDialect.CLINE: "Cline rules",
    OutputDialect.ROO: "Roo Custom Modes",
}

_DIALECT_GUIDELINES: dict[OutputDialect, str] = {
    OutputDialect.CURSOR: "cursor_mdc.md",
    OutputDialect.CLINE: "cline_rules.md",
    OutputDialect.ROO: "roo_modes.md",
}


class Role(StrEnum):
    SYSTEM = auto()
    USER = auto()
    ASSISTANT = auto()


class ErrorCategory(StrEnum):
    """Classification of provider failures for reporting and retry decisions."""

    AUTHENTICATION = auto()
    RATE_LIMIT = auto()
    TIMEOUT = auto()
    NETWORK = auto()
    PROVIDER = auto()


class Message(BaseModel):
    """One entry of the ordered message list sent to a provider."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class Usage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    """Text produced by one provider call, with token usage when reported."""

    model_config = ConfigDict(frozen=True)

    content: str
    usage: Usage | None = None
    model: str
    provider: str


class ProviderConfig(BaseModel):
    """Settings for a provider call.

    No constraints are enforced here: ``BaseProvider.validate_config`` checks the
    values before any network activity and names the violated constraint.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(default="", description="Model identifier.")
    api_key: str | None = Field(default=None, description="API key, when the provider needs one.")
    base_url: str | None = Field(default=None, description="Base URL of an OpenAI-compatible server.")
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, description="Maximum tokens to generate.")
    temperature: float = Field(default=DEFAULT_TEMPERATURE, description="Sampling temperature.")
    region: str | None = Field(default=None, description="Cloud region (Bedrock).")
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Request timeout in seconds.")


class Chunk(BaseModel):
    """A contiguous, non-overlapping token slice of the input document.

    Attributes:
        text: Decoded text of the slice.
        index: Zero-based position; index 0 is always processed first.
        token_count: Number of tokens in the slice.
        total_chunks: Number of chunks the document was split into.
        start: Offset of the first token in the full token stream.
        end: Offset one past the last token.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    index: int = Field(..., ge=0)
    token_count: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    start: int = Field(default=0, ge=0)
    end: int = Field(default=0, ge=0)

    @computed_field
    @property
    def is_first(self) -> bool:
        return self.index == 0

    @computed_field
    @property
    def is_last(self) -> bool:
        return self.index == self.total_chunks - 1


class CostEstimate(BaseModel):
    """Sizing of a run, shown to the operator before any provider call."""

    model_config = ConfigDict(frozen=True)

    total_tokens: int
    chunk_size: int
    total_chunks: int
    cost_per_token: float = COST_PER_TOKEN

    @computed_field
    @property
    def estimated_cost(self) -> float:
        return self.total_tokens * self.cost_per_token


class SummaryRequest(BaseModel):
    """Per-run prompt inputs shared by every chunk."""

    model_config = ConfigDict(frozen=True)

    guidelines: str = Field(..., description="Guideline/template text for the dialect.")
    dialect: OutputDialect = Field(default=OutputDialect.CURSOR, description="Output dialect.")
    description: str | None = Field(default=None, description="What the rules should focus on.")
    rule_type: str | None = Field(default=None, description="Rule type hint (auto, manual, agent, always).")
