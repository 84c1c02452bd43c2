from __future__ import annotations

from pathlib import Path

from dotenv import find_dotenv
from pydantic import BaseModel, ConfigDict, Field

from rulefy.config import DEFAULT_CHUNK_DELAY_MS, DEFAULT_CHUNK_SIZE, OutputDialect
from rulefy.providers.registry import DEFAULT_PROVIDER

ENV_FILE = find_dotenv(usecwd=True)


class Settings(BaseModel):
    """Options of one rulefy run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    repo_path: str = Field(default=".", description="Local repository path, owner/repo or GitHub URL.")

    provider: str = Field(default=DEFAULT_PROVIDER, description="LLM provider name.")
    model: str | None = Field(default=None, description="Model identifier; provider default when unset.")
    api_key: str | None = Field(default=None, description="API key; read from the environment when unset.")
    base_url: str | None = Field(default=None, description="Base URL of an OpenAI-compatible server.")
    max_tokens: int | None = Field(default=None, description="Maximum tokens to generate.")
    temperature: float | None = Field(default=None, description="Sampling temperature.")
    region: str | None = Field(default=None, description="AWS region for Bedrock.")

    description: str | None = Field(default=None, description="What the rules should focus on.")
    rule_type: str | None = Field(default=None, description="Rule type (auto, manual, agent, always).")
    format: OutputDialect = Field(default=OutputDialect.CURSOR, description="Output format.")

    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, description="Tokens per chunk.")
    chunk_delay: int = Field(default=DEFAULT_CHUNK_DELAY_MS, ge=0, description="Delay between chunks in ms.")

    repomix_file: Path | None = Field(default=None, description="Prepared repository digest.")
    guidelines: Path | None = Field(default=None, description="Guideline file replacing the bundled template.")
    output_dir: Path | None = Field(default=None, description="Output directory; <repo>-output when unset.")
    extra_options: list[str] = Field(default_factory=list, description="Options forwarded to repomix.")

    yes: bool = Field(default=False, description="Skip the cost confirmation.")
    list_providers: bool = Field(default=False, description="List providers and exit.")
    log_file: str = Field(default="", description="Log file path.")

    def provider_overrides(self) -> dict[str, object]:
        """Provider settings given on the command line, unset ones as ``None``."""
        return {
            "model": self.model,
            "api_key": self.api_key,
            "base_url": self.base_url,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "region": self.region,
        }
