"""
rulefy: turn a repository into AI-assistant rules.

Overview
--------
The repository is flattened into one text digest (with repomix, or the
built-in digest as a fallback), split into token-bounded chunks and fed to an
LLM one chunk at a time. Each chunk refines the draft written for the previous
ones; the final draft is unwrapped from its delimiter tags and written as:

- ``<repo>.rules.mdc`` for Cursor (``--format cursor``, default),
- ``.clinerules`` for Cline (``--format cline``),
- ``.roomodes`` for Roo Code custom modes (``--format roo``).

Provider keys are read from the environment (``ANTHROPIC_API_KEY``,
``OPENAI_API_KEY``, ``LOCAL_API_KEY``) or from a ``.env`` file; Bedrock uses
the AWS credential chain.

Usage
-----
    rulefy . --yes
    rulefy path/to/repo --provider openai --model gpt-4o-mini --format cline
    rulefy --repomix-file digest.txt --provider local --base-url http://localhost:1234/v1
    rulefy owner/repo --style xml --compress      # unknown options go to repomix
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import TYPE_CHECKING

from dotenv import load_dotenv
from pydantic import ValidationError

from rulefy import __version__
from rulefy.config import DEFAULT_CHUNK_DELAY_MS, DEFAULT_CHUNK_SIZE, OutputDialect
from rulefy.exceptions import OperationCancelledError, RulefyError
from rulefy.generate import generate_rules
from rulefy.logging import logger, reset_log_file
from rulefy.providers.registry import DEFAULT_PROVIDER, ProviderRegistry
from rulefy.settings import ENV_FILE, Settings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from rulefy.config import CostEstimate

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="rulefy",
        description="Transform a repository into Cursor, Cline or Roo rules with an LLM.",
        epilog="Unrecognized --options are forwarded to repomix.",
    )
    p.add_argument("repo_path", nargs="?", default=".", help="Repository path, owner/repo or GitHub URL.")

    llm = p.add_argument_group("provider")
    llm.add_argument("--provider", default=DEFAULT_PROVIDER, help="LLM provider (default: %(default)s).")
    llm.add_argument("--model", default=None, help="Model identifier (provider default when omitted).")
    llm.add_argument("--api-key", default=None, help="API key (environment variable when omitted).")
    llm.add_argument("--base-url", default=None, help="Base URL of an OpenAI-compatible server.")
    llm.add_argument("--max-tokens", type=int, default=None, help="Maximum tokens to generate.")
    llm.add_argument("--temperature", type=float, default=None, help="Sampling temperature (0 to 2).")
    llm.add_argument("--region", default=None, help="AWS region for Bedrock.")

    rules = p.add_argument_group("rules")
    rules.add_argument("--description", default=None, help="What the rules should focus on.")
    rules.add_argument(
        "--rule-type",
        choices=["auto", "manual", "agent", "always"],
        default=None,
        help="Type of rule to generate.",
    )
    rules.add_argument(
        "--format",
        choices=[str(d) for d in OutputDialect],
        default=str(OutputDialect.CURSOR),
        help="Output format (default: %(default)s).",
    )

    run = p.add_argument_group("run")
    run.add_argument(
        "--chunk-size",
        type=int,
        # argparse converts string defaults with `type`, so a bad CHUNK_SIZE is a usage error
        default=os.environ.get("CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE)),
        help="Tokens per chunk (default: CHUNK_SIZE or %(default)s).",
    )
    run.add_argument(
        "--chunk-delay",
        type=int,
        default=DEFAULT_CHUNK_DELAY_MS,
        help="Delay between chunks in milliseconds (default: %(default)s).",
    )
    run.add_argument("--repomix-file", default=None, help="Use a prepared repomix output instead of running repomix.")
    run.add_argument("--guidelines", default=None, help="Guideline file replacing the bundled template.")
    run.add_argument("--output-dir", default=None, help="Output directory (default: <repo>-output).")
    run.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation before processing.")
    run.add_argument("--list-providers", action="store_true", help="List providers and their models, then exit.")
    run.add_argument("--log-file", type=str, default="", help="Log file path.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse the command line; unknown options are kept for repomix."""
    load_dotenv(ENV_FILE, override=False)
    parser = build_parser()
    args, extra = parser.parse_known_args(argv)
    try:
        return Settings(**vars(args), extra_options=extra)
    except ValidationError as e:
        problems = [f"--{str(err['loc'][0]).replace('_', '-')}: {err['msg']}" for err in e.errors()]
        parser.error("; ".join(problems))


def confirm_on_console(estimate: CostEstimate) -> bool:
    """Show the cost estimate and ask the operator whether to proceed."""
    print(f"Document size: {estimate.total_tokens:,} tokens")
    print(f"Chunk size: {estimate.chunk_size:,} tokens ({estimate.total_chunks} chunk(s))")
    print(
        f"Estimated input processing cost: ${estimate.estimated_cost:.4f} "
        f"({estimate.total_tokens:,} tokens x ${estimate.cost_per_token} per token)"
    )
    try:
        answer = input("Proceed with processing? (y/n): ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def always_confirm(_estimate: CostEstimate) -> bool:
    return True


def list_providers(registry: ProviderRegistry) -> None:
    for info in registry.info():
        key = "API key required" if info["requires_api_key"] else "no API key"
        env_var = registry.api_key_env_var(info["name"])
        print(f"{info['name']} ({info['display_name']}), {key}" + (f" [{env_var}]" if env_var else ""))
        print(f"  default model: {info['default_model']}")
        for model in info["available_models"]:
            print(f"  - {model}")


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    if settings.log_file:
        reset_log_file(settings.log_file)

    if settings.list_providers:
        list_providers(ProviderRegistry())
        return 0

    if settings.extra_options:
        logger.info("forwarded_options", options=settings.extra_options)
    confirm = always_confirm if settings.yes else confirm_on_console
    try:
        output_file = generate_rules(settings.repo_path, settings, confirm=confirm)
    except OperationCancelledError as e:
        print(e)
        return 0
    except RulefyError as e:
        logger.error("generate_failed", error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED

    print(f"Wrote {output_file} format={settings.format}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
