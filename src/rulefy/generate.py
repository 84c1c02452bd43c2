"""End-to-end rules generation for one repository.

Resolves the repository digest and the guideline text, runs the progressive
summarizer and writes the intermediate drafts and the final rules file into
the output directory.
"""

from __future__ import annotations

import re
import subprocess  # noqa: S404
import time
from pathlib import Path
from typing import TYPE_CHECKING

import yaml

from rulefy.config import OutputDialect, SummaryRequest
from rulefy.digest import build_builtin_digest
from rulefy.exceptions import ConfigurationError, FlattenCommandError, RepositoryDigestError
from rulefy.logging import logger
from rulefy.providers.registry import ProviderRegistry
from rulefy.summarizer import summarize

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from rulefy.chunking import ConfirmFn, Encoding
    from rulefy.config import Chunk, GenerationResult
    from rulefy.settings import Settings

PROMPTS_DIR = Path(__file__).parent / "prompts"
FLATTENER_OUTPUT = "repomix-output.txt"

# sections a repomix export (or the built-in digest) is expected to contain
_DIGEST_MARKERS = (
    "# Project:",
    "## Directory Structure",
    "## Key Files",
    "## Technologies Used",
    "<directory_structure>",
)

_OWNER_REPO = re.compile(r"^[a-zA-Z0-9_-]+/([a-zA-Z0-9_-]+)$")
_GITHUB_URL = re.compile(r"^https?://github\.com/[a-zA-Z0-9_-]+/([a-zA-Z0-9_-]+)")

BUILTIN_GUIDELINES = """**Guidelines for Creating Content for** .cursorrules

.cursorrules files serve as customized instruction sets for Cursor AI, tailoring its code generation \
behavior to specific project requirements. These files should be placed in the repository root to \
provide project-wide context and guidelines.

**1. Use Markdown for Documentation**
* All documentation within .cursorrules files or accompanying READMEs must be written in Markdown to \
ensure consistency and readability.

**2. Maintain a Clear Structure**
* Organize content logically with clear sections (e.g., general guidelines, project-specific rules, \
file structure) to provide context and instructions effectively.

**3. Focus on Best Practices and Standards**
* Define coding standards, best practices, and style guidelines specific to the technology or framework \
to ensure consistent, high-quality output.

**4. Include Project-Specific Context**
* Include details about the project's structure, architectural decisions, and commonly used libraries \
or methods to guide AI behavior.
"""


def extract_repo_name(repo_path: str) -> str:
    """Short repository name used for the output directory and file.

    ``.`` gives the current directory name, an existing directory its own
    name, ``owner/repo`` and GitHub URLs the repository part. Anything else is
    turned into a slug.
    """
    if repo_path == ".":
        return Path.cwd().name
    path = Path(repo_path)
    if path.is_dir():
        return path.resolve().name
    if match := _OWNER_REPO.match(repo_path):
        return match.group(1)
    if match := _GITHUB_URL.match(repo_path):
        return match.group(1)
    return re.sub(r"[^a-zA-Z0-9_-]", "-", repo_path).strip("-")


def output_paths(repo_name: str, dialect: OutputDialect, output_dir: Path | None = None) -> tuple[Path, Path]:
    """Return ``(output_dir, output_file)`` for a run."""
    out_dir = output_dir or Path(f"{repo_name}-output")
    return out_dir, out_dir / dialect.output_filename(repo_name)


def intermediate_path(output_dir: Path, dialect: OutputDialect, chunk: Chunk) -> Path:
    return output_dir / f"{dialect.tag}_chunk_{chunk.index + 1}_of_{chunk.total_chunks}.md"


def read_digest_file(path: Path) -> str:
    """Read a prepared repository digest.

    Raises:
        RepositoryDigestError: if the file is missing or empty.
    """
    path = path.expanduser().resolve()
    if not path.is_file():
        raise RepositoryDigestError(source=str(path), message=f"Repomix file not found: {path}")
    content = path.read_text(encoding="utf-8", errors="replace")
    if not content:
        raise RepositoryDigestError(source=str(path), message=f"Repomix file is empty: {path}")
    if not any(marker in content for marker in _DIGEST_MARKERS):
        logger.warning("digest_layout_unrecognized", path=str(path))
    return content


def run_flattener(repo_path: str, output_dir: Path, extra_options: Sequence[str] = ()) -> str:
    """Flatten the repository with ``npx repomix`` and return the digest text.

    Args:
        repo_path (str): local path or remote repository accepted by repomix
        output_dir (Path): directory receiving ``repomix-output.txt``
        extra_options (Sequence[str]): options passed through to repomix

    Raises:
        FlattenCommandError: if repomix exits with a non-zero status.
        RepositoryDigestError: if ``npx`` cannot be started or the output cannot be read.
    """
    out_file = output_dir / FLATTENER_OUTPUT
    command = ["npx", "repomix", repo_path, *extra_options, "-o", str(out_file)]
    logger.info("flattener_start", command=" ".join(command))
    try:
        proc = subprocess.run(command, text=True, capture_output=True, check=False)  # noqa: S603, S607
    except OSError as e:
        raise RepositoryDigestError(source="npx", message=f"Unable to run repomix: {e}") from e
    if proc.returncode != 0:
        raise FlattenCommandError(
            command=" ".join(command),
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
    return read_digest_file(out_file)


def resolve_digest(repo_path: str, options: Settings, output_dir: Path) -> str:
    """Digest from ``--repomix-file``, else repomix, else the built-in digest of a local repository."""
    if options.repomix_file is not None:
        logger.info("digest_from_file", path=str(options.repomix_file))
        return read_digest_file(options.repomix_file)
    try:
        return run_flattener(repo_path, output_dir, options.extra_options)
    except (FlattenCommandError, RepositoryDigestError) as e:
        if not Path(repo_path).is_dir():
            raise
        logger.warning("flattener_failed", error=str(e), fallback="builtin_digest")
        return build_builtin_digest(Path(repo_path))


def load_guidelines(dialect: OutputDialect, path: Path | None = None) -> str:
    """Guideline text for ``dialect``.

    An explicit ``path`` must exist. Without one, the bundled template is used,
    or the built-in guidelines when the template is missing.

    Raises:
        ConfigurationError: if ``path`` is given but cannot be read.
    """
    if path is not None:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            msg = f"Failed to read guidelines file at {path}: {e}"
            raise ConfigurationError(message=msg, field="guidelines") from e
    bundled = PROMPTS_DIR / dialect.guidelines_file
    if bundled.is_file():
        return bundled.read_text(encoding="utf-8")
    logger.warning("guidelines_missing", path=str(bundled), fallback="builtin")
    return BUILTIN_GUIDELINES


def check_roo_yaml(rules: str) -> bool:
    """Warn when Roo output does not parse as YAML; the file is written anyway."""
    try:
        yaml.safe_load(rules)
    except yaml.YAMLError as e:
        logger.warning("roomodes_invalid_yaml", error=str(e))
        return False
    return True


def generate_rules(
    repo_path: str,
    options: Settings,
    *,
    confirm: ConfirmFn,
    sleep: Callable[[float], None] = time.sleep,
    registry: ProviderRegistry | None = None,
    encoding: Encoding | None = None,
) -> Path:
    """Generate the rules file for ``repo_path`` and return its path.

    Raises:
        RulefyError: any configuration, digest, provider or extraction failure.
    """
    dialect = options.format
    repo_name = extract_repo_name(repo_path)
    output_dir, output_file = output_paths(repo_name, dialect, options.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info("generate_start", repo=repo_name, dialect=str(dialect), output_dir=str(output_dir))

    registry = registry or ProviderRegistry(sleep=sleep)
    provider = registry.get(options.provider)
    config = registry.build_config(options.provider, **options.provider_overrides())
    # fail on a bad provider setup before spending time on the digest
    provider.validate_config(config)

    digest = resolve_digest(repo_path, options, output_dir)
    request = SummaryRequest(
        guidelines=load_guidelines(dialect, options.guidelines),
        dialect=dialect,
        description=options.description,
        rule_type=options.rule_type,
    )

    def save_draft(chunk: Chunk, draft: str, result: GenerationResult) -> None:
        path = intermediate_path(output_dir, dialect, chunk)
        path.write_text(draft, encoding="utf-8")
        logger.info("draft_saved", path=str(path), model=result.model)

    rules = summarize(
        digest,
        request,
        provider=provider,
        config=config,
        chunk_size=options.chunk_size,
        chunk_delay_ms=options.chunk_delay,
        confirm=confirm,
        encoding=encoding,
        sleep=sleep,
        on_chunk=save_draft,
    )
    if dialect is OutputDialect.ROO:
        check_roo_yaml(rules)

    output_file.write_text(rules, encoding="utf-8")
    logger.info("generate_done", output=str(output_file))
    return output_file
