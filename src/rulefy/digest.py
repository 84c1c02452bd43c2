"""Built-in repository digest, used when the external flattener is unavailable.

The digest lists the repository tree and the content of every UTF-8 text
file, in a layout close enough to a repomix export for the prompts to work.
"""

from __future__ import annotations

import io
import os
import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rulefy.exceptions import RepositoryDigestError
from rulefy.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_EXCLUDES = {
    ".git",
    ".venv",
    "venv",
    "env",
    ".env",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".ipynb_checkpoints",
    "node_modules",
    "dist",
    "build",
    "coverage",
    ".next",
    ".DS_Store",
    ".idea",
    ".vscode",
}

LOCK_FILES = {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock", "uv.lock", "Cargo.lock"}

MAX_FILE_BYTES = 200_000
SNIFF_BYTES = 4096


def relpath(path: Path, root: Path) -> str:
    """POSIX path of ``path`` relative to ``root``; ``path`` as-is when outside it."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def git_ls_files(repo: Path) -> list[Path]:
    """Files tracked by git under ``repo``.

    Raises:
        RepositoryDigestError: if ``repo`` is not a git work tree or git fails.
    """
    if not (repo / ".git").exists():
        raise RepositoryDigestError(source=str(repo), message=f"{repo} is not a git repository")
    try:
        out = subprocess.run(
            ["git", "ls-files"],  # noqa: S607
            cwd=str(repo),
            text=True,
            capture_output=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise RepositoryDigestError(source=str(repo), message=f"git ls-files failed: {e}") from e
    return [repo / line.strip() for line in out.stdout.splitlines() if line.strip()]


def walk_files(repo: Path) -> list[Path]:
    """Every file under ``repo``, pruning the directories in ``DEFAULT_EXCLUDES``."""
    results: list[Path] = []
    for root, dirs, files in os.walk(repo):
        dirs[:] = [d for d in dirs if d not in DEFAULT_EXCLUDES]
        results.extend(Path(root) / f for f in files if f not in DEFAULT_EXCLUDES)
    return results


def list_files(repo: Path, *, use_git: bool = True) -> list[Path]:
    """Tracked files when git is usable, a filesystem walk otherwise."""
    if use_git:
        try:
            files = git_ls_files(repo)
        except RepositoryDigestError as e:
            logger.info("digest_walk_fallback", reason=str(e))
        else:
            return sorted((f for f in files if f.is_file()), key=lambda p: relpath(p, repo).lower())
    return sorted(walk_files(repo), key=lambda p: relpath(p, repo).lower())


def is_text_file(path: Path, nbytes: int = SNIFF_BYTES) -> bool:
    """True when the head of ``path`` decodes as UTF-8 and holds no NUL byte."""
    try:
        with path.open("rb") as f:
            head = f.read(nbytes)
        head.decode("utf-8")
    except (OSError, UnicodeDecodeError):
        return False
    return b"\x00" not in head


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Render relative POSIX paths as an indented directory tree.

    Args:
        root_name (str): label of the first line
        rel_paths (Sequence[str]): file paths relative to the root, e.g. ``src/main.py``

    Returns:
        list[str]: one line per directory or file, directories first at each level
    """
    tree: dict[str, Any] = {}
    for rel in {p.strip("/") for p in rel_paths if p.strip("/")}:
        node = tree
        *parents, name = rel.split("/")
        for part in parents:
            node = node.setdefault(part, {})
        node.setdefault("__files__", set()).add(name)

    lines = [f"{root_name}/"]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted((k for k in node if k != "__files__"), key=str.lower)
        files = sorted(node.get("__files__", set()), key=str.lower)
        entries = [(d, True) for d in dirs] + [(f, False) for f in files]
        for idx, (name, is_dir) in enumerate(entries):
            last = idx == len(entries) - 1
            lines.append(f"{prefix}{'└── ' if last else '├── '}{name}{'/' if is_dir else ''}")
            if is_dir:
                walk(node[name], prefix + ("    " if last else "│   "))

    walk(tree, "")
    return lines


def build_builtin_digest(repo: Path, *, use_git: bool = True, max_file_bytes: int = MAX_FILE_BYTES) -> str:
    """Flatten ``repo`` into one text document.

    Lock files, non-UTF-8 files and files larger than ``max_file_bytes`` are
    listed in the tree but their content is left out.

    Raises:
        RepositoryDigestError: if ``repo`` is not a directory or holds no files.
    """
    repo = repo.resolve()
    if not repo.is_dir():
        raise RepositoryDigestError(source=str(repo), message=f"Repository directory not found: {repo}")
    files = list_files(repo, use_git=use_git)
    if not files:
        raise RepositoryDigestError(source=str(repo), message=f"No files found in {repo}")

    rels = [relpath(f, repo) for f in files]
    out = io.StringIO()
    out.write(f"# Project: {repo.name}\n\n")
    out.write("## Directory Structure\n```text\n")
    out.write("\n".join(build_tree_lines(repo.name, rels)))
    out.write("\n```\n\n## Files\n\n")

    included = 0
    for path, rel in zip(files, rels, strict=True):
        if path.name in LOCK_FILES or path.stat().st_size > max_file_bytes or not is_text_file(path):
            continue
        body = path.read_text(encoding="utf-8", errors="replace")
        out.write(f"### {rel}\n```\n{body.rstrip()}\n```\n\n")
        included += 1

    logger.info("builtin_digest", repo=str(repo), files=len(files), included=included)
    return out.getvalue().rstrip() + "\n"
