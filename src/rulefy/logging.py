"""structlog setup for rulefy.

Events are JSON lines: chunk plans and progress, provider retries, digest and
flattener fallbacks, saved drafts and the final output path. The CLI can move
them from stderr to a file with ``--log-file``.
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_LOGGING_CONFIGURED = False


def setup_logging(filename: str | Path | None = None) -> structlog.BoundLogger:
    """Configure structlog once and return the ``rulefy`` logger.

    The first call wins: later calls return the same logger without touching
    the handlers, so the CLI must pass ``filename`` before anything logs.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.

    Returns:
        A structlog logger bound to the ``rulefy`` name.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if not _LOGGING_CONFIGURED:
        handlers: list[logging.Handler] = []
        if filename:
            handlers.append(logging.FileHandler(str(filename), encoding="utf-8"))
        else:
            handlers.append(logging.StreamHandler(sys.stderr))

        logging.basicConfig(
            level=logging.INFO,
            handlers=handlers,
            format="%(message)s",
        )
        structlog.configure(
            processors=[
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_CONFIGURED = True

    return structlog.get_logger("rulefy")


def reset_log_file(filename: str | Path) -> structlog.BoundLogger:
    """Send the run's events to ``filename`` instead of stderr.

    Used by ``rulefy --log-file``; the current root handlers are closed and
    replaced, the structlog configuration is left as is.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(logging.FileHandler(str(filename), encoding="utf-8"))
    return structlog.get_logger("rulefy")


logger = setup_logging()
