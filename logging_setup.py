"""Centralized logging configuration for the statement parser modules.

``configure_logging(...)`` attaches a single ``StreamHandler`` to the root
logger of this project (``"ctfs_statement"``) and is meant to be called once by
entrypoints (the CLI, the web runner). Library modules only call
``get_logger("ctfs_statement.<module>")`` and never attach handlers.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Optional, Union

ROOT_LOGGER_NAME = "ctfs_statement"
LEVEL_ENV_VAR = "CTFS_STATEMENT_LOG_LEVEL"

_CONFIGURED = False


def _parse_level(level: Union[int, str, None]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
    env_val = os.getenv(LEVEL_ENV_VAR)
    if env_val and env_val != level:
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: Union[int, str, None] = None,
    *,
    fmt: Optional[str] = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the project root logger exactly once.

    ``level`` may be an ``int`` or a level name. When ``None`` the
    ``CTFS_STATEMENT_LOG_LEVEL`` environment variable is used, falling back to
    ``INFO``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s"))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name with a ``NullHandler`` on the project root until configured."""

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not _CONFIGURED and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)
