"""Process logging setup."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Install one stream handler on the package logger.

    `level` defaults to `ANALYST_LOG_LEVEL`, then INFO. Safe to call repeatedly.
    """

    resolved = level if level is not None else os.getenv("ANALYST_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logger = logging.getLogger("analyst_agent")
    logger.setLevel(resolved)
    if not any(getattr(handler, "_analyst_agent", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._analyst_agent = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
