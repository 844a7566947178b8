"""View options, terminal capabilities and debug logging setup."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import NamedTuple

FILTERS = ("user", "assistant", "tool", "error")
LOG_ENV = "TPAGER_LOG"


class ViewConfig(NamedTuple):
    tail: int | None = None
    expand_tools: bool = False
    filter: str | None = None
    full: bool = False
    no_follow: bool = False
    no_color: bool = False


class TerminalCaps(NamedTuple):
    width: int = 80
    height: int = 24
    color: bool = True


def setup_logging(path: str | Path | None = None, level: str | int = "DEBUG") -> logging.Logger | None:
    """Send tpager.* records to *path* (or $TPAGER_LOG).

    Without a destination records are discarded; stderr would tear the
    pager's screen.
    """
    target = path or os.environ.get(LOG_ENV)
    logger = logging.getLogger("tpager")
    if not target:
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
        return None
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return None
    logger.setLevel(level)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
