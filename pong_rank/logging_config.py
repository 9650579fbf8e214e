"""
Centralized logging configuration for the ladder.

Usage:
- Production (default): concise INFO-level logs.
- Testing: set LOG_LEVEL=DEBUG (or call setup_logging(level="DEBUG")) for very detailed logs.
- Storage writes log at DEBUG under ``pong_rank.db``; the auto-confirm sweep
  reports batch totals under ``pong_rank.sweeper`` and keeps doing so at INFO
  even when LOG_LEVEL is raised to WARNING.

Environment variables:
- LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL
- LOG_LEVELS: per-logger overrides, e.g. "pong_rank.db=DEBUG,pong_rank.sweeper=WARNING"
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Literal, Mapping, Optional

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Sweep totals are the only trace of background auto-confirmation
MODULE_LEVELS: dict[str, int] = {
    "pong_rank.sweeper": logging.INFO,
}


def _level_from_env(default: LogLevel = "INFO") -> int:
    level_str = os.getenv("LOG_LEVEL", default).upper()
    return _LEVELS.get(level_str, logging.INFO)


def parse_module_levels(spec: str) -> dict[str, int]:
    """Parse "logger=LEVEL,..." into a mapping; unknown levels are skipped."""
    out: dict[str, int] = {}
    for part in spec.split(","):
        name, sep, level = part.partition("=")
        name, level = name.strip(), level.strip().upper()
        if sep and name and level in _LEVELS:
            out[name] = _LEVELS[level]
    return out


def setup_logging(
    level: Optional[LogLevel] = None,
    mode: Optional[Literal["test", "prod"]] = None,
    module_levels: Optional[Mapping[str, int]] = None,
) -> None:
    """Configure the root logger and the ladder's per-module levels.

    Args:
        level: Optional string level (e.g., "DEBUG"). If omitted, uses LOG_LEVEL env var or INFO.
        mode: Optional mode hint ("test"|"prod"); "test" always uses the verbose format.
        module_levels: Extra logger levels, applied after MODULE_LEVELS and LOG_LEVELS.
    """
    numeric_level = _level_from_env() if level is None else _LEVELS.get(level.upper(), logging.INFO)

    # Avoid duplicate handlers if re-configuring
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    is_debug = numeric_level <= logging.DEBUG
    fmt_verbose = (
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(funcName)s | %(message)s"
    )
    fmt_concise = "%(asctime)s %(levelname).1s %(name)s: %(message)s"
    fmt = fmt_verbose if (mode == "test" or is_debug) else fmt_concise

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt="%H:%M:%S"))

    root.setLevel(numeric_level)
    root.addHandler(handler)

    levels = {name: min(lvl, numeric_level) for name, lvl in MODULE_LEVELS.items()}
    levels.update(parse_module_levels(os.getenv("LOG_LEVELS", "")))
    levels.update(module_levels or {})
    for name, lvl in levels.items():
        logging.getLogger(name).setLevel(lvl)

    # Tame noisy third-party loggers unless in full debug
    logging.getLogger("discord").setLevel(logging.INFO if is_debug else logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.INFO if is_debug else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Convenience wrapper to get a module logger."""
    return logging.getLogger(name)
