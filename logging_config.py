"""
logging_config.py - Centralized logging configuration.

Every module logs through a named logger from `get_logger`. Messages follow
the `event | key=value | key=value` shape so one grep finds a whole flow
(for example `grep "scan_" office.log`).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

NOISY_LIBRARIES = ("httpx", "httpcore", "google.auth")


def level_from_env(default: int = logging.INFO) -> int:
    """`LOG_LEVEL` (name or number) from the environment, else `default`."""
    raw = os.getenv("LOG_LEVEL", "").strip()
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def setup_logging(level: Optional[int] = None, json_format: bool = False) -> None:
    """Configure the root logger for the CLI and the API server.

    Args:
        level: Logging level. None reads `LOG_LEVEL`, defaulting to INFO.
        json_format: If True, emit JSON-like log lines.
    """
    if level is None:
        level = level_from_env()
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if json_format:
        formatter = logging.Formatter(
            '{"timestamp":"%(asctime)s","level":"%(levelname)s",'
            '"module":"%(name)s","message":"%(message)s"}',
            datefmt="%H:%M:%S",
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(name)-20s] %(levelname)-7s %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # HTTP client libraries log every request at INFO.
    for name in NOISY_LIBRARIES:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)
