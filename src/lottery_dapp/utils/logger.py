"""Shared logging utilities for the lottery client engine.

Provides a central get_logger(name) factory that wires console + file handlers
onto the package logger exactly once. Level and file path come from the
LOG_LEVEL and LOG_FILE environment variables; LOG_FILE=- disables the file
handler.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional


PACKAGE_LOGGER = "lottery_dapp"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def _ensure_configured() -> None:
    global _configured
    if _configured:
        return

    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_file = os.getenv("LOG_FILE", "")

    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger(PACKAGE_LOGGER)
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file != "-":
        try:
            log_path = Path(log_file) if log_file else Path.cwd() / "lottery_dapp.log"
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError:
            root.exception("Failed to create file log handler; continuing with console only")

    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a configured logger for the given name.

    The first call configures the package logger according to LOG_LEVEL and
    LOG_FILE. Subsequent calls return regular loggers that inherit the same
    handlers and level.
    """
    _ensure_configured()
    return logging.getLogger(name or PACKAGE_LOGGER)
