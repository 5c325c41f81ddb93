"""Logging helpers for the command line front end."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

__all__ = [
    "DEFAULT_FORMAT",
    "configure_logging",
    "close_logging",
]

DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def _remove_installed(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if getattr(handler, "_biscuit_handler", False):
            logger.removeHandler(handler)
            handler.close()


def configure_logging(
    level: int | str = logging.INFO,
    *,
    log_file: Optional[Path] = None,
    name: str = "biscuit",
    formatter: logging.Formatter | None = None,
) -> logging.Logger:
    """Route ``name`` (and every script logger below it) to stderr.

    Handlers installed by a previous call are removed first so repeated
    invocations replace the configuration instead of duplicating output.
    When ``log_file`` is given the records are also written there (UTF-8,
    truncated on open).
    """

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    _remove_installed(logger)

    if formatter is None:
        formatter = logging.Formatter(DEFAULT_FORMAT)

    stream = logging.StreamHandler()
    stream._biscuit_handler = True  # type: ignore[attr-defined]
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        handler._biscuit_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def close_logging(name: str = "biscuit") -> None:
    """Tear down handlers installed by :func:`configure_logging`."""

    logger = logging.getLogger(name)
    _remove_installed(logger)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
