"""Logging helpers for sofapy.

All package loggers live under the ``sofapy`` namespace so a caller can tune
the whole pipeline with ``logging.getLogger('sofapy').setLevel(...)``.
"""

from __future__ import annotations

import logging

ROOT_LOGGER_NAME = 'sofapy'
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return the ``sofapy.<name>`` logger."""
    if name.startswith(ROOT_LOGGER_NAME + '.') or name == ROOT_LOGGER_NAME:
        return logging.getLogger(name)
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def setup_logging(level: str | int = "INFO", *, force: bool = False) -> None:
    """Configure root logging for sofapy workloads.

    Parameters
    ----------
    level : str or int
        Logging level accepted by :func:`logging.basicConfig`. Strings are
        case-insensitive, e.g. ``"info"``.
    force : bool, default False
        When True the existing root handlers are replaced. Otherwise an
        existing configuration is respected and only its level is updated.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger()
    if root.handlers and not force:
        root.setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        force=force,
    )
