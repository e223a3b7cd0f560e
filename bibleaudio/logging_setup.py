"""Logging configuration for the service.

Only a console handler is installed: serverless deployments have a
read-only file system and collect stdout/stderr themselves. The level is
``Settings.log_level`` (``LOG_LEVEL``).
"""

from __future__ import annotations

import logging

from .config import get_settings

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s | %(message)s"


def setup_logging(force: bool = False) -> None:
    """Configure the root logger once (unless ``force=True``)."""
    if getattr(setup_logging, "_configured", False) and not force:
        return
    root = logging.getLogger()
    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)
    level_name = get_settings().log_level
    level = getattr(logging, level_name, logging.INFO)
    root.setLevel(level)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    console.setLevel(level)
    root.addHandler(console)
    setup_logging._configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Return a logger, making sure logging has been configured."""
    setup_logging()
    return logging.getLogger(name)
