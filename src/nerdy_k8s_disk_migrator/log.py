from __future__ import annotations

import logging

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "nerdy_k8s_disk_migrator"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; the package root gets a single rich handler."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return logging.getLogger(name)


def set_log_level(level: str) -> None:
    """Set the package log level (DEBUG, INFO, WARNING, ERROR)."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(numeric)
