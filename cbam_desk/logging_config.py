"""Shared logging configuration for CBAM Desk.

Call ``configure_logging()`` once at an application entry point. Library
modules only create named loggers and never attach handlers on import.
"""

import logging

from cbam_desk.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int | str | None = None) -> None:
    """Configure the root logger with a console handler.

    Idempotent: if the root logger already has handlers, it does nothing.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(console)
    root.setLevel(level)
