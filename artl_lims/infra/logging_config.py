from __future__ import annotations

import logging
import os
import sys

from pydantic import BaseModel

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

_HANDLER_NAME = "artl_lims"


class LogConfig(BaseModel):
    level: str = LOG_LEVEL
    format: str = LOG_FORMAT
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z"
    # Third-party loggers kept at WARNING unless LOG_LEVEL is DEBUG.
    quiet_loggers: tuple[str, ...] = ("sqlalchemy.engine", "alembic", "httpx")


def configure_logging(config: LogConfig | None = None) -> None:
    """Install the application handler on the root logger, once."""
    config = config or LogConfig()
    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not any(handler.get_name() == _HANDLER_NAME for handler in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(config.format, datefmt=config.datefmt))
        root.addHandler(handler)

    if level > logging.DEBUG:
        for name in config.quiet_loggers:
            logging.getLogger(name).setLevel(logging.WARNING)
