"""Process-wide logging setup for the API server and the CLI."""

from __future__ import annotations

import logging.config
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def build_logging_config(level: str = "INFO", *, access_log: bool = True, sql_echo: bool = False) -> dict[str, Any]:
    """dictConfig payload; uvicorn access lines keep their own one-field format."""
    level = level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            "bare": {"format": "%(message)s"},
        },
        "handlers": {
            "stderr": {"class": "logging.StreamHandler", "formatter": "standard"},
            "http": {"class": "logging.StreamHandler", "formatter": "bare"},
        },
        "loggers": {
            "explorer": {"level": level},
            "uvicorn.error": {"level": level, "handlers": ["stderr"], "propagate": False},
            "uvicorn.access": {
                "level": "INFO" if access_log else "WARNING",
                "handlers": ["http"],
                "propagate": False,
            },
            "sqlalchemy.engine": {"level": "INFO" if sql_echo else "WARNING"},
            "aiosqlite": {"level": "WARNING"},
        },
        "root": {"level": level, "handlers": ["stderr"]},
    }


def setup_logging(level: str = "INFO", access_log: bool = True, sql_echo: bool = False) -> None:
    logging.config.dictConfig(build_logging_config(level, access_log=access_log, sql_echo=sql_echo))
