"""
Logging configuration for the runner and its CLI
"""

from __future__ import annotations

import logging.config
from typing import Any


def get_logging_config(level: str = "INFO") -> dict[str, Any]:
    """Return a dictConfig mapping that renders records through Rich.

    Example:
        ```python
        config = get_logging_config("DEBUG")
        ```
    """
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "rich": {"format": "%(name)s: %(message)s", "datefmt": "[%X]"},
        },
        "handlers": {
            "default": {
                "class": "rich.logging.RichHandler",
                "formatter": "rich",
                "show_path": False,
                "rich_tracebacks": True,
            },
        },
        "loggers": {
            "task_pod_runner": {
                "handlers": ["default"],
                "level": level.upper(),
                "propagate": False,
            },
            "kubernetes": {
                "handlers": ["default"],
                "level": "WARNING",
                "propagate": False,
            },
        },
        "root": {"level": "WARNING", "handlers": ["default"]},
    }


def configure_logging(level: str = "INFO") -> None:
    """Apply the runner logging configuration to the process.

    Example:
        ```python
        configure_logging("DEBUG")
        ```
    """
    logging.config.dictConfig(get_logging_config(level))
