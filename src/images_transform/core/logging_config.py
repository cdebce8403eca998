"""Logging setup for the image transform service.

Only the service root logger ("images-transform") owns a handler. Component
loggers returned by :func:`get_logger` propagate to it, so one level set at
startup (``LOG_LEVEL`` or ``Settings.log_level``) applies everywhere.
"""

import os
import sys
import logging
from typing import Optional

ROOT_LOGGER_NAME = "images-transform"

LOG_FORMATS = {
    "structured": (
        "%(asctime)s | %(name)s | %(levelname)-8s | "
        "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
    ),
    "simple": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: Optional[str] = None,
    format_type: str = "structured",
) -> logging.Logger:
    """
    Attach a stdout handler to ``name`` and set its level.

    Calling it again only updates the level; the handler is created once.

    Args:
        name: Logger name (defaults to the service root logger)
        level: Level name; falls back to ``LOG_LEVEL`` and then INFO
        format_type: "structured" or "simple"; ``LOG_FORMAT`` overrides it

    Returns:
        The configured logger
    """
    configured = logging.getLogger(name)
    configured.setLevel(_resolve_level(level))

    if not configured.handlers:
        format_name = os.getenv("LOG_FORMAT", format_type).lower()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                LOG_FORMATS.get(format_name, LOG_FORMATS["structured"]),
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        configured.addHandler(handler)

    configured.propagate = False
    return configured


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Logger for a component such as "pipeline" or "api".

    Short names are placed under the service root, which is configured on
    first use if nothing has set it up yet.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger()
    return root if name == ROOT_LOGGER_NAME else logging.getLogger(name)


logger = get_logger()
