"""
Structured logging setup for fhir-codec.

Library modules only call :func:`get_logger`, which wraps a standard
``logging`` logger in structlog; nothing is printed below WARNING until an
application opts in.  Applications (and the MCP server entry point) call
:func:`configure_logging` once at start-up.  Output always goes to stderr
so it never mixes with the MCP stdio transport.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog

from fhir_codec.config import CodecSettings, LogFormat, get_settings

_ROOT_LOGGER = "fhir_codec"


def configure_logging(settings: Optional[CodecSettings] = None) -> None:
    """Configure structlog from *settings* (defaults to :func:`get_settings`)."""
    settings = settings or get_settings()

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if settings.log_format is LogFormat.JSON:
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger(_ROOT_LOGGER)
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False

    structlog.configure(
        processors=processors,
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None):
    """Return a structlog logger writing through ``logging.getLogger(name)``."""
    return structlog.wrap_logger(logging.getLogger(name or _ROOT_LOGGER))
