#!/usr/bin/env python3
"""Structured logging setup shared by the web application and the CLI."""

import logging
import sys
from typing import Optional

import structlog


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None):
    """
    Setup structured logging using structlog.

    Args:
        level: Log level name (default INFO).
        fmt: 'json' for JSON lines, anything else for the console renderer.

    Returns:
        A bound structlog logger for the application.
    """
    log_level_str = (level or 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(message)s',
        stream=sys.stdout,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if fmt == 'json' else structlog.dev.ConsoleRenderer()
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    log = structlog.get_logger('EquipmentMonitor')
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    log.info("Structured logging configured.", log_level=log_level_str, log_format=fmt or 'console')
    return log
