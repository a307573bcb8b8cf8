"""Structured logging setup for authgate."""

from __future__ import annotations

import logging
import sys
from typing import Literal, Optional

import structlog


def setup_logging(
    log_level: str = "INFO",
    renderer: Literal["json", "console"] = "json",
) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, str(log_level).upper(), logging.INFO),
    )

    final_renderer = (
        structlog.dev.ConsoleRenderer()
        if renderer == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            final_renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def short_id(session_id: Optional[str], length: int = 12) -> str:
    """Shorten an identifier for log output."""
    if not session_id:
        return ""
    return session_id[:length] + "..." if len(session_id) > length else session_id
