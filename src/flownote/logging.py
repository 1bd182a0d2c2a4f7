"""flownote.logging

Structured logging for FlowNote, backed by structlog.

Call sites pass context as keyword fields instead of formatting it into the
message:

    logger.warning("Introspection timed out", node_id=nid, timeout=5.0)
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional, Union

import structlog


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)


def _resolve_level(level: Optional[Union[str, int]]) -> int:
    if isinstance(level, int) and not isinstance(level, bool):
        return level
    if isinstance(level, str) and level.strip():
        resolved = logging.getLevelName(level.strip().upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


def _stderr_logger(*_args: Any) -> structlog.PrintLogger:
    # Resolved per call so redirected or replaced stderr streams are honored.
    return structlog.PrintLogger(sys.stderr)


def configure_logging(level: Optional[Union[str, int]] = None) -> None:
    """Route FlowNote logs to stderr as `key=value` lines, filtered by `level`."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_resolve_level(level)),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
