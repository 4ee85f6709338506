"""
observability/logger.py — ORION Structured Logger

structlog over stdlib logging:
  - JSON lines to a rotating file, optional console renderer
  - every line emitted during a turn carries session_id, user_id,
    connection_id and (once classified) route, via contextvars
  - long string values (user text, model replies, tool payloads) are clipped
    before rendering so a single turn cannot flood the log
  - chatty client libraries (websockets frames, httpx/httpcore requests,
    SDK retries) are held at WARNING

Usage:
    from orion.observability.logger import bind_route, get_logger, setup_logging, turn_context

    setup_logging(level="INFO", log_dir="./data/logs")   # once at startup
    log = get_logger(__name__)

    with turn_context(session_id, user_id, connection_id):
        bind_route("planning")
        log.info("planner.plan_built", steps=2)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

DEFAULT_MAX_VALUE_CHARS = 500
_UNCLIPPED = frozenset({"event", "timestamp", "level", "logger"})

_QUIET_LOGGERS = (
    "websockets",
    "websockets.server",
    "httpx",
    "httpcore",
    "openai",
    "anthropic",
    "aiosqlite",
)


def _quiet_client_loggers() -> None:
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class ClipLongValues:
    """
    structlog processor: truncate string values longer than max_chars.

    Structural keys (event, timestamp, level, logger) are never clipped.
    A clipped value ends with "…(+N chars)" carrying the dropped length.
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_VALUE_CHARS):
        self.max_chars = max_chars

    def __call__(self, logger: Any, method_name: str, event_dict: dict) -> dict:
        for key, value in event_dict.items():
            if key in _UNCLIPPED or not isinstance(value, str):
                continue
            if len(value) > self.max_chars:
                extra = len(value) - self.max_chars
                event_dict[key] = f"{value[:self.max_chars]}…(+{extra} chars)"
        return event_dict


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
    max_value_chars: int = DEFAULT_MAX_VALUE_CHARS,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:           DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:         Directory for rotating log files.
        json_format:     Console renderer: JSON when True, coloured key=value otherwise.
                         The file is always JSON.
        console_output:  Whether to emit logs to stdout at all.
        max_bytes:       Max size of each log file before rotation.
        backup_count:    Number of rotated log files to keep.
        max_value_chars: Longer string values are clipped.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        ClipLongValues(max_value_chars),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "orion.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    ))
    handlers: list[logging.Handler] = [file_handler]

    if console_output:
        console_renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
            foreign_pre_chain=shared_processors,
        ))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(numeric_level)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    _quiet_client_loggers()

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "orion", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


@contextmanager
def turn_context(session_id: str, user_id: str, connection_id: str) -> Iterator[None]:
    """
    Bind the turn's identity for every log line inside the block, including
    lines from background tasks spawned there (they copy the context).

    Values bound before entry are restored on exit (route included), so
    back-to-back turns on one task never leak identity into each other.
    """
    with structlog.contextvars.bound_contextvars(
        session_id=session_id,
        user_id=user_id,
        connection_id=connection_id,
        route=None,
    ):
        yield


def bind_route(route: str) -> None:
    """Tag the rest of the current turn with its route (fast_path | planning)."""
    structlog.contextvars.bind_contextvars(route=route)
