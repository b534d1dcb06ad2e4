"""Structured logging setup (structlog over stdlib logging)."""
from __future__ import annotations

import logging
import sys

import structlog


def _sanitize_string(value: str) -> str:
    """Escape control characters so the log entry stays on a single line."""
    return (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def replace_newlines_processor(logger, method_name, event_dict):
    """Keep every key=value entry on one line, tracebacks included."""
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _sanitize_string(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [
                _sanitize_string(item) if isinstance(item, str) else item
                for item in value
            ]
    return event_dict


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.processors.KeyValueRenderer(
        key_order=["timestamp", "level", "logger", "event"],
        drop_missing=True,
    )


def configure_logging(level: str = "INFO", log_format: str = "kv") -> None:
    """Route stdlib and structlog output to a single stdout handler.

    ``log_format`` is ``kv`` (key=value, one entry per line, friendly to
    Loki/Alloy) or ``json``.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    access_logger = logging.getLogger("aiohttp.access")
    access_logger.handlers = []
    access_logger.propagate = True

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format != "json":
        # must run after format_exc_info so tracebacks are escaped too
        processors.append(replace_newlines_processor)
    processors.append(_renderer(log_format))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
