"""
Structured Logging Configuration

JSON logs in production, coloured console logs in development.
Modules keep using ``logging.getLogger(__name__)``; structlog renders
the records routed through the standard library.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import structlog

from config import get_settings


def add_timestamp(logger, method_name, event_dict):
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_service_info(logger, method_name, event_dict):
    """Add service metadata."""
    settings = get_settings()
    event_dict["service"] = settings.APP_NAME
    event_dict["environment"] = settings.APP_ENV
    return event_dict


def rename_event_key(logger, method_name, event_dict):
    """Rename 'event' to 'message'."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def configure_logging(json_format: Optional[bool] = None, log_level: Optional[str] = None) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        json_format: JSON output when True, console output when False.
                     None picks JSON in production.
        log_level: Minimum level name; defaults to LOG_LEVEL.
    """
    settings = get_settings()
    if json_format is None:
        json_format = settings.LOG_JSON if settings.LOG_JSON is not None else settings.is_production
    level_name = (log_level or settings.LOG_LEVEL).upper()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_timestamp,
    ]

    if json_format:
        renderer = structlog.processors.JSONRenderer()
        shared_processors.extend([add_service_info, rename_event_key, structlog.processors.format_exc_info])
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from plain logging.getLogger() loggers go through the same chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Structured logger for key/value events."""
    return structlog.get_logger(name)
