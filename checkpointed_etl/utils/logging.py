"""Structured JSON logging utility with run/step context support."""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

import structlog

# Context variables propagated into every log event
run_id_var: ContextVar[str] = ContextVar("run_id", default="")
step_var: ContextVar[str] = ContextVar("step", default="")


def set_run_context(run_id: str, step: str = "") -> None:
    """Set the run context (state hash) for logging."""
    run_id_var.set(run_id)
    step_var.set(step)


def set_step(step: str) -> None:
    """Set the current pipeline step."""
    step_var.set(step)


def clear_run_context() -> None:
    """Drop run and step from the logging context."""
    run_id_var.set("")
    step_var.set("")


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add run id and current step to log events."""
    run_id = run_id_var.get()
    if run_id:
        event_dict["run_id"] = run_id[:16]

    step = step_var.get()
    if step:
        event_dict["step"] = step

    return event_dict


def add_timestamp(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_logging(
    level: str = "info",
    format_type: str = "json",
    stream: Any = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (debug, info, warn, error)
        format_type: Output format ('json' or 'text')
        stream: Output stream (default: sys.stderr)
    """
    if stream is None:
        stream = sys.stderr

    level_map = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    log_level = level_map.get(level.lower(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=log_level,
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        add_timestamp,
        add_context_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Optional logger name for context

    Returns:
        Configured structlog logger
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger


def log_step_timing(step: str, duration_seconds: float, status: str) -> None:
    """Log timing information for a pipeline step."""
    logger = get_logger("timing")
    logger.info(
        "step_timing",
        step=step,
        status=status,
        duration_seconds=round(duration_seconds, 3),
    )


# Initialize with defaults on import
configure_logging()
