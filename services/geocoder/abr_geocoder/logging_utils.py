"""
Structured logging utilities for the geocoder service.

Provides context-aware logging with run_id and dataset correlation.
"""

import json
import logging
from contextvars import ContextVar
from typing import Optional

# Context variables for run/dataset tracking
run_id_ctx: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
dataset_ctx: ContextVar[Optional[str]] = ContextVar('dataset', default=None)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that adds structured context to log records.

    Automatically includes run_id and dataset from context vars.
    """

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})

        run_id = run_id_ctx.get()
        if run_id:
            extra['run_id'] = run_id

        dataset = dataset_ctx.get()
        if dataset:
            extra['dataset'] = dataset

        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str) -> StructuredLoggerAdapter:
    """Get a structured logger for the given module."""
    return StructuredLoggerAdapter(logging.getLogger(name), {})


def set_run_id(run_id: str) -> None:
    run_id_ctx.set(run_id)


def set_dataset(dataset: Optional[str]) -> None:
    dataset_ctx.set(dataset)


def clear_context() -> None:
    """Clear run and dataset from context."""
    run_id_ctx.set(None)
    dataset_ctx.set(None)


class StructuredFormatter(logging.Formatter):
    """
    Human-readable formatter with context fields.

    Example line:
        2026-10-19 09:12:03 [INFO    ] abr_geocoder.runner: [run:3f2a9c1e] Geocoded 1200 lines
    """

    def format(self, record):
        log_parts = [
            f"{self.formatTime(record, self.datefmt)}",
            f"[{record.levelname:8s}]",
            f"{record.name}:",
        ]

        if hasattr(record, 'run_id'):
            log_parts.append(f"[run:{record.run_id[:8]}]")

        if hasattr(record, 'dataset'):
            log_parts.append(f"[dataset:{record.dataset}]")

        log_parts.append(record.getMessage())

        if record.exc_info:
            log_parts.append("\n" + self.formatException(record.exc_info))

        return " ".join(log_parts)


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in ('run_id', 'dataset'):
            if hasattr(record, key):
                payload[key] = getattr(record, key)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO", log_format: str = "json") -> None:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Logging level name
        log_format: "json" for JsonFormatter, anything else for StructuredFormatter
    """
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt='%Y-%m-%dT%H:%M:%S'))
    else:
        handler.setFormatter(StructuredFormatter(datefmt='%Y-%m-%d %H:%M:%S'))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())


__all__ = [
    "get_logger",
    "set_run_id",
    "set_dataset",
    "clear_context",
    "configure_logging",
    "StructuredFormatter",
    "JsonFormatter",
    "StructuredLoggerAdapter",
]
