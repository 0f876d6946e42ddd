# src/manuscript_pipeline/logging/logger.py — v1
"""Formatters and one-shot configuration for the package logger tree.

Modules log through ``logging.getLogger(__name__)``, so every record lands
under ``manuscript_pipeline`` and inherits whatever setup_logging() attached.
Both formatters stamp the worker/report/stage context of the emitting task.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from manuscript_pipeline.logging.context import LogContext, get_context

ROOT_LOGGER_NAME = "manuscript_pipeline"


class _ContextFormatter(logging.Formatter):
    @staticmethod
    def created_at(record: logging.LogRecord) -> datetime:
        return datetime.fromtimestamp(record.created, timezone.utc)

    def exception_text(self, record: logging.LogRecord) -> str | None:
        if not record.exc_info or record.exc_info[1] is None:
            return None
        return self.formatException(record.exc_info)


class JsonFormatter(_ContextFormatter):
    """Single-line JSON records for log shippers.

    Structured payloads go through ``extra={"data": {...}}`` and are emitted
    under the ``data`` key.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.created_at(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            entry["context"] = context
        payload = getattr(record, "data", None)
        if payload:
            entry["data"] = payload
        trace = self.exception_text(record)
        if trace:
            entry["exception"] = trace
        return json.dumps(entry, default=str)


class TextFormatter(_ContextFormatter):
    """Console lines like ``... [INFO    ] name [r1] (keywords#2) - message``."""

    @staticmethod
    def _labels(ctx: LogContext) -> list[str]:
        labels = []
        if ctx.report_id:
            labels.append(f"[{ctx.report_id}]")
        if ctx.stage:
            labels.append(f"({ctx.stage}#{ctx.attempt})" if ctx.attempt else f"({ctx.stage})")
        return labels

    def format(self, record: logging.LogRecord) -> str:
        head = [
            self.created_at(record).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:<8}]",
            record.name,
            *self._labels(get_context()),
        ]
        line = f"{' '.join(head)} - {record.getMessage()}"
        trace = self.exception_text(record)
        return f"{line}\n{trace}" if trace else line


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """Attach stdout (and optionally a rotating file) to the package logger.

    Calling it again swaps the handlers rather than adding to them. Unknown
    level names fall back to INFO; any ``log_format`` other than ``"json"``
    selects the text formatter.
    """
    formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        from manuscript_pipeline.logging.handlers import create_rotating_handler

        handlers.append(create_rotating_handler(log_file, rotation, retention))

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    threshold = logging.getLevelName(level.upper())
    package_logger.setLevel(threshold if isinstance(threshold, int) else logging.INFO)
    for old in package_logger.handlers:
        old.close()
    package_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
