"""Logging for the ingestion service.

One console handler on the ``event_ingest`` logger, text or JSON output, and a
LoggerAdapter that stamps every record of an ingestion task with its site,
task id, external id and pipeline stage.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

PACKAGE_LOGGER = "event_ingest"

CONTEXT_FIELDS = ("site", "task_id", "external_id", "stage")


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Context fields present on the record, in CONTEXT_FIELDS order."""
    found = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


# ---------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields and ``payload`` at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_record_context(record),
        }

        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            entry["payload"] = payload
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)

        # Decimal, date and exceptions end up in payloads
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``LEVEL logger [site=.. task_id=..] message``"""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname} {record.name}"
        context = _record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        line += f" {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ---------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingOptions:
    level: str = "INFO"
    json_logs: bool = False


def setup_logging(options: LoggingOptions | None = None) -> logging.Logger:
    """(Re)configure the package logger with a single stderr handler."""
    options = options or LoggingOptions()
    level = getattr(logging, options.level.upper(), logging.INFO)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    # stdout is reserved for command output (JSON summaries)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter() if options.json_logs else TextFormatter())
    logger.addHandler(handler)
    return logger


# ---------------------------------------------------------------------
# Context injection
# ---------------------------------------------------------------------


class ContextAdapter(logging.LoggerAdapter):
    """Adds the adapter's context to each call's ``extra`` (call values win)."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextAdapter":
        """Return a new adapter with extra context fields added."""
        extra = dict(self.extra)
        extra.update((k, v) for k, v in fields.items() if v is not None)
        return ContextAdapter(self.logger, extra)


def with_context(
    logger: logging.Logger | logging.LoggerAdapter,
    *,
    site: str | None = None,
    task_id: str | None = None,
    external_id: str | None = None,
    stage: str | None = None,
) -> ContextAdapter:
    """Wrap a logger (or extend an adapter) with ingestion context."""
    if isinstance(logger, logging.LoggerAdapter):
        base = ContextAdapter(logger.logger, dict(logger.extra or {}))
    else:
        base = ContextAdapter(logger, {})
    return base.bind(site=site, task_id=task_id, external_id=external_id, stage=stage)
