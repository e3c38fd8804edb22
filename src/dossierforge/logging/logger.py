# src/dossierforge/logging/logger.py - v1
"""Logger setup for pipeline runs.

Every record carries the run_id and step of the task that emitted it
(see logging/context.py), so interleaved output from parallel steps can
be told apart. JSON lines for machines, one-line text for terminals.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dossierforge.logging.context import get_context

ROOT_LOGGER = "dossierforge"

# Provider SDKs and their HTTP transport log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")


class JsonFormatter(logging.Formatter):
    """One JSON object per record with run/step context at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **get_context().as_dict(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """`HH:MM:SS LEVEL run_id/step logger: message`."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        where = "/".join(p for p in (ctx.run_id, ctx.step) if p) or "-"
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        line = f"{stamp} {record.levelname:<7} {where} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1] is not None:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> logging.Logger:
    """Configure the package logger; safe to call more than once.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.
        log_format: "json" or "text".
        log_file: Optional rotating log file next to stdout.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.

    Returns:
        The configured package root logger.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        from dossierforge.logging.handlers import create_rotating_handler

        handlers.append(create_rotating_handler(str(log_file), rotation, retention))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    sdk_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)
    return root
