"""Structured JSON logging configuration.

Provides:
  - JSON-formatted log output for CI / long-running campaigns
  - Human-readable colored output for development
  - Seed and step correlation on every record emitted during a sequence
"""

from __future__ import annotations

import logging
import json
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

_CONTEXT_FIELDS = ("seed", "sequence_id", "step", "handler", "actor")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for machine consumption."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _CONTEXT_FIELDS + ("duration_ms",):
            value = getattr(record, key, None)
            if value is not None and value != "":
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        prefix = f"{color}{ts} [{record.levelname:>8s}]{self.RESET}"
        msg = record.getMessage()

        seed = getattr(record, "seed", None)
        if seed is not None and seed != "":
            step = getattr(record, "step", None)
            tag = f"seed={seed}" if step in (None, "") else f"seed={seed} step={step}"
            handler = getattr(record, "handler", None)
            if handler:
                tag += f" {handler}"
            msg = f"[{tag}] {msg}"

        base = f"{prefix} {record.name}: {msg}"
        if record.exc_info and record.exc_info[1]:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging(env: str = "development", log_level: str = "INFO") -> None:
    """Configure logging for the harness.

    Args:
        env: Application environment (development/staging/production)
        log_level: Minimum log level
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if env in ("staging", "production"):
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevFormatter())

    root.addHandler(handler)

    # The reference vault is chatty at DEBUG
    logging.getLogger("vaultfuzz.sut").setLevel(
        logging.DEBUG if log_level.upper() == "DEBUG" and env == "development" else logging.INFO
    )


class SequenceLogFilter(logging.Filter):
    """Filter that stamps sequence context onto log records."""

    def __init__(self, seed: int | None = None, sequence_id: str = "") -> None:
        super().__init__()
        self.seed = seed
        self.sequence_id = sequence_id
        self.step: int | None = None
        self.handler: str | None = None
        self.actor: str | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        record.seed = self.seed  # type: ignore[attr-defined]
        record.sequence_id = self.sequence_id  # type: ignore[attr-defined]
        record.step = self.step  # type: ignore[attr-defined]
        record.handler = self.handler  # type: ignore[attr-defined]
        record.actor = self.actor  # type: ignore[attr-defined]
        return True


@contextmanager
def sequence_context(seed: int | None, sequence_id: str = "") -> Iterator[SequenceLogFilter]:
    """Attach a :class:`SequenceLogFilter` to every root handler for the block."""
    log_filter = SequenceLogFilter(seed=seed, sequence_id=sequence_id)
    handlers = list(logging.getLogger().handlers)
    for handler in handlers:
        handler.addFilter(log_filter)
    try:
        yield log_filter
    finally:
        for handler in handlers:
            handler.removeFilter(log_filter)
