"""Logging configuration.

Supports two output formats:
  - **human** – single-line, readable
  - **json**  – newline-delimited JSON for log aggregators

Every handler carries a SecretRedactionFilter so that registered
sensitive values (wallet secrets, encrypted blobs) never reach output.
"""

import json
import logging
import sys
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

REDACTED = "***"

# value -> number of active registrations
_sensitive_values: Counter = Counter()
_sensitive_lock = threading.Lock()


def register_sensitive(value: Optional[str]) -> None:
    """Mark a value as sensitive so log output masks it."""
    if not value or len(value) < 4:
        return
    with _sensitive_lock:
        _sensitive_values[value] += 1


def unregister_sensitive(value: Optional[str]) -> None:
    """Drop one registration; the value stays masked while others remain."""
    if not value:
        return
    with _sensitive_lock:
        _sensitive_values[value] -= 1
        if _sensitive_values[value] <= 0:
            del _sensitive_values[value]


def clear_sensitive() -> None:
    """Forget all sensitive values (useful for testing)."""
    with _sensitive_lock:
        _sensitive_values.clear()


def redact(text: str) -> str:
    """Mask every registered sensitive value in text."""
    with _sensitive_lock:
        values = sorted(_sensitive_values, key=len, reverse=True)
    for value in values:
        if value in text:
            text = text.replace(value, REDACTED)
    return text


class SecretRedactionFilter(logging.Filter):
    """Rewrite log records so registered secrets are masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class _JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = redact(self.formatException(record.exc_info))
        return json.dumps(log_obj, default=str)


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger.

    Args:
        level: Log level name (defaults to settings.log_level)
        fmt: "human" or "json" (defaults to settings.log_format)
    """
    if level is None or fmt is None:
        from ecoswap.config import get_settings

        settings = get_settings()
        level = level or ("DEBUG" if settings.debug else settings.log_level)
        fmt = fmt or settings.log_format

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    handler.addFilter(SecretRedactionFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
