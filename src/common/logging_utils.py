"""Centralized logging helpers.

Provides a single place to configure the root logger plus small utilities
used throughout the codebase for structured DEBUG traces:

* ``extra_context`` builds the ``extra=`` mapping attached to log records.
* ``is_debug_enabled`` guards expensive DEBUG payload construction.
* ``Timer`` measures wall-clock durations for request/stage logging.
* ``safe_url`` / ``redact`` keep API keys out of log output.
"""
from __future__ import annotations

import json
import logging
import os
import re
import sys
import time
import urllib.parse
from typing import Any, Dict, Optional

from constants import Constants

_REDACT_PARAMS = {"api_key", "apikey", "token", "access_token", "key"}
_REDACTED = "***"
_SECRET_PATTERN = re.compile(r"(api_key|apikey|token|access_token)=([^&\s]+)", re.IGNORECASE)

# Attributes present on every LogRecord; anything else came in via ``extra=``.
_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line, including extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": round(record.created, 3),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    Level precedence: explicit argument, then ``DEPSIM_LOG_LEVEL``, then INFO.
    ``DEPSIM_LOG_FORMAT=json`` switches to one JSON object per record.
    Re-running replaces the handler this function installed previously.
    """
    level_name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_depsim_handler", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if os.environ.get(Constants.ENV_LOG_FORMAT, "").lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
    handler._depsim_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level_value)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build a structured ``extra=`` mapping, dropping ``None`` values."""
    return {key: value for key, value in fields.items() if value is not None}


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when DEBUG records would be emitted by ``logger``."""
    return logger.isEnabledFor(logging.DEBUG)


def safe_url(url: str) -> str:
    """Return ``url`` with credential-like query parameters redacted."""
    try:
        parts = urllib.parse.urlsplit(url)
    except ValueError:
        return redact(url)
    if not parts.query:
        return url
    query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
    cleaned = [
        (key, _REDACTED if key.lower() in _REDACT_PARAMS else value)
        for key, value in query
    ]
    return urllib.parse.urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urllib.parse.urlencode(cleaned, safe="*"), parts.fragment)
    )


def redact(text: str) -> str:
    """Mask ``key=value`` secrets embedded in free text."""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}={_REDACTED}", text)


class Timer:
    """Context manager measuring elapsed wall-clock time."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds; live value while the block is still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
