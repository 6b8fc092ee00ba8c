"""Process-wide logging configuration for the command line tools."""

from __future__ import annotations

import json
import logging
import os
import sys
from typing import IO, Any

_DEV_FORMAT = "%(asctime)s\t%(levelname)s\t%(name)s\t%(message)s"
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class _ManagedHandler(logging.StreamHandler):
    """Marks the handler installed by setup_logging so it can be replaced."""


class _JsonFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": record.levelname.lower(),
            "ts": record.created,
            "logger": record.name,
            "caller": f"{os.path.basename(record.pathname)}:{record.lineno}",
            "msg": record.getMessage(),
        }
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _RESERVED
        )
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _is_terminal(stream: IO[str]) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None:
        return False
    try:
        return bool(isatty())
    except (ValueError, OSError):
        return False


def setup_logging(verbose: bool = False, stream: IO[str] | None = None) -> logging.Logger:
    """Configure the root logger and return it.

    A terminal gets human-readable lines at debug level; anything else gets
    JSON lines at info level. ``verbose`` always enables debug logging.
    """
    stream = sys.stdout if stream is None else stream
    handler = _ManagedHandler(stream)
    if _is_terminal(stream):
        handler.setFormatter(logging.Formatter(_DEV_FORMAT))
        level = logging.DEBUG
    else:
        handler.setFormatter(_JsonFormatter())
        level = logging.INFO
    if verbose:
        level = logging.DEBUG

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _ManagedHandler)]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(True)
    return root