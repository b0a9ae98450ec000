"""
Logging setup: plain text or one JSON object per line.

Library modules only call logging.getLogger(__name__); applications call
setup_logging() once at startup.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Any

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes every LogRecord has; anything else came in through `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON formatter with a fixed schema plus any `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                log_data[key] = value
        return json.dumps(log_data, default=str)


def setup_logging(level: str | int = "INFO", json_format: bool = False, stream: IO[str] | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name or number.
        json_format: Emit JSON lines instead of plain text.
        stream: Output stream (default stderr).
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for noisy in ("httpx", "httpcore", "botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
