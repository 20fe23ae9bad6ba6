"""hypeledger.core.log

Logging is stdlib. Messages are snake_case event names; context rides in ``extra``.

    logger.info("click_applied", extra={"user_id": ..., "drop_id": ...})
"""

from __future__ import annotations

import json
import logging
from typing import Any

from hypeledger.core.config import LoggingConfig

# Attributes every LogRecord carries; anything else came from ``extra``.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        body: dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        body.update(_extras(record))
        if record.exc_info:
            body["exc"] = self.formatException(record.exc_info)
        return json.dumps(body, sort_keys=True, default=str)


class KeyValueFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extras(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def configure_logging(cfg: LoggingConfig) -> None:
    """Install a single handler on the ``hypeledger`` logger. Idempotent."""

    logger = logging.getLogger("hypeledger")
    logger.setLevel(str(cfg.level).upper())
    for h in list(logger.handlers):
        if getattr(h, "_hypeledger", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if cfg.json_output else KeyValueFormatter())
    handler._hypeledger = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
