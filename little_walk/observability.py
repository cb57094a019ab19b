"""
Logging setup for the Little Walk service.

Lifecycle and HTTP log lines carry the walk request, actor and verb they
concern as `extra` attributes. The json format turns those attributes into
fields of one object per line; the text format appends them as key=value
pairs.
"""

import json
import logging
from datetime import UTC, datetime
from typing import Any

CONTEXT_FIELDS = ("walk_request_id", "actor_id", "verb", "error_code", "path")
HANDLER_NAME = "little_walk"


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object stamped with its creation time."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        context = _context(record)
        if not context:
            return line
        return line + " " + " ".join(f"{key}={value}" for key, value in context.items())


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Install the service's handler on the root logger.

    Args:
        level: Level name such as "INFO"; unknown names fall back to INFO
        fmt: "json" or "text"

    A handler installed by an earlier call is replaced, not duplicated.
    """
    handler = logging.StreamHandler()
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())

    for existing in list(logging.root.handlers):
        if existing.get_name() == HANDLER_NAME:
            logging.root.removeHandler(existing)
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
