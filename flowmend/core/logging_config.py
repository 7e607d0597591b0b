"""
Logging configuration.

Library modules only call ``logging.getLogger(__name__)``; applications call
``configure_logging()`` once at startup.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from flowmend.core.config import get_settings

# LogRecord attributes forwarded into structured output when set via ``extra=``
_EXTRA_FIELDS: tuple[str, ...] = (
    "run_id",
    "step",
    "action",
    "attempt",
    "error",
    "will_retry",
    "heuristic",
    "url",
    "selector",
)


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, json_output: bool | None = None) -> logging.Logger:
    """
    Install a single stderr handler on the ``flowmend`` logger.

    Unset arguments come from ``Settings.log_level`` / ``Settings.log_json``.
    """
    if level is None or json_output is None:
        settings = get_settings()
        level = settings.log_level if level is None else level
        json_output = settings.log_json if json_output is None else json_output

    root = logging.getLogger("flowmend")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )
    root.addHandler(handler)
    root.propagate = False
    return root
