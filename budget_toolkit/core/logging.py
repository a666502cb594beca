"""Logging setup for CLI commands that drive the gateway."""

import json
import logging
import sys
from datetime import datetime, timezone

from budget_toolkit.core.config import settings

# Context the gateway attaches via ``extra=``; copied into JSON output when present
CONTEXT_FIELDS = ("model", "attempt", "status_code", "circuit_state")

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_data[name] = value
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """Route all logs to stderr, keeping stdout free for command output."""
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    use_json = settings.log_json if json_format is None else json_format

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if use_json else logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)

    # httpx logs every request at INFO
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
