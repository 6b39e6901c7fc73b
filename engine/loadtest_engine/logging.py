"""
Logging setup for the load-test engine.

Worker, disruption and checker tasks all log under the run they belong to:
the coordinator sets `current_run_id` for the duration of a run and every
handler installed by `setup_logging` stamps it onto each record. Output is
either one aligned text line or one JSON object per record.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Run the current task belongs to; inherited by tasks created during the run
current_run_id: ContextVar[str | None] = ContextVar("current_run_id", default=None)

# Key fragments whose values never reach logs or run manifests
REDACTED_FIELDS = frozenset(
    {
        "password",
        "passphrase",
        "secret",
        "token",
        "credential",
        "private_key",
    }
)

REDACTED = "[REDACTED]"
_MAX_REDACT_DEPTH = 10

TEXT_FORMAT = "%(timestamp)s | %(levelname)-8s | %(name)s | %(run_tag)s%(message)s"


def _is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in REDACTED_FIELDS)


def redact_sensitive(data: Any, depth: int = 0) -> Any:
    """
    Return a copy of `data` with the values of sensitive keys replaced.

    Dicts are matched on key, lists and tuples are walked item by item.
    Nesting deeper than the recursion limit is returned unchanged.
    """
    if depth > _MAX_REDACT_DEPTH:
        return data
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_sensitive(value, depth + 1)
            for key, value in data.items()
        }
    if isinstance(data, list | tuple):
        return type(data)(redact_sensitive(item, depth + 1) for item in data)
    return data


class RunContextFilter(logging.Filter):
    """Stamps the ISO timestamp and the current run onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.timestamp = datetime.fromtimestamp(record.created, UTC).isoformat()
        run_id = current_run_id.get()
        record.run_id = run_id
        record.run_tag = f"[{run_id}] " if run_id else ""
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": getattr(record, "timestamp", None)
            or datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", json_output: bool = False) -> logging.Logger:
    """
    Configure the root logger for a load-test session.

    Replaces any existing root handlers with a single stdout handler.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines instead of text

    Returns:
        The configured root logger
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(JsonLineFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_run_id(run_id: str) -> None:
    """Attribute subsequent log lines in this context to `run_id`."""
    current_run_id.set(run_id)


def clear_run_id() -> None:
    current_run_id.set(None)
