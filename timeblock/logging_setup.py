# timeblock/logging_setup.py
"""JSON log file for planner runs; each record carries the day being planned."""

import contextvars
import json
import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

LOG_FILE = Path("logs") / "timeblock.log"
ROTATE_BYTES = 512_000
ROTATE_KEEP = 5

_plan_date: contextvars.ContextVar[Optional[date]] = contextvars.ContextVar("plan_date", default=None)


@contextmanager
def plan_context(day: date) -> Iterator[None]:
    """Tag every record logged inside the block (in this thread) with `day`."""
    token = _plan_date.set(day)
    try:
        yield
    finally:
        _plan_date.reset(token)


class PlanDateFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        day = _plan_date.get()
        record.plan_date = day.isoformat() if day is not None else None
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; `extra={"fields": {...}}` is merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        plan_date = getattr(record, "plan_date", None)
        if plan_date is not None:
            entry["plan_date"] = plan_date
        entry.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _owned(handler: logging.Handler) -> bool:
    return getattr(handler, "timeblock", False)


def configure_logging(base_dir, level: int = logging.INFO, console: bool = True) -> Path:
    """
    Install the planner's handlers on the root logger and return the log file path.

    Handlers installed by an earlier call are replaced; foreign handlers stay.
    """
    logfile = Path(base_dir) / LOG_FILE
    logfile.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    for h in [h for h in root.handlers if _owned(h)]:
        root.removeHandler(h)
        h.close()
    root.setLevel(level)

    handlers = [RotatingFileHandler(logfile, maxBytes=ROTATE_BYTES, backupCount=ROTATE_KEEP, encoding="utf-8")]
    handlers[0].setFormatter(JsonFormatter())
    if console:
        handlers.append(logging.StreamHandler())
        handlers[-1].setFormatter(logging.Formatter("%(levelname)s %(name)s [%(plan_date)s] %(message)s"))
    for h in handlers:
        h.timeblock = True
        h.addFilter(PlanDateFilter())
        root.addHandler(h)

    logging.getLogger(__name__).info(
        "logging to %s", logfile, extra={"fields": {"level_name": logging.getLevelName(level)}}
    )
    return logfile
