"""smsrental logging configuration.

Call ``configure_logging()`` once at process startup (``__main__`` or the
API lifespan).  Every other module defines its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Supported environment variables (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT  text | json                      (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_logging", "JsonFormatter", "SYNC_ID_CTX", "SyncContextFilter"]

# ---------------------------------------------------------------------------
# Sync-scoped context variable
# ---------------------------------------------------------------------------

#: Correlation id of the sync run the current task belongs to.  Set by
#: :class:`~smsrental.orchestrator.sync.SyncOrchestrator` for every provider
#: fetch (``uuid4().hex[:8]``) and by the scheduler for a whole pass.  Child
#: tasks inherit it.  ``"-"`` outside of any sync.
SYNC_ID_CTX: ContextVar[str] = ContextVar("sync_id", default="-")

logger = logging.getLogger(__name__)

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_FORMATS = {"text", "json"}

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(sync_id)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

#: Third-party loggers capped at WARNING unless DEBUG is requested.
_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "asyncio", "aiosqlite", "uvicorn.access")


class SyncContextFilter(logging.Filter):
    """Copy :data:`SYNC_ID_CTX` onto every record as ``record.sync_id``.

    Installed on the handler, so it runs right before formatting for every
    record that reaches it.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.sync_id = SYNC_ID_CTX.get("-")
        return True


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure the root logger for the entire process.

    Args:
        level: Logging level string (DEBUG/INFO/WARNING/ERROR/CRITICAL).
            Falls back to ``$LOG_LEVEL``, then ``"INFO"``.
        fmt: Output format (``"text"`` or ``"json"``).
            Falls back to ``$LOG_FORMAT``, then ``"text"``.
        force: Reconfigure even if the root logger already has handlers.

    Raises:
        ValueError: If *level* or *fmt* contain an unrecognised value.
    """
    resolved_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved_fmt = (fmt or os.environ.get("LOG_FORMAT", "text")).lower()

    if resolved_level not in _VALID_LEVELS:
        raise ValueError(
            f"Unknown LOG_LEVEL {resolved_level!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_LEVELS))}"
        )
    if resolved_fmt not in _VALID_FORMATS:
        raise ValueError(
            f"Unknown LOG_FORMAT {resolved_fmt!r}. "
            f"Must be one of: {', '.join(sorted(_VALID_FORMATS))}"
        )

    root = logging.getLogger()

    if root.handlers and not force:
        # Already configured (pytest log_cli, uvicorn); only adjust the level.
        root.setLevel(resolved_level)
        return

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved_level)
    handler.addFilter(SyncContextFilter())

    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.setLevel(resolved_level)
    root.addHandler(handler)

    if resolved_level != "DEBUG":
        for noisy in _NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record.

    Output shape::

        {
            "ts":      "2026-03-01T09:15:02.114Z",
            "level":   "INFO",
            "logger":  "smsrental.orchestrator.sync",
            "message": "Sync ok for rental 3f2a... (2 new)",
            "event":   "SYNC_OK",
            "sync_id": "a3f2b1c0",
            "extra":   {"rental_id": "3f2a..."}
        }

    ``event`` and ``sync_id`` are lifted out of ``extra`` because every
    log query filters on them.  ``exc_info`` / ``stack_info`` appear only
    when present.
    """

    _RECORD_ATTRS: frozenset[str] = frozenset(
        {
            "args",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
            "event",
            "sync_id",
        }
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        """Serialise *record* to a JSON string."""
        record.message = record.getMessage()

        ts = (
            datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.")
            + f"{int(record.msecs):03d}Z"
        )

        payload: dict[str, Any] = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "event": getattr(record, "event", None),
            "sync_id": getattr(record, "sync_id", "-"),
            "extra": {k: v for k, v in record.__dict__.items() if k not in self._RECORD_ATTRS},
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text

        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)

        try:
            return json.dumps(payload, default=str)
        except (TypeError, ValueError):  # pragma: no cover
            return json.dumps(
                {
                    "ts": ts,
                    "level": "ERROR",
                    "logger": __name__,
                    "message": "JsonFormatter serialisation error",
                    "exc_info": traceback.format_exc(),
                    "extra": {},
                }
            )
