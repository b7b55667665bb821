"""Structured logging helpers shared by the extraction and job-tracking components.

Every record is one JSON object per line under the ``serp_ads`` logger.
Scoped fields live in a :class:`contextvars.ContextVar`, so concurrent
pipeline workers (one asyncio task per worker) each see only their own
``job_id`` and stage.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Mapping

UTC = getattr(datetime, "UTC", timezone.utc)
LOGGER_NAME = "serp_ads"

_configured = False
_base_context: dict[str, Any] = {}
_scoped_context: ContextVar[Mapping[str, Any]] = ContextVar("serp_ads_log_context", default={})

# Signature shared by ``jlog`` and any injected sink: ``log("info", event=..., **fields)``.
EventLog = Callable[..., None]


def configure_logging(level: int = logging.INFO) -> None:
    """Install the line format once; later calls are no-ops."""

    global _configured
    if _configured:
        return
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")
    _configured = True


def set_global_context(**fields: Any) -> None:
    """Fields attached to every record for the rest of the process (``None`` values are skipped)."""

    _base_context.update({k: v for k, v in fields.items() if v is not None})


@contextmanager
def logging_context(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to records emitted inside the ``with`` block (and tasks it spawns)."""

    merged = {**_scoped_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _scoped_context.set(merged)
    try:
        yield
    finally:
        _scoped_context.reset(token)


def current_context() -> dict[str, Any]:
    return {**_base_context, **_scoped_context.get()}


def jlog(level: str, /, **fields: Any) -> None:
    """Emit one JSON record; explicit fields win over context fields."""

    record = {"ts": datetime.now(UTC).isoformat(), **current_context(), **fields}
    emit = getattr(logging.getLogger(LOGGER_NAME), level.lower())
    emit(json.dumps(record, ensure_ascii=False, sort_keys=True, default=str))


def joblog(event: str, *, job_id: str, level: str = "info", **kw: Any) -> None:
    """Shortcut for job-scoped JSON logging records."""

    jlog(level, event=event, job_id=job_id, **kw)


__all__ = [
    "EventLog",
    "LOGGER_NAME",
    "configure_logging",
    "current_context",
    "jlog",
    "joblog",
    "logging_context",
    "set_global_context",
]
