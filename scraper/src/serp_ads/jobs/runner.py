"""Run a single pipeline stage with bounded retries and exponential backoff."""

from __future__ import annotations

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, TypeVar, Union

from ..config import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_BASE_MS, DEFAULT_RETRY_JITTER_S
from ..errors import SerpAdsError
from ..logging import EventLog, jlog
from .models import Job, Stage, StageStatus
from .state import JobTracker

T = TypeVar("T")
StageAction = Callable[[], Union[T, Awaitable[T]]]


def is_retryable(exc: BaseException) -> bool:
    """Typed failures declare it; anything unexpected counts against the budget."""

    if isinstance(exc, SerpAdsError):
        return exc.retryable
    return isinstance(exc, Exception)


def backoff_delay(attempt: int, retry_base_ms: int, jitter_s: float = DEFAULT_RETRY_JITTER_S) -> float:
    """Seconds to wait after the ``attempt``-th failure (0-based)."""

    return (retry_base_ms / 1000.0) * (2**attempt) + (random.uniform(0, jitter_s) if jitter_s else 0.0)


def _mark_failed(tracker: JobTracker, job: Job, stage: Stage, exc: BaseException, log: EventLog) -> None:
    try:
        tracker.set_stage(job, stage, StageStatus.FAILED, error_message=str(exc) or type(exc).__name__)
    except SerpAdsError as mark_exc:
        log("error", event="stage_status_lost", job_id=job.id, stage=stage.value, status="failed", error=str(mark_exc))


async def run_stage(
    tracker: JobTracker,
    job: Job,
    stage: Stage,
    action: StageAction[T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_base_ms: int = DEFAULT_RETRY_BASE_MS,
    jitter_s: float = DEFAULT_RETRY_JITTER_S,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    log: EventLog = jlog,
) -> T:
    """Mark ``stage`` running, call ``action`` until it succeeds or the budget is spent.

    The running/succeeded status writes share the attempt budget with the
    action itself. Once the action has returned it is not called again; a
    retry after that only repeats the status write. On a non-retryable error,
    or after ``max_attempts`` failures, the stage is marked failed and the last
    exception re-raised.
    """

    attempt = 0
    done = False
    value: Any = None
    while True:
        job.attempts[stage] += 1
        try:
            if job.stages[stage] is not StageStatus.RUNNING:
                tracker.set_stage(job, stage, StageStatus.RUNNING)
            if not done:
                value = action()
                if inspect.isawaitable(value):
                    value = await value
                done = True
            tracker.set_stage(job, stage, StageStatus.SUCCEEDED)
            return value
        except Exception as exc:
            exhausted = attempt + 1 >= max_attempts
            if exhausted or not is_retryable(exc):
                _mark_failed(tracker, job, stage, exc, log)
                raise
            delay = backoff_delay(attempt, retry_base_ms, jitter_s)
            log(
                "info",
                event="retry_backoff",
                job_id=job.id,
                stage=stage.value,
                attempt=attempt + 1,
                delay_s=round(delay, 3),
                error=str(exc),
            )
            await sleep(delay)
            attempt += 1


__all__ = ["StageAction", "backoff_delay", "is_retryable", "run_stage"]
