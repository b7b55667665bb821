"""Drive one job through fetch -> parse -> extract -> render, recording failures.

The content-fetching service and the renderer are injected callables; either
may be sync or async. Each stage runs through :func:`run_stage`, so stage
statuses, retries and the derived job status are handled in one place. A
stage that ends failed is written to the failure ledger with the matching
reason and the job stops there.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from .config import Settings
from .db import postgres as store
from .errors import FetchError, MalformedMarkupError, SerpAdsError, StoreError
from .extraction import ExtractionEngine, ExtractionResult
from .jobs.failures import FailureLedger, FailureReason
from .jobs.models import Job, JobStatus, Stage
from .jobs.runner import run_stage
from .jobs.state import JobTracker
from .logging import jlog, logging_context

Fetcher = Callable[[str, str], Union[str, Awaitable[str]]]
Renderer = Callable[[Job, ExtractionResult, Optional[int]], Any]


@dataclass
class JobOutcome:
    job_id: str
    status: JobStatus
    result: Optional[ExtractionResult] = None
    serp_id: Optional[int] = None
    failed_stage: Optional[Stage] = None
    error: Optional[str] = None


def _failure_reason(stage: Stage, exc: BaseException) -> FailureReason:
    if isinstance(exc, StoreError):
        return FailureReason.STORE_WRITE_ERROR
    if isinstance(exc, MalformedMarkupError):
        return FailureReason.MALFORMED_MARKUP
    return {
        Stage.FETCH: FailureReason.UPSTREAM_FETCH_ERROR,
        Stage.PARSE: FailureReason.MALFORMED_MARKUP,
        Stage.EXTRACT: FailureReason.STORE_WRITE_ERROR,
        Stage.RENDER: FailureReason.RENDER_ERROR,
    }[stage]


def _record(ledger: FailureLedger, job: Job, reason: FailureReason) -> None:
    try:
        ledger.record(job.id, job.query, reason)
    except StoreError as exc:
        jlog("error", event="failure_record_lost", job_id=job.id, reason=reason.value, error=str(exc))


async def process_job(
    con,
    job: Job,
    fetcher: Fetcher,
    *,
    renderer: Optional[Renderer] = None,
    engine: Optional[ExtractionEngine] = None,
    tracker: Optional[JobTracker] = None,
    ledger: Optional[FailureLedger] = None,
    max_attempts: Optional[int] = None,
    retry_base_ms: Optional[int] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    dry_run: bool = False,
) -> JobOutcome:
    """Run every stage for ``job``; returns the outcome instead of raising stage failures.

    Retry limits not passed explicitly come from :meth:`Settings.from_env`.
    A job the store refuses to register or claim comes back failed with no
    ``failed_stage``.
    """

    if job.render_requested and renderer is None:
        raise ValueError(f"job {job.id!r} requests rendering but no renderer was supplied")

    engine = engine or ExtractionEngine()
    tracker = tracker or JobTracker(con, dry_run=dry_run)
    ledger = ledger or FailureLedger(con, dry_run=dry_run)
    outcome = JobOutcome(job_id=job.id, status=job.status)
    if max_attempts is None or retry_base_ms is None:
        settings = Settings.from_env()
        max_attempts = settings.max_attempts if max_attempts is None else max_attempts
        retry_base_ms = settings.retry_base_ms if retry_base_ms is None else retry_base_ms
    retry = {"max_attempts": max_attempts, "retry_base_ms": retry_base_ms, "sleep": sleep}

    async def fetch() -> str:
        try:
            content = fetcher(job.query, job.location)
            if inspect.isawaitable(content):
                content = await content
        except (FetchError, StoreError):
            raise
        except Exception as exc:
            raise FetchError("fetch_serp", f"{type(exc).__name__}: {exc}") from exc
        if isinstance(content, str):
            store.stage_serp(
                con, job_id=job.id, query=job.query, location=job.location, content=content, dry_run=dry_run
            )
        return content

    def parse(markup: Any) -> ExtractionResult:
        if not isinstance(markup, str) or not markup.strip():
            raise MalformedMarkupError(f"job {job.id!r}: fetched content is empty or not text")
        result = engine.extract(markup)
        if result.markers_found and result.metrics.total_ads == 0:
            _record(ledger, job, FailureReason.NO_AD_CONTAINERS)
        return result

    def persist(result: ExtractionResult) -> Optional[int]:
        serp_id = store.store_extraction(
            con, job_id=job.id, query=job.query, location=job.location, result=result, dry_run=dry_run
        )
        store.mark_staging(con, job.id, "processed", dry_run=dry_run)
        return serp_id

    with logging_context(job_id=job.id):
        try:
            tracker.register(job)
            tracker.claim(job)
        except SerpAdsError as exc:
            outcome.status = JobStatus.FAILED
            outcome.error = str(exc) or type(exc).__name__
            if isinstance(exc, StoreError):
                _record(ledger, job, FailureReason.STORE_WRITE_ERROR)
            jlog("error", event="job_not_started", error=outcome.error)
            return outcome

        stage = Stage.FETCH
        try:
            markup = await run_stage(tracker, job, stage, fetch, **retry)

            stage = Stage.PARSE
            try:
                outcome.result = await run_stage(tracker, job, stage, lambda: parse(markup), **retry)
            except MalformedMarkupError as exc:
                if isinstance(markup, str):
                    store.mark_staging(con, job.id, "error", error_message=str(exc), dry_run=dry_run)
                raise

            stage = Stage.EXTRACT
            result = outcome.result
            outcome.serp_id = await run_stage(tracker, job, stage, lambda: persist(result), **retry)

            if job.render_requested and renderer is not None:
                stage = Stage.RENDER
                serp_id = outcome.serp_id
                await run_stage(tracker, job, stage, lambda: renderer(job, result, serp_id), **retry)
        except Exception as exc:
            outcome.failed_stage = stage
            outcome.error = str(exc) or type(exc).__name__
            _record(ledger, job, _failure_reason(stage, exc))
            jlog("error", event="job_failed", stage=stage.value, error=outcome.error)

    outcome.status = job.status
    jlog("info", event="job_processed", job_id=job.id, status=outcome.status.value)
    return outcome


async def _producer(queue: asyncio.Queue, jobs: Iterable[Job], workers: int) -> None:
    for job in jobs:
        await queue.put(job)
    for _ in range(workers):
        await queue.put(None)


async def _consumer(queue: asyncio.Queue, outcomes: list[JobOutcome], con, fetcher: Fetcher, pace_s: float, kw: dict) -> None:
    while True:
        job = await queue.get()
        if job is None:
            queue.task_done()
            break
        try:
            outcome = await process_job(con, job, fetcher, **kw)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            jlog("error", event="job_crashed", job_id=job.id, error=error)
            outcome = JobOutcome(job_id=job.id, status=JobStatus.FAILED, error=error)
        finally:
            queue.task_done()
        outcomes.append(outcome)
        if pace_s:
            await asyncio.sleep(random.uniform(0, pace_s))


async def run_jobs(
    con,
    jobs: Iterable[Job],
    fetcher: Fetcher,
    *,
    concurrency: int = 2,
    pace_s: float = 0.0,
    **kw: Any,
) -> list[JobOutcome]:
    """Process ``jobs`` with ``concurrency`` workers; keyword arguments go to :func:`process_job`.

    A job that raises is logged and reported as a failed outcome; the other
    jobs keep running.
    """

    queue: asyncio.Queue = asyncio.Queue()
    outcomes: list[JobOutcome] = []
    prod = asyncio.create_task(_producer(queue, jobs, concurrency))
    workers = [asyncio.create_task(_consumer(queue, outcomes, con, fetcher, pace_s, kw)) for _ in range(concurrency)]
    await prod
    await asyncio.gather(*workers)
    return outcomes


__all__ = ["Fetcher", "JobOutcome", "Renderer", "process_job", "run_jobs"]
