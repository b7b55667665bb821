"""Job state transitions and their persistence in ``job_tracking``.

A job starts ``submitted``; a worker claiming it moves it to ``in_progress``.
From there the aggregate status is never written directly: it is derived
from the four stage statuses (see :attr:`Job.status`). Terminal transitions
stamp ``completed_at``.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Optional

from ..db import postgres as store
from ..errors import InvalidTransitionError, JobNotFoundError
from ..logging import EventLog, jlog
from .models import STAGE_ORDER, Job, JobStatus, Stage, StageStatus, utcnow


def claim(job: Job, *, now: datetime | None = None) -> Job:
    """``submitted -> in_progress``. Rendering that was not requested succeeds trivially."""

    if job.status is not JobStatus.SUBMITTED:
        raise InvalidTransitionError(f"job {job.id!r} cannot be claimed from {job.status.value}")
    job.started_at = now or utcnow()
    if not job.render_requested:
        job.stages[Stage.RENDER] = StageStatus.SUCCEEDED
    return job


def set_stage(job: Job, stage: Stage, status: StageStatus, *, now: datetime | None = None) -> JobStatus:
    """Set one stage status and return the re-derived job status."""

    current = job.status
    if current is JobStatus.SUBMITTED:
        raise InvalidTransitionError(f"job {job.id!r} has not been claimed")
    if current.terminal:
        raise InvalidTransitionError(f"job {job.id!r} is already {current.value}")
    job.stages[stage] = status
    derived = job.status
    if derived.terminal and job.completed_at is None:
        job.completed_at = now or utcnow()
    return derived


def job_from_tracking_row(row: dict[str, Any]) -> Job:
    """Rebuild a :class:`Job` from a ``job_tracking`` row."""

    stages = {s: StageStatus(row.get(store.STAGE_COLUMNS[s.value]) or "pending") for s in STAGE_ORDER}
    return Job(
        id=str(row["job_id"]),
        query=row.get("query") or "",
        location=row.get("location") or "",
        created_at=row.get("created_at") or utcnow(),
        started_at=row.get("started_at"),
        completed_at=row.get("completed_at"),
        render_requested=bool(row.get("render_requested", True)),
        stages=stages,
        last_error=row.get("error_message"),
    )


class JobTracker:
    """Apply state transitions to jobs and mirror them into the record store.

    The in-memory job only keeps a transition once the store accepted it; a
    failed write restores the previous state and re-raises.
    """

    def __init__(self, con, *, log: EventLog = jlog, dry_run: bool = False) -> None:
        self._con = con
        self._log = log
        self._dry_run = dry_run
        self._locks: dict[tuple[str, Stage], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _stage_lock(self, job_id: str, stage: Stage) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((job_id, stage), threading.Lock())

    def _release(self, job_id: str) -> None:
        with self._locks_guard:
            for stage in STAGE_ORDER:
                self._locks.pop((job_id, stage), None)

    def register(self, job: Job) -> Job:
        store.create_job_tracking(self._con, job, dry_run=self._dry_run)
        self._log("info", event="job_registered", job_id=job.id, query=job.query, location=job.location)
        return job

    def load(self, job_id: str) -> Job:
        row = store.get_job_tracking(self._con, job_id)
        if row is None:
            raise JobNotFoundError(job_id, "job_tracking")
        return job_from_tracking_row(row)

    def claim(self, job: Job) -> Job:
        previous = (job.started_at, job.stages[Stage.RENDER])
        claim(job)
        try:
            store.update_job_status(
                self._con, job.id, JobStatus.IN_PROGRESS.value, started_at=job.started_at, dry_run=self._dry_run
            )
            if not job.render_requested:
                store.update_stage_status(
                    self._con, job.id, Stage.RENDER.value, StageStatus.SUCCEEDED.value, dry_run=self._dry_run
                )
        except Exception:
            job.started_at, job.stages[Stage.RENDER] = previous
            raise
        self._log("info", event="job_claimed", job_id=job.id, render_requested=job.render_requested)
        return job

    def set_stage(
        self,
        job: Job,
        stage: Stage,
        status: StageStatus,
        *,
        error_message: Optional[str] = None,
    ) -> JobStatus:
        """Update one stage; only this stage's column (and a changed job status) is written."""

        with self._stage_lock(job.id, stage):
            before = job.status
            previous = (job.stages[stage], job.completed_at, job.last_error)
            derived = set_stage(job, stage, status)
            if error_message:
                job.last_error = error_message
            changed = derived is not before
            try:
                store.update_stage_status(
                    self._con,
                    job.id,
                    stage.value,
                    status.value,
                    error_message=error_message,
                    job_status=derived.value if changed else None,
                    completed_at=job.completed_at if derived.terminal else None,
                    dry_run=self._dry_run,
                )
            except Exception:
                job.stages[stage], job.completed_at, job.last_error = previous
                raise
        level = "error" if status is StageStatus.FAILED else "info"
        self._log(level, event="stage_status", job_id=job.id, stage=stage.value, status=status.value, error=error_message)
        if changed:
            self._log("info", event="job_status", job_id=job.id, status=derived.value)
        if derived.terminal:
            self._release(job.id)
        return derived


__all__ = ["JobTracker", "claim", "job_from_tracking_row", "set_stage"]
