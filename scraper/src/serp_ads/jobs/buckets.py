"""Batch queue: jobs move submitted -> in-progress -> completed between durable bucket documents.

Every job id lives in exactly one bucket. Moves go through
:meth:`BatchQueue.move_between`, which holds the queue's mutex for the whole
read-modify-write and, on stores with conditional writes, commits the removal
from the source before appending to the destination so two racing movers can
never both take the same job.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Union

from ..config import COMPLETED_DISPLAY_LIMIT, DEFAULT_ARCHIVE_KEEP, SUBMITTED_DISPLAY_LIMIT
from ..errors import ConcurrentUpdateError, DuplicateJobError, JobNotFoundError, NotFoundError, SerpAdsError
from ..logging import EventLog, jlog
from ..storage import BucketDocument, BucketStore
from .models import Job, parse_timestamp, utcnow

BACKUP_DOCUMENT = "submitted-backup"
APPEND_RETRIES = 3


class Bucket(str, Enum):
    SUBMITTED = "submitted"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


BUCKET_ORDER: tuple[Bucket, ...] = (Bucket.SUBMITTED, Bucket.IN_PROGRESS, Bucket.COMPLETED)

Stamp = Callable[[dict[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class BatchStats:
    submitted: int
    in_progress: int
    completed: int
    average_processing_time_ms: Optional[int] = None

    @property
    def total(self) -> int:
        return self.submitted + self.in_progress + self.completed

    @property
    def completion_rate(self) -> float:
        """Percentage of tracked jobs that reached the completed bucket."""

        if not self.total:
            return 0.0
        return round(100.0 * self.completed / self.total, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "submitted": self.submitted,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "total": self.total,
            "completion_rate": self.completion_rate,
            "average_processing_time_ms": self.average_processing_time_ms,
        }


@dataclass(frozen=True)
class FoundJob:
    bucket: Bucket
    entry: dict[str, Any]


def _processing_time_ms(entry: dict[str, Any], completed_at: datetime) -> Optional[int]:
    try:
        started = parse_timestamp(entry.get("started_at"))
        if started is None:
            return None
        return int((completed_at - started).total_seconds() * 1000)
    except (TypeError, ValueError):
        # unparseable or naive timestamp written by another tool
        return None


class BatchQueue:
    def __init__(
        self,
        store: BucketStore,
        *,
        log: EventLog = jlog,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._log = log
        self._clock = clock
        self._lock = threading.Lock()

    # ---------- reads ----------

    def entries(self, bucket: Bucket) -> list[dict[str, Any]]:
        return list(self._store.load(bucket.value).queries)

    def find_job(self, job_id: str) -> Optional[FoundJob]:
        for bucket in BUCKET_ORDER:
            doc = self._store.load(bucket.value)
            idx = doc.index_of(job_id)
            if idx is not None:
                return FoundJob(bucket, dict(doc.queries[idx]))
        return None

    def stats(self) -> BatchStats:
        docs = {b: self._store.load(b.value) for b in BUCKET_ORDER}
        times = [
            int(q["processing_time_ms"])
            for q in docs[Bucket.COMPLETED].queries
            if isinstance(q.get("processing_time_ms"), (int, float))
        ]
        return BatchStats(
            submitted=len(docs[Bucket.SUBMITTED].queries),
            in_progress=len(docs[Bucket.IN_PROGRESS].queries),
            completed=len(docs[Bucket.COMPLETED].queries),
            average_processing_time_ms=round(sum(times) / len(times)) if times else None,
        )

    def status(self) -> str:
        """Plain-text listing of all three buckets for operators."""

        submitted = self.entries(Bucket.SUBMITTED)
        in_progress = self.entries(Bucket.IN_PROGRESS)
        completed = self.entries(Bucket.COMPLETED)

        lines = ["BATCH JOB STATUS", "=" * 50, f"Generated: {self._clock().isoformat()}", ""]

        lines.append(f"SUBMITTED: {len(submitted)}")
        for i, q in enumerate(submitted[:SUBMITTED_DISPLAY_LIMIT], start=1):
            lines.append(f"  {i}. {q.get('id')}: \"{q.get('query', '')}\" - {q.get('location', '')}")
        if len(submitted) > SUBMITTED_DISPLAY_LIMIT:
            lines.append(f"  ... and {len(submitted) - SUBMITTED_DISPLAY_LIMIT} more")
        lines.append("")

        lines.append(f"IN PROGRESS: {len(in_progress)}")
        for i, q in enumerate(in_progress, start=1):
            lines.append(f"  {i}. {q.get('id')}: \"{q.get('query', '')}\" (started {q.get('started_at', '?')})")
        lines.append("")

        lines.append(f"COMPLETED: {len(completed)}")
        recent = list(reversed(completed))[:COMPLETED_DISPLAY_LIMIT]
        for i, q in enumerate(recent, start=1):
            took = q.get("processing_time_ms")
            suffix = f", {took} ms" if took is not None else ""
            lines.append(f"  {i}. {q.get('id')}: \"{q.get('query', '')}\" (completed {q.get('completed_at', '?')}{suffix})")
        if len(completed) > COMPLETED_DISPLAY_LIMIT:
            lines.append(f"  ... and {len(completed) - COMPLETED_DISPLAY_LIMIT} older")
        lines.append("")

        total = len(submitted) + len(in_progress) + len(completed)
        lines.append(f"TOTAL: {total}")
        return "\n".join(lines)

    # ---------- writes ----------

    def submit(self, job: Union[Job, dict[str, Any]]) -> dict[str, Any]:
        entry = job.to_entry() if isinstance(job, Job) else dict(job)
        job_id = str(entry.get("id") or "")
        if not job_id:
            raise ValueError("job entry needs an 'id'")
        entry["id"] = job_id
        entry.setdefault("created_at", self._clock().isoformat())
        with self._lock:
            docs = {b: self._store.load(b.value) for b in BUCKET_ORDER}
            for bucket, doc in docs.items():
                if doc.index_of(job_id) is not None:
                    raise DuplicateJobError(job_id, bucket.value)
            target = docs[Bucket.SUBMITTED]
            target.queries.append(entry)
            self._store.save(target)
        self._log("info", event="job_submitted", job_id=job_id, query=entry.get("query"))
        return entry

    def move_between(self, src: Bucket, dst: Bucket, job_id: str, stamp: Optional[Stamp] = None) -> dict[str, Any]:
        """Atomically move one job from ``src`` to ``dst``; returns the stored entry.

        Raises :class:`JobNotFoundError` (nothing written) when ``src`` does not
        hold the job and :class:`DuplicateJobError` when ``dst`` already does.
        If the destination write fails the entry is put back into ``src`` at
        its old position before the error propagates.
        """

        with self._lock:
            source = self._store.load(src.value)
            idx = source.index_of(job_id)
            if idx is None:
                raise JobNotFoundError(job_id, src.value)
            target = self._store.load(dst.value)
            if target.index_of(job_id) is not None:
                raise DuplicateJobError(job_id, dst.value)

            original = source.queries.pop(idx)
            entry = dict(original)
            if stamp is not None:
                entry = stamp(entry)
            # Losing this race raises before anything else is written.
            self._store.save(source)
            try:
                self._append(target, entry)
            except SerpAdsError:
                self._put_back(src, idx, original)
                raise
            if src is Bucket.SUBMITTED:
                self._store.save(BucketDocument(name=BACKUP_DOCUMENT, queries=list(source.queries)))

        self._log("info", event="job_moved", job_id=job_id, src=src.value, dst=dst.value)
        return entry

    def _append(self, target: BucketDocument, entry: dict[str, Any]) -> None:
        for attempt in range(APPEND_RETRIES):
            target.queries.append(entry)
            try:
                self._store.save(target)
                return
            except ConcurrentUpdateError:
                if attempt + 1 >= APPEND_RETRIES:
                    self._log("error", event="bucket_append_lost", job_id=entry.get("id"), bucket=target.name)
                    raise
                target = self._store.load(target.name)

    def _put_back(self, bucket: Bucket, idx: int, entry: dict[str, Any]) -> None:
        """Reinsert an entry whose destination write failed at its old position."""

        job_id = str(entry.get("id"))
        try:
            source = self._store.load(bucket.value)
            if source.index_of(job_id) is None:
                source.queries.insert(min(idx, len(source.queries)), entry)
                self._store.save(source)
        except SerpAdsError as exc:
            # the entry is in no bucket now; the record carries it for manual recovery
            self._log("error", event="bucket_entry_lost", job_id=job_id, bucket=bucket.value, entry=entry, error=str(exc))
            return
        self._log("warning", event="bucket_move_rolled_back", job_id=job_id, bucket=bucket.value)

    def move_to_in_progress(self, job_id: str) -> dict[str, Any]:
        def stamp(entry: dict[str, Any]) -> dict[str, Any]:
            entry["started_at"] = self._clock().isoformat()
            entry["status"] = Bucket.IN_PROGRESS.value
            return entry

        return self.move_between(Bucket.SUBMITTED, Bucket.IN_PROGRESS, job_id, stamp)

    def move_to_completed(self, job_id: str) -> dict[str, Any]:
        def stamp(entry: dict[str, Any]) -> dict[str, Any]:
            now = self._clock()
            entry["completed_at"] = now.isoformat()
            entry["status"] = Bucket.COMPLETED.value
            took = _processing_time_ms(entry, now)
            if took is not None:
                entry["processing_time_ms"] = took
            return entry

        return self.move_between(Bucket.IN_PROGRESS, Bucket.COMPLETED, job_id, stamp)

    def archive_completed(self, keep_last: int = DEFAULT_ARCHIVE_KEEP) -> int:
        """Move all but the newest ``keep_last`` completed jobs to ``archived-<date>``."""

        if keep_last < 0:
            raise ValueError("keep_last must be >= 0")
        with self._lock:
            completed = self._store.load(Bucket.COMPLETED.value)
            overflow = len(completed.queries) - keep_last
            if overflow <= 0:
                return 0
            moved = completed.queries[:overflow]
            completed.queries = completed.queries[overflow:]
            archive_name = f"archived-{self._clock().date().isoformat()}"
            archive = self._store.load(archive_name)
            archived_before = list(archive.queries)
            archive.queries.extend(moved)
            self._store.save(archive)
            try:
                self._store.save(completed)
            except SerpAdsError:
                self._rollback_archive(archive, archived_before)
                raise
        self._log("info", event="completed_archived", archived=len(moved), kept=keep_last, document=archive_name)
        return len(moved)

    def _rollback_archive(self, archive: BucketDocument, queries: list[dict[str, Any]]) -> None:
        archive.queries = queries
        try:
            self._store.save(archive)
        except SerpAdsError as exc:
            # jobs stay listed in both completed and the archive until someone cleans up
            self._log("error", event="archive_rollback_failed", document=archive.name, error=str(exc))

    def restore_backup(self) -> int:
        """Replace ``submitted`` with the rolling backup, skipping ids tracked elsewhere."""

        with self._lock:
            if not self._store.exists(BACKUP_DOCUMENT):
                raise NotFoundError("bucket document", BACKUP_DOCUMENT)
            backup = self._store.load(BACKUP_DOCUMENT)
            elsewhere: set[str] = set()
            for bucket in (Bucket.IN_PROGRESS, Bucket.COMPLETED):
                elsewhere.update(self._store.load(bucket.value).ids())
            submitted = self._store.load(Bucket.SUBMITTED.value)
            restored: list[dict[str, Any]] = []
            seen: set[str] = set()
            for entry in backup.queries:
                job_id = str(entry.get("id"))
                if job_id in elsewhere or job_id in seen:
                    continue
                seen.add(job_id)
                restored.append(dict(entry))
            submitted.queries = restored
            self._store.save(submitted)
        skipped = len(backup.queries) - len(restored)
        self._log("warning", event="submitted_restored", restored=len(restored), skipped=skipped)
        return len(restored)


__all__ = ["BACKUP_DOCUMENT", "BUCKET_ORDER", "BatchQueue", "BatchStats", "Bucket", "FoundJob"]
