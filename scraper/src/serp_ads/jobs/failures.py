"""Durable ledger of jobs whose ads could not be extracted or stored."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config import DEFAULT_RECENT_LIMIT
from ..db import postgres as store
from ..errors import StoreError
from ..logging import EventLog, jlog


class FailureReason(str, Enum):
    NO_AD_CONTAINERS = "no_ad_containers"
    MALFORMED_MARKUP = "malformed_markup"
    UPSTREAM_FETCH_ERROR = "upstream_fetch_error"
    STORE_WRITE_ERROR = "store_write_error"
    RENDER_ERROR = "render_error"


@dataclass(frozen=True)
class FailureRecord:
    id: Optional[int]
    job_id: str
    query: str
    failure_reason: FailureReason
    processed: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "FailureRecord":
        return cls(
            id=row.get("id"),
            job_id=str(row["job_id"]),
            query=row.get("query") or "",
            failure_reason=FailureReason(row["failure_reason"]),
            processed=bool(row.get("processed")),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "query": self.query,
            "failure_reason": self.failure_reason.value,
            "processed": self.processed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class FailureStats:
    total: int
    by_processed: dict[bool, int] = field(default_factory=dict)
    by_reason: dict[str, int] = field(default_factory=dict)
    by_job: list[dict[str, Any]] = field(default_factory=list)
    recent: list[FailureRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_processed": {str(k).lower(): v for k, v in self.by_processed.items()},
            "by_reason": dict(self.by_reason),
            "by_job": list(self.by_job),
            "recent": [r.to_dict() for r in self.recent],
        }


@dataclass(frozen=True)
class ReprocessResult:
    job_id: str
    success: bool
    processed_ids: tuple[int, ...] = ()
    error: Optional[str] = None

    @property
    def processed_count(self) -> int:
        return len(self.processed_ids)


class FailureLedger:
    def __init__(self, con, *, log: EventLog = jlog, dry_run: bool = False) -> None:
        self._con = con
        self._log = log
        self._dry_run = dry_run

    def record(self, job_id: str, query: str, reason: FailureReason | str) -> Optional[FailureRecord]:
        """Append one unprocessed failure; unknown reason strings raise ``ValueError``."""

        reason = FailureReason(reason)
        row = store.insert_failure(self._con, job_id=job_id, query=query, reason=reason.value, dry_run=self._dry_run)
        self._log("warning", event="extraction_failure_recorded", job_id=job_id, reason=reason.value)
        return FailureRecord.from_row(row) if row else None

    def list_for_job(self, job_id: str) -> list[FailureRecord]:
        return [FailureRecord.from_row(r) for r in store.fetch_failures(self._con, job_id=job_id)]

    def list(self, limit: int = 50, offset: int = 0) -> list[FailureRecord]:
        return [FailureRecord.from_row(r) for r in store.fetch_failures(self._con, limit=limit, offset=offset)]

    def stats(self) -> FailureStats:
        total_rows = store.count_failures(self._con)
        total = int(total_rows[0]["count"]) if total_rows else 0
        by_processed = {bool(r["processed"]): int(r["count"]) for r in store.count_failures(self._con, by="processed")}
        by_reason = {str(r["failure_reason"]): int(r["count"]) for r in store.count_failures(self._con, by="reason")}
        by_job = [
            {"job_id": r["job_id"], "query": r.get("query"), "count": int(r["count"])}
            for r in store.count_failures(self._con, by="job")
        ]
        recent = self.list(limit=DEFAULT_RECENT_LIMIT)
        return FailureStats(total=total, by_processed=by_processed, by_reason=by_reason, by_job=by_job, recent=recent)

    def reprocess(self, job_id: str) -> ReprocessResult:
        """Run the reconciliation procedure; only the ids it resolved are marked processed."""

        try:
            resolved = store.run_reprocess_procedure(self._con, job_id)
            if self._dry_run:
                self._log("info", event="dry_run_reprocess", job_id=job_id, resolved=len(resolved))
            else:
                store.mark_failures_processed(self._con, resolved)
        except StoreError as exc:
            self._log("error", event="reprocess_failed", job_id=job_id, error=str(exc))
            return ReprocessResult(job_id=job_id, success=False, error=str(exc))
        self._log("info", event="reprocess_complete", job_id=job_id, resolved=len(resolved))
        return ReprocessResult(job_id=job_id, success=True, processed_ids=tuple(resolved))


__all__ = ["FailureLedger", "FailureReason", "FailureRecord", "FailureStats", "ReprocessResult"]
