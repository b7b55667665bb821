"""Job, stage and status types for the scrape-and-process pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

UTC = getattr(datetime, "UTC", timezone.utc)


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Stage(str, Enum):
    FETCH = "fetch"
    PARSE = "parse"
    EXTRACT = "extract"
    RENDER = "render"


STAGE_ORDER: tuple[Stage, ...] = (Stage.FETCH, Stage.PARSE, Stage.EXTRACT, Stage.RENDER)


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Job:
    id: str
    query: str
    location: str
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    render_requested: bool = True
    stages: dict[Stage, StageStatus] = field(default_factory=lambda: {s: StageStatus.PENDING for s in STAGE_ORDER})
    attempts: dict[Stage, int] = field(default_factory=lambda: {s: 0 for s in STAGE_ORDER})
    last_error: str | None = None

    @property
    def required_stages(self) -> tuple[Stage, ...]:
        if self.render_requested:
            return STAGE_ORDER
        return STAGE_ORDER[:-1]

    @property
    def status(self) -> JobStatus:
        """Aggregate status derived from the claim timestamp and stage statuses."""

        if self.started_at is None:
            return JobStatus.SUBMITTED
        if any(self.stages[s] is StageStatus.FAILED for s in self.required_stages):
            return JobStatus.FAILED
        if all(self.stages[s] is StageStatus.SUCCEEDED for s in self.required_stages):
            return JobStatus.COMPLETED
        return JobStatus.IN_PROGRESS

    def to_entry(self) -> dict[str, Any]:
        """Bucket-document representation."""

        entry: dict[str, Any] = {
            "id": self.id,
            "query": self.query,
            "location": self.location,
            "created_at": self.created_at.isoformat(),
            "render_requested": self.render_requested,
        }
        if self.started_at:
            entry["started_at"] = self.started_at.isoformat()
        if self.completed_at:
            entry["completed_at"] = self.completed_at.isoformat()
        return entry

    @classmethod
    def from_entry(cls, entry: dict[str, Any]) -> "Job":
        return cls(
            id=str(entry["id"]),
            query=entry.get("query") or entry.get("searchTerm") or "",
            location=entry.get("location") or "",
            created_at=parse_timestamp(entry.get("created_at")) or utcnow(),
            started_at=parse_timestamp(entry.get("started_at")),
            completed_at=parse_timestamp(entry.get("completed_at")),
            render_requested=bool(entry.get("render_requested", True)),
        )


__all__ = ["Job", "JobStatus", "STAGE_ORDER", "Stage", "StageStatus", "UTC", "parse_timestamp", "utcnow"]
