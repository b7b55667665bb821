from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from serp_ads.db import postgres
from serp_ads.errors import StoreError

STORE_FUNCTIONS = (
    "create_job_tracking",
    "update_stage_status",
    "update_job_status",
    "get_job_tracking",
    "stage_serp",
    "mark_staging",
    "store_extraction",
    "fetch_staging_record",
    "fetch_serp",
    "fetch_serp_ads",
    "fetch_ads",
    "fetch_renderings",
    "list_recent_serps",
    "insert_failure",
    "fetch_failures",
    "count_failures",
    "run_reprocess_procedure",
    "mark_failures_processed",
)


class FakeStore:
    """In-memory stand-in for the Postgres helpers, keyed the same way as the real tables."""

    def __init__(self) -> None:
        self.tracking: dict[str, dict[str, Any]] = {}
        self.staging: dict[str, dict[str, Any]] = {}
        self.serps: dict[str, dict[str, Any]] = {}
        self.serp_ads: dict[int, list[dict[str, Any]]] = {}
        self.ads: dict[int, dict[str, Any]] = {}
        self.renderings: dict[int, list[dict[str, Any]]] = {}
        self.failures: list[dict[str, Any]] = []
        self.reprocess_results: dict[str, list[int]] = {}
        self.fail_on: set[str] = set()
        # one-shot failures matched on (name, *leading args)
        self.fail_next: list[tuple] = []
        self.calls: list[tuple[str, tuple, dict]] = []
        self._ids = itertools.count(1)
        self._clock = datetime(2025, 6, 1, tzinfo=timezone.utc)

    def _op(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        if name in self.fail_on:
            raise StoreError(name, "connection reset by peer")
        call = (name, *args)
        for i, match in enumerate(self.fail_next):
            if call[: len(match)] == match:
                del self.fail_next[i]
                raise StoreError(name, "connection reset by peer")

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def called(self, name: str) -> list[tuple[tuple, dict]]:
        return [(a, k) for n, a, k in self.calls if n == name]

    # job tracking
    def create_job_tracking(self, con, job, *, dry_run=False):
        self._op("create_job_tracking", job.id)
        self.tracking.setdefault(
            job.id,
            {
                "job_id": job.id,
                "query": job.query,
                "location": job.location,
                "status": "submitted",
                "api_call_status": "pending",
                "serp_processing_status": "pending",
                "ads_extraction_status": "pending",
                "rendering_status": "pending",
                "render_requested": job.render_requested,
                "error_message": None,
                "created_at": job.created_at,
                "started_at": None,
                "completed_at": None,
            },
        )

    def update_stage_status(
        self, con, job_id, stage, status, *, error_message=None, job_status=None, completed_at=None, dry_run=False
    ):
        self._op("update_stage_status", job_id, stage, status)
        row = self.tracking[job_id]
        row[postgres.STAGE_COLUMNS[stage]] = status
        if error_message is not None:
            row["error_message"] = error_message
        row["status"] = job_status or row["status"]
        row["completed_at"] = completed_at or row["completed_at"]

    def update_job_status(self, con, job_id, status, *, started_at=None, completed_at=None, dry_run=False):
        self._op("update_job_status", job_id, status)
        row = self.tracking[job_id]
        row["status"] = status
        row["started_at"] = started_at or row["started_at"]
        row["completed_at"] = completed_at or row["completed_at"]

    def get_job_tracking(self, con, job_id):
        self._op("get_job_tracking", job_id)
        row = self.tracking.get(job_id)
        return dict(row) if row else None

    # staging, serps, ads
    def stage_serp(self, con, *, job_id, query, location, content, dry_run=False):
        self._op("stage_serp", job_id)
        self.staging[job_id] = {
            "id": next(self._ids),
            "status": "pending",
            "error_message": None,
            "processed_at": None,
            "content": content,
        }

    def mark_staging(self, con, job_id, status, *, error_message=None, dry_run=False):
        self._op("mark_staging", job_id, status)
        row = self.staging.setdefault(job_id, {"id": next(self._ids), "processed_at": None})
        row["status"] = status
        row["error_message"] = error_message

    def store_extraction(self, con, *, job_id, query, location, result, dry_run=False):
        self._op("store_extraction", job_id)
        serp_id = next(self._ids)
        self.serps[job_id] = {"id": serp_id, "job_id": job_id, "query": query, "location": location, "timestamp": self._tick()}
        links = []
        for overall, ad in enumerate(result.all_ads, start=1):
            ad_id = next(self._ids)
            self.ads[ad_id] = {"id": ad_id, "advertiser_domain": ad.advertiser_domain}
            links.append({"ad_id": ad_id, "position": ad.position, "position_overall": overall})
        self.serp_ads[serp_id] = links
        return serp_id

    def add_serp(self, job_id: str, *, ad_ids=(), dangling=(), renderings=0, staging="processed") -> int:
        """Seed a persisted job directly, for verification tests."""
        serp_id = next(self._ids)
        self.staging[job_id] = {"id": next(self._ids), "status": staging, "error_message": None, "processed_at": None}
        self.serps[job_id] = {"id": serp_id, "job_id": job_id, "query": "q", "location": "l", "timestamp": self._tick()}
        links = []
        for ad_id in ad_ids:
            self.ads[ad_id] = {"id": ad_id, "advertiser_domain": "example.com"}
            links.append({"ad_id": ad_id})
        links.extend({"ad_id": ad_id} for ad_id in dangling)
        self.serp_ads[serp_id] = links
        self.renderings[serp_id] = [{"ad_id": a, "rendering_type": "png"} for a in list(ad_ids)[:renderings]]
        return serp_id

    def fetch_staging_record(self, con, job_id):
        self._op("fetch_staging_record", job_id)
        return self.staging.get(job_id)

    def fetch_serp(self, con, job_id):
        self._op("fetch_serp", job_id)
        return self.serps.get(job_id)

    def fetch_serp_ads(self, con, serp_id):
        self._op("fetch_serp_ads", serp_id)
        return list(self.serp_ads.get(serp_id, []))

    def fetch_ads(self, con, ad_ids):
        self._op("fetch_ads", tuple(ad_ids))
        return [self.ads[i] for i in ad_ids if i in self.ads]

    def fetch_renderings(self, con, serp_id):
        self._op("fetch_renderings", serp_id)
        return list(self.renderings.get(serp_id, []))

    def list_recent_serps(self, con, limit=10):
        self._op("list_recent_serps", limit)
        rows = sorted(self.serps.values(), key=lambda r: r["timestamp"], reverse=True)
        return rows[:limit]

    # failure ledger
    def insert_failure(self, con, *, job_id, query, reason, dry_run=False):
        self._op("insert_failure", job_id, reason)
        row = {
            "id": next(self._ids),
            "job_id": job_id,
            "query": query,
            "failure_reason": reason,
            "processed": False,
            "created_at": self._tick(),
        }
        self.failures.append(row)
        return dict(row)

    def fetch_failures(self, con, *, job_id=None, limit=None, offset=0):
        self._op("fetch_failures", job_id)
        rows = [dict(r) for r in reversed(self.failures) if job_id is None or r["job_id"] == job_id]
        if limit is not None:
            rows = rows[offset : offset + limit]
        return rows

    def count_failures(self, con, by=None):
        self._op("count_failures", by)
        if by is None:
            return [{"count": len(self.failures)}]
        columns = postgres.FAILURE_GROUPINGS[by]
        counts: dict[tuple, int] = {}
        for r in self.failures:
            key = tuple(r[c] for c in columns)
            counts[key] = counts.get(key, 0) + 1
        return [dict(zip(columns, k), count=n) for k, n in sorted(counts.items(), key=lambda kv: -kv[1])]

    def run_reprocess_procedure(self, con, job_id):
        self._op("run_reprocess_procedure", job_id)
        return list(self.reprocess_results.get(job_id, []))

    def mark_failures_processed(self, con, failure_ids):
        self._op("mark_failures_processed", tuple(failure_ids))
        n = 0
        for r in self.failures:
            if r["id"] in failure_ids and not r["processed"]:
                r["processed"] = True
                n += 1
        return n


@pytest.fixture
def fake_store(monkeypatch) -> FakeStore:
    fake = FakeStore()
    for name in STORE_FUNCTIONS:
        monkeypatch.setattr(postgres, name, getattr(fake, name))
    return fake


class RecordingLog:
    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    def __call__(self, level: str, /, **fields: Any) -> None:
        self.records.append({"level": level, **fields})

    def events(self, name: str) -> list[dict[str, Any]]:
        return [r for r in self.records if r.get("event") == name]


@pytest.fixture
def log() -> RecordingLog:
    return RecordingLog()
