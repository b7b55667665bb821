"""Read-back verification of a job's persisted artifacts.

Checks are accumulated rather than short-circuited so an operator sees every
missing piece at once. Nothing here writes: an incomplete job gets a
recommendation, not a fix.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from ..config import DEFAULT_RECENT_LIMIT
from ..db import postgres as store
from ..errors import StoreError
from ..logging import EventLog, jlog


@dataclass
class VerificationReport:
    job_id: str
    staging_processed: bool = False
    serp_exists: bool = False
    relationships_exist: bool = False
    ads_resolve: bool = False
    renderings_exist: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    dangling_ad_ids: list[int] = field(default_factory=list)
    staging_status: Optional[str] = None
    serp_id: Optional[int] = None
    job_tracking: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_fully_processed(self) -> bool:
        """Renderings are informational and do not count."""

        return (
            self.error is None
            and self.staging_processed
            and self.serp_exists
            and self.relationships_exist
            and self.ads_resolve
        )

    @property
    def recommendation(self) -> Optional[str]:
        if self.error is not None:
            return "verification could not complete; retry once the record store is reachable"
        if self.is_fully_processed:
            return None
        missing = [
            name
            for name, ok in (
                ("staging row not processed", self.staging_processed),
                ("no SERP row", self.serp_exists),
                ("no SERP-ad relationships", self.relationships_exist),
                ("linked ads do not resolve", self.ads_resolve),
            )
            if not ok
        ]
        return f"reprocess job {self.job_id}: " + "; ".join(missing)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "checks": {
                "staging_processed": self.staging_processed,
                "serp_exists": self.serp_exists,
                "relationships_exist": self.relationships_exist,
                "ads_resolve": self.ads_resolve,
                "renderings_exist": self.renderings_exist,
            },
            "counts": dict(self.counts),
            "dangling_ad_ids": list(self.dangling_ad_ids),
            "staging_status": self.staging_status,
            "serp_id": self.serp_id,
            "job_tracking": self.job_tracking,
            "is_fully_processed": self.is_fully_processed,
            "recommendation": self.recommendation,
            "error": self.error,
        }


class JobVerifier:
    def __init__(self, con, *, log: EventLog = jlog) -> None:
        self._con = con
        self._log = log

    def verify(self, job_id: str) -> VerificationReport:
        report = VerificationReport(job_id=job_id)
        try:
            self._run_checks(report)
        except StoreError as exc:
            report.error = str(exc)
            self._log("error", event="verification_error", job_id=job_id, error=report.error)
            return report
        self._log(
            "info" if report.is_fully_processed else "warning",
            event="job_verified",
            job_id=job_id,
            fully_processed=report.is_fully_processed,
            counts=report.counts,
            dangling_ad_ids=report.dangling_ad_ids or None,
        )
        return report

    def _run_checks(self, report: VerificationReport) -> None:
        job_id = report.job_id
        report.job_tracking = store.get_job_tracking(self._con, job_id)

        staging = store.fetch_staging_record(self._con, job_id)
        if staging is not None:
            report.staging_status = staging.get("status")
            report.staging_processed = report.staging_status == "processed"

        serp = store.fetch_serp(self._con, job_id)
        report.counts = {"serp_ads": 0, "ads": 0, "renderings": 0}
        if serp is None:
            return
        report.serp_exists = True
        report.serp_id = int(serp["id"])

        links = store.fetch_serp_ads(self._con, report.serp_id)
        report.counts["serp_ads"] = len(links)
        report.relationships_exist = bool(links)

        linked_ids = list(dict.fromkeys(int(link["ad_id"]) for link in links))
        ads = store.fetch_ads(self._con, linked_ids)
        resolved = {int(ad["id"]) for ad in ads}
        report.counts["ads"] = len(resolved)
        report.ads_resolve = bool(resolved)
        report.dangling_ad_ids = [i for i in linked_ids if i not in resolved]

        renderings = store.fetch_renderings(self._con, report.serp_id)
        report.counts["renderings"] = len(renderings)
        report.renderings_exist = bool(renderings)

    def recent_jobs(self, limit: int = DEFAULT_RECENT_LIMIT) -> list[dict[str, Any]]:
        return store.list_recent_serps(self._con, limit)


__all__ = ["JobVerifier", "VerificationReport"]
