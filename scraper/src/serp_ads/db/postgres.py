"""Postgres persistence helpers for job tracking, SERPs, ads and the failure ledger."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Optional, Sequence

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from ..errors import StoreError
from ..logging import jlog

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from ..extraction.models import ExtractionResult
    from ..jobs.models import Job

# Stage name -> job_tracking column.
STAGE_COLUMNS = {
    "fetch": "api_call_status",
    "parse": "serp_processing_status",
    "extract": "ads_extraction_status",
    "render": "rendering_status",
}

FAILURE_GROUPINGS = {
    "processed": ("processed",),
    "reason": ("failure_reason",),
    "job": ("job_id", "query"),
}


def sql_connect(sql_conn: str, db_host: str | None = None, db_port: int | None = None):
    """Return a psycopg2 connection using either TCP or a Cloud SQL socket."""

    password = os.getenv("DB_PASSWORD")
    if not password:
        raise RuntimeError("DB_PASSWORD environment variable is required for database connections")
    params: dict[str, Any] = {
        "dbname": os.getenv("DB_NAME", "serpdb"),
        "user": os.getenv("DB_USER", "postgres"),
        "password": password,
        "connect_timeout": 10,
        "application_name": "serp_ads",
    }
    if db_host:
        params.update(host=db_host, port=db_port or 5432, sslmode=os.getenv("DB_SSLMODE", "prefer"))
    elif sql_conn:
        params["host"] = f"/cloudsql/{sql_conn}"
    else:
        raise RuntimeError("sql_conn must be provided when db_host is not set")
    return psycopg2.connect(**params)


@contextmanager
def _store_op(con, operation: str) -> Iterator[Any]:
    """Yield a dict cursor; driver errors roll back and surface as :class:`StoreError`."""

    try:
        with con.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        con.commit()
    except psycopg2.Error as exc:
        try:
            con.rollback()
        except psycopg2.Error as rb_exc:
            jlog("warning", event="store_rollback_failed", operation=operation, error=str(rb_exc).strip())
        jlog("error", event="store_error", operation=operation, error=str(exc).strip())
        raise StoreError(operation, str(exc).strip()) from exc


def _one(con, operation: str, query: Any, params: Sequence[Any]) -> Optional[dict[str, Any]]:
    with _store_op(con, operation) as cur:
        cur.execute(query, params)
        row = cur.fetchone()
    return dict(row) if row else None


def _all(con, operation: str, query: Any, params: Sequence[Any]) -> list[dict[str, Any]]:
    with _store_op(con, operation) as cur:
        cur.execute(query, params)
        rows = cur.fetchall()
    return [dict(r) for r in rows]


# ============================
# Job tracking
# ============================


def create_job_tracking(con, job: "Job", *, dry_run: bool = False) -> None:
    """Insert a pending tracking row for ``job`` unless one already exists."""

    if dry_run:
        jlog("info", event="dry_run_job_tracking", job_id=job.id, query=job.query)
        return
    with _store_op(con, "create_job_tracking") as cur:
        cur.execute(
            """
            INSERT INTO job_tracking(job_id, query, location, status, api_call_status, serp_processing_status,
                                     ads_extraction_status, rendering_status, render_requested, created_at)
            VALUES (%s, %s, %s, 'submitted', 'pending', 'pending', 'pending', 'pending', %s, %s)
            ON CONFLICT (job_id) DO NOTHING
            """,
            (job.id, job.query, job.location, job.render_requested, job.created_at),
        )


def update_stage_status(
    con,
    job_id: str,
    stage: str,
    status: str,
    *,
    error_message: Optional[str] = None,
    job_status: Optional[str] = None,
    completed_at=None,
    dry_run: bool = False,
) -> None:
    """Write one stage column, plus the derived job status when it changed, in one statement.

    Other stages of the same job are left untouched.
    """

    column = STAGE_COLUMNS[stage]
    if dry_run:
        jlog("info", event="dry_run_stage_status", job_id=job_id, stage=stage, status=status, job_status=job_status)
        return
    query = sql.SQL(
        """
        UPDATE job_tracking
           SET {col}=%s,
               error_message=COALESCE(%s, error_message),
               status=COALESCE(%s, status),
               completed_at=COALESCE(%s, completed_at),
               updated_at=NOW()
         WHERE job_id=%s
        """
    ).format(col=sql.Identifier(column))
    with _store_op(con, "update_stage_status") as cur:
        cur.execute(query, (status, error_message, job_status, completed_at, job_id))


def update_job_status(
    con,
    job_id: str,
    status: str,
    *,
    started_at=None,
    completed_at=None,
    dry_run: bool = False,
) -> None:
    if dry_run:
        jlog("info", event="dry_run_job_status", job_id=job_id, status=status)
        return
    with _store_op(con, "update_job_status") as cur:
        cur.execute(
            """
            UPDATE job_tracking
               SET status=%s,
                   started_at=COALESCE(%s, started_at),
                   completed_at=COALESCE(%s, completed_at),
                   updated_at=NOW()
             WHERE job_id=%s
            """,
            (status, started_at, completed_at, job_id),
        )


def get_job_tracking(con, job_id: str) -> Optional[dict[str, Any]]:
    return _one(con, "get_job_tracking", "SELECT * FROM job_tracking WHERE job_id=%s", (job_id,))


# ============================
# Staging, SERPs and ads
# ============================


def stage_serp(con, *, job_id: str, query: str, location: str, content: str, dry_run: bool = False) -> None:
    """Insert or refresh the raw staging row for a fetched SERP."""

    if dry_run:
        jlog("info", event="dry_run_stage_serp", job_id=job_id, bytes=len(content or ""))
        return
    with _store_op(con, "stage_serp") as cur:
        cur.execute(
            """
            INSERT INTO staging_serps(job_id, query, location, content, status)
            VALUES (%s, %s, %s, %s, 'pending')
            ON CONFLICT (job_id) DO UPDATE
               SET content       = EXCLUDED.content,
                   status        = 'pending',
                   error_message = NULL,
                   processed_at  = NULL
            """,
            (job_id, query, location, content),
        )


def mark_staging(con, job_id: str, status: str, *, error_message: Optional[str] = None, dry_run: bool = False) -> None:
    if dry_run:
        jlog("info", event="dry_run_mark_staging", job_id=job_id, status=status)
        return
    with _store_op(con, "mark_staging") as cur:
        cur.execute(
            """
            UPDATE staging_serps
               SET status=%s,
                   error_message=%s,
                   processed_at=CASE WHEN %s = 'processed' THEN NOW() ELSE processed_at END
             WHERE job_id=%s
            """,
            (status, error_message, status, job_id),
        )


def store_extraction(
    con,
    *,
    job_id: str,
    query: str,
    location: str,
    result: "ExtractionResult",
    dry_run: bool = False,
) -> Optional[int]:
    """Persist the SERP row, its ads and the SERP-ad links; return the SERP id."""

    if dry_run:
        jlog("info", event="dry_run_store_extraction", job_id=job_id, total_ads=result.metrics.total_ads)
        return None
    with _store_op(con, "store_extraction") as cur:
        cur.execute(
            """
            INSERT INTO serps(job_id, query, location, ad_metrics, ad_params)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (job_id) DO UPDATE
               SET ad_metrics = EXCLUDED.ad_metrics,
                   ad_params  = EXCLUDED.ad_params,
                   timestamp  = NOW()
            RETURNING id
            """,
            (job_id, query, location, Json(result.metrics.to_dict()), Json(result.ad_params)),
        )
        serp_id = cur.fetchone()["id"]
        cur.execute("DELETE FROM serp_ads WHERE serp_id=%s", (serp_id,))
        for overall, ad in enumerate(result.all_ads, start=1):
            data = ad.to_dict()
            cur.execute(
                """
                INSERT INTO ads(advertiser_domain, title, description, url, ad_group, data_rw)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id
                """,
                (
                    ad.advertiser_domain,
                    data.get("title") or next(iter(data.get("product_titles") or []), ""),
                    data.get("description", ""),
                    data.get("destination_url") or next(iter(data.get("product_urls") or []), ""),
                    ad.group.value,
                    Json(data),
                ),
            )
            ad_id = cur.fetchone()["id"]
            cur.execute(
                "INSERT INTO serp_ads(serp_id, ad_id, position, position_overall, ad_group) VALUES (%s, %s, %s, %s, %s)",
                (serp_id, ad_id, ad.position, overall, ad.group.value),
            )
    jlog("info", event="serp_stored", job_id=job_id, serp_id=serp_id, total_ads=result.metrics.total_ads)
    return serp_id


def fetch_staging_record(con, job_id: str) -> Optional[dict[str, Any]]:
    return _one(
        con,
        "fetch_staging_record",
        "SELECT id, status, error_message, processed_at FROM staging_serps WHERE job_id=%s",
        (job_id,),
    )


def fetch_serp(con, job_id: str) -> Optional[dict[str, Any]]:
    return _one(con, "fetch_serp", "SELECT id, query, location, timestamp FROM serps WHERE job_id=%s", (job_id,))


def fetch_serp_ads(con, serp_id: int) -> list[dict[str, Any]]:
    return _all(
        con,
        "fetch_serp_ads",
        "SELECT ad_id, position, position_overall FROM serp_ads WHERE serp_id=%s ORDER BY position_overall",
        (serp_id,),
    )


def fetch_ads(con, ad_ids: Sequence[int]) -> list[dict[str, Any]]:
    if not ad_ids:
        return []
    return _all(
        con,
        "fetch_ads",
        "SELECT id, advertiser_domain, title, url FROM ads WHERE id = ANY(%s)",
        (list(ad_ids),),
    )


def fetch_renderings(con, serp_id: int) -> list[dict[str, Any]]:
    return _all(
        con,
        "fetch_renderings",
        "SELECT ad_id, rendering_type, storage_path FROM ad_renderings WHERE serp_id=%s",
        (serp_id,),
    )


def list_recent_serps(con, limit: int = 10) -> list[dict[str, Any]]:
    return _all(
        con,
        "list_recent_serps",
        "SELECT job_id, query, location, timestamp FROM serps ORDER BY timestamp DESC LIMIT %s",
        (limit,),
    )


# ============================
# Failure ledger
# ============================


def insert_failure(con, *, job_id: str, query: str, reason: str, dry_run: bool = False) -> Optional[dict[str, Any]]:
    if dry_run:
        jlog("info", event="dry_run_failure", job_id=job_id, reason=reason)
        return None
    return _one(
        con,
        "insert_failure",
        """
        INSERT INTO ad_extraction_failures(job_id, query, failure_reason, processed)
        VALUES (%s, %s, %s, FALSE)
        RETURNING id, job_id, query, failure_reason, processed, created_at
        """,
        (job_id, query, reason),
    )


def fetch_failures(
    con,
    *,
    job_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[dict[str, Any]]:
    clauses = ["SELECT id, job_id, query, failure_reason, processed, created_at FROM ad_extraction_failures"]
    params: list[Any] = []
    if job_id is not None:
        clauses.append("WHERE job_id=%s")
        params.append(job_id)
    clauses.append("ORDER BY created_at DESC, id DESC")
    if limit is not None:
        clauses.append("LIMIT %s OFFSET %s")
        params.extend([limit, offset])
    return _all(con, "fetch_failures", "\n".join(clauses), params)


def count_failures(con, by: str | None = None) -> list[dict[str, Any]]:
    """Grouped ``count`` rows, or a single ``{"count": n}`` row when ``by`` is None."""

    if by is None:
        return _all(con, "count_failures", "SELECT COUNT(*) AS count FROM ad_extraction_failures", ())
    columns = [sql.Identifier(c) for c in FAILURE_GROUPINGS[by]]
    query = sql.SQL(
        "SELECT {cols}, COUNT(*) AS count FROM ad_extraction_failures GROUP BY {cols} ORDER BY count DESC"
    ).format(cols=sql.SQL(", ").join(columns))
    return _all(con, f"count_failures_by_{by}", query, ())


def run_reprocess_procedure(con, job_id: str) -> list[int]:
    """Call the stored reconciliation procedure; return the failure ids it resolved."""

    rows = _all(
        con,
        "reprocess_extraction_failures",
        "SELECT failure_id FROM reprocess_extraction_failures(%s)",
        (job_id,),
    )
    return [int(r["failure_id"]) for r in rows]


def mark_failures_processed(con, failure_ids: Sequence[int]) -> int:
    if not failure_ids:
        return 0
    with _store_op(con, "mark_failures_processed") as cur:
        cur.execute(
            "UPDATE ad_extraction_failures SET processed=TRUE, processed_at=NOW() WHERE id = ANY(%s) AND NOT processed",
            (list(failure_ids),),
        )
        return cur.rowcount


__all__ = [
    "FAILURE_GROUPINGS",
    "STAGE_COLUMNS",
    "count_failures",
    "create_job_tracking",
    "fetch_ads",
    "fetch_failures",
    "fetch_renderings",
    "fetch_serp",
    "fetch_serp_ads",
    "fetch_staging_record",
    "get_job_tracking",
    "insert_failure",
    "list_recent_serps",
    "mark_failures_processed",
    "mark_staging",
    "run_reprocess_procedure",
    "sql_connect",
    "stage_serp",
    "store_extraction",
    "update_job_status",
    "update_stage_status",
]
