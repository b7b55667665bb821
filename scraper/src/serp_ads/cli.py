"""``serp-jobs``: operator commands for the batch buckets, verification and the failure ledger.

Usage examples:
  serp-jobs status
  serp-jobs submit --id job-12 --query "emergency plumber" --no-render
  serp-jobs move-to-progress job-12
  serp-jobs verify job-12 --db-host 127.0.0.1
  serp-jobs failures stats --sql-conn your-project:your-region:your-instance
  serp-jobs extract page.html
"""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from google.cloud import storage  # type: ignore[attr-defined]

from .config import DEFAULT_ARCHIVE_KEEP, DEFAULT_LOCATION, DEFAULT_RECENT_LIMIT, DEFAULT_SQL_CONN, Settings
from .db import sql_connect
from .errors import SerpAdsError
from .extraction import extract
from .jobs import BatchQueue, FailureLedger, Job, JobVerifier
from .logging import configure_logging, jlog, logging_context, set_global_context
from .storage import BucketStore, FileBucketStore, GcsBucketStore
from .versioning import get_pipeline_version

COMPONENT = "jobs"


def print_table(title: str, cols: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    rows = list(rows)
    print(f"\n== {title} ==")
    if not rows:
        print("(no rows)")
        return
    widths = [max(len(str(c)), max((len(str(r[i])) for r in rows), default=0)) for i, c in enumerate(cols)]
    fmt = "  " + " | ".join("{:<" + str(w) + "}" for w in widths)
    print(fmt.format(*cols))
    print("  " + "-+-".join("-" * w for w in widths))
    for r in rows:
        print(fmt.format(*[str(x) for x in r]))


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    settings = Settings.from_env()
    p = argparse.ArgumentParser(prog="serp-jobs", description="Track SERP scrape jobs and extracted ads")
    p.add_argument("--bucket-dir", default=settings.bucket_dir, help="Directory holding batch-*.json documents")
    p.add_argument("--gcs-bucket", default=settings.gcs_bucket, help="Keep bucket documents in GCS instead")
    p.add_argument("--gcs-prefix", default=settings.gcs_prefix)
    p.add_argument("--sql-conn", default=DEFAULT_SQL_CONN, help="Cloud SQL connection name if using sockets")
    p.add_argument("--db-host", help="Host for TCP connection (e.g., 127.0.0.1 when using cloud-sql-proxy)")
    p.add_argument("--db-port", type=int)
    p.add_argument("--dry-run", action="store_true", help="Do not write to the record store")
    p.add_argument("--json", action="store_true", help="Print machine-readable JSON")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="List all three buckets")
    sub.add_parser("stats", help="Bucket counts and completion rate")

    s = sub.add_parser("submit", help="Add a job to the submitted bucket")
    s.add_argument("--query", required=True)
    s.add_argument("--location", default=DEFAULT_LOCATION)
    s.add_argument("--id", dest="job_id", help="Job id (default: random)")
    s.add_argument("--no-render", action="store_true", help="Skip the render stage for this job")

    for name, help_text in (
        ("move-to-progress", "Move a job from submitted to in-progress"),
        ("move-to-completed", "Move a job from in-progress to completed"),
        ("find", "Show which bucket holds a job"),
        ("verify", "Check a job's persisted artifacts"),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("job_id")

    a = sub.add_parser("archive", help="Move old completed jobs to archived-<date>")
    a.add_argument("--keep-last", type=int, default=DEFAULT_ARCHIVE_KEEP)
    sub.add_parser("restore-backup", help="Restore submitted from submitted-backup")

    r = sub.add_parser("recent", help="Most recently stored SERPs")
    r.add_argument("--limit", type=int, default=DEFAULT_RECENT_LIMIT)

    f = sub.add_parser("failures", help="Ad extraction failure ledger")
    fsub = f.add_subparsers(dest="failures_command", required=True)
    fl = fsub.add_parser("list")
    fl.add_argument("--job-id")
    fl.add_argument("--limit", type=int, default=50)
    fl.add_argument("--offset", type=int, default=0)
    fsub.add_parser("stats")
    fr = fsub.add_parser("reprocess")
    fr.add_argument("job_id")

    e = sub.add_parser("extract", help="Run ad extraction over a saved SERP file")
    e.add_argument("path", type=Path)
    return p


def build_store(args: argparse.Namespace, storage_client: Optional[storage.Client] = None) -> BucketStore:
    if args.gcs_bucket:
        return GcsBucketStore(storage_client or storage.Client(), args.gcs_bucket, args.gcs_prefix)
    return FileBucketStore(args.bucket_dir)


def _queue_command(args: argparse.Namespace, queue: BatchQueue) -> int:
    cmd = args.command
    if cmd == "status":
        print(queue.status())
    elif cmd == "stats":
        stats = queue.stats()
        if args.json:
            _dump(stats.to_dict())
        else:
            print_table("Bucket counts", ["bucket", "jobs"], [
                ("submitted", stats.submitted),
                ("in-progress", stats.in_progress),
                ("completed", stats.completed),
                ("total", stats.total),
            ])
            print(f"\ncompletion rate: {stats.completion_rate}%")
            if stats.average_processing_time_ms is not None:
                print(f"average processing time: {stats.average_processing_time_ms} ms")
    elif cmd == "submit":
        job = Job(
            id=args.job_id or f"job-{uuid.uuid4().hex[:12]}",
            query=args.query,
            location=args.location,
            render_requested=not args.no_render,
        )
        _dump(queue.submit(job))
    elif cmd == "move-to-progress":
        _dump(queue.move_to_in_progress(args.job_id))
    elif cmd == "move-to-completed":
        _dump(queue.move_to_completed(args.job_id))
    elif cmd == "find":
        found = queue.find_job(args.job_id)
        if found is None:
            print(f"job {args.job_id!r} is not in any bucket", file=sys.stderr)
            return 1
        _dump({"bucket": found.bucket.value, "entry": found.entry})
    elif cmd == "archive":
        print(f"archived {queue.archive_completed(args.keep_last)} completed jobs")
    elif cmd == "restore-backup":
        print(f"restored {queue.restore_backup()} submitted jobs")
    return 0


def _db_command(args: argparse.Namespace, con) -> int:
    cmd = args.command
    if cmd == "verify":
        report = JobVerifier(con).verify(args.job_id)
        _dump(report.to_dict())
        return 0 if report.is_fully_processed else 1
    if cmd == "recent":
        rows = JobVerifier(con).recent_jobs(args.limit)
        if args.json:
            _dump(rows)
        else:
            print_table("Recent SERPs", ["job_id", "query", "location", "timestamp"], [
                (r["job_id"], r["query"], r["location"], r["timestamp"]) for r in rows
            ])
        return 0

    ledger = FailureLedger(con, dry_run=args.dry_run)
    sub = args.failures_command
    if sub == "list":
        records = ledger.list_for_job(args.job_id) if args.job_id else ledger.list(args.limit, args.offset)
        if args.json:
            _dump([r.to_dict() for r in records])
        else:
            print_table("Extraction failures", ["id", "job_id", "query", "reason", "processed", "created_at"], [
                (r.id, r.job_id, r.query, r.failure_reason.value, r.processed, r.created_at) for r in records
            ])
        return 0
    if sub == "stats":
        stats = ledger.stats()
        if args.json:
            _dump(stats.to_dict())
            return 0
        print(f"total failures: {stats.total}")
        print_table("By processed", ["processed", "count"], sorted(stats.by_processed.items()))
        print_table("By reason", ["reason", "count"], stats.by_reason.items())
        print_table("By job", ["job_id", "query", "count"], [(r["job_id"], r["query"], r["count"]) for r in stats.by_job])
        print_table("Most recent", ["id", "job_id", "reason", "processed"], [
            (r.id, r.job_id, r.failure_reason.value, r.processed) for r in stats.recent
        ])
        return 0
    result = ledger.reprocess(args.job_id)
    _dump({
        "job_id": result.job_id,
        "success": result.success,
        "processed_ids": list(result.processed_ids),
        "error": result.error,
    })
    return 0 if result.success else 1


def run(args: argparse.Namespace) -> int:
    if args.command == "extract":
        markup = args.path.read_text(encoding="utf-8", errors="replace")
        _dump(extract(markup).to_dict())
        return 0
    if args.command in ("verify", "recent", "failures"):
        con = sql_connect(args.sql_conn, args.db_host, args.db_port)
        try:
            return _db_command(args, con)
        finally:
            con.close()
    return _queue_command(args, BatchQueue(build_store(args)))


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    set_global_context(app="serp_ads", component=COMPONENT)
    args = build_parser().parse_args(argv)
    with logging_context(command=args.command, pipeline_version=get_pipeline_version(COMPONENT)):
        try:
            return run(args)
        except SerpAdsError as exc:
            jlog("error", event="command_failed", error=str(exc), error_type=type(exc).__name__)
            print(f"error: {exc}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
