"""Database helpers for the SERP ad pipeline."""

from .postgres import (
    count_failures,
    create_job_tracking,
    fetch_ads,
    fetch_failures,
    fetch_renderings,
    fetch_serp,
    fetch_serp_ads,
    fetch_staging_record,
    get_job_tracking,
    insert_failure,
    list_recent_serps,
    mark_failures_processed,
    mark_staging,
    run_reprocess_procedure,
    sql_connect,
    stage_serp,
    store_extraction,
    update_job_status,
    update_stage_status,
)

__all__ = [
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
