"""Runtime settings and fixed constants for the SERP ad pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass

# ============================
# Fixed constants
# ============================
TOP_AD_CUTOFF = 3  # positions 1..3 are "top", everything after is "bottom"
FALLBACK_WINDOW_CHARS = 1000
COMPLETED_DISPLAY_LIMIT = 10
SUBMITTED_DISPLAY_LIMIT = 5
DEFAULT_ARCHIVE_KEEP = 100
DEFAULT_RECENT_LIMIT = 10

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_MS = 500
DEFAULT_RETRY_JITTER_S = 0.3

DEFAULT_BUCKET_DIR = "job-scheduling"
DEFAULT_SQL_CONN = "your-project:your-region:your-instance"
DEFAULT_LOCATION = "Boston, Massachusetts, United States"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    bucket_dir: str
    gcs_bucket: str | None
    gcs_prefix: str
    max_attempts: int
    retry_base_ms: int

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            bucket_dir=os.getenv("SERP_ADS_BUCKET_DIR", DEFAULT_BUCKET_DIR),
            gcs_bucket=os.getenv("SERP_ADS_GCS_BUCKET") or None,
            gcs_prefix=os.getenv("SERP_ADS_GCS_PREFIX", "job-scheduling"),
            max_attempts=_env_int("SERP_ADS_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            retry_base_ms=_env_int("SERP_ADS_RETRY_BASE_MS", DEFAULT_RETRY_BASE_MS),
        )


__all__ = [
    "COMPLETED_DISPLAY_LIMIT",
    "DEFAULT_ARCHIVE_KEEP",
    "DEFAULT_BUCKET_DIR",
    "DEFAULT_LOCATION",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_RECENT_LIMIT",
    "DEFAULT_RETRY_BASE_MS",
    "DEFAULT_RETRY_JITTER_S",
    "DEFAULT_SQL_CONN",
    "FALLBACK_WINDOW_CHARS",
    "SUBMITTED_DISPLAY_LIMIT",
    "Settings",
    "TOP_AD_CUTOFF",
]
