"""High-level utilities for SERP ad extraction and job tracking."""

from .errors import (
    ConcurrentUpdateError,
    DuplicateJobError,
    FetchError,
    InvalidTransitionError,
    JobNotFoundError,
    MalformedMarkupError,
    NotFoundError,
    SerpAdsError,
    StoreError,
    UpstreamError,
)
from .extraction import AdMetrics, AdRecord, ExtractionEngine, ExtractionResult, ShoppingAdRecord, extract
from .jobs import (
    BatchQueue,
    Bucket,
    FailureLedger,
    FailureReason,
    Job,
    JobStatus,
    JobTracker,
    JobVerifier,
    Stage,
    StageStatus,
    VerificationReport,
)
from .logging import jlog, joblog
from .normalize import normalize_text
from .params import mine_parameters
from .storage import FileBucketStore, GcsBucketStore
from .versioning import get_pipeline_version

__all__ = [
    "AdMetrics",
    "AdRecord",
    "BatchQueue",
    "Bucket",
    "ConcurrentUpdateError",
    "DuplicateJobError",
    "ExtractionEngine",
    "ExtractionResult",
    "FailureLedger",
    "FailureReason",
    "FetchError",
    "FileBucketStore",
    "GcsBucketStore",
    "InvalidTransitionError",
    "Job",
    "JobNotFoundError",
    "JobStatus",
    "JobTracker",
    "JobVerifier",
    "MalformedMarkupError",
    "NotFoundError",
    "SerpAdsError",
    "ShoppingAdRecord",
    "Stage",
    "StageStatus",
    "StoreError",
    "UpstreamError",
    "VerificationReport",
    "extract",
    "get_pipeline_version",
    "jlog",
    "joblog",
    "mine_parameters",
    "normalize_text",
]
