"""Job lifecycle: state machine, stage runner, batch buckets, verification and the failure ledger."""

from .buckets import BACKUP_DOCUMENT, BatchQueue, BatchStats, Bucket, FoundJob
from .failures import FailureLedger, FailureReason, FailureRecord, FailureStats, ReprocessResult
from .models import STAGE_ORDER, Job, JobStatus, Stage, StageStatus
from .runner import backoff_delay, is_retryable, run_stage
from .state import JobTracker, claim, set_stage
from .verification import JobVerifier, VerificationReport

__all__ = [
    "BACKUP_DOCUMENT",
    "BatchQueue",
    "BatchStats",
    "Bucket",
    "FailureLedger",
    "FailureReason",
    "FailureRecord",
    "FailureStats",
    "FoundJob",
    "Job",
    "JobStatus",
    "JobTracker",
    "JobVerifier",
    "ReprocessResult",
    "STAGE_ORDER",
    "Stage",
    "StageStatus",
    "VerificationReport",
    "backoff_delay",
    "claim",
    "is_retryable",
    "run_stage",
    "set_stage",
]
