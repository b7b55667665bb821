"""Typed failures raised by the extraction and job-tracking layers."""

from __future__ import annotations


class SerpAdsError(Exception):
    """Base class for every failure the package raises on purpose."""

    retryable = False


class NotFoundError(SerpAdsError):
    """A referenced job, record or document does not exist."""

    def __init__(self, kind: str, ident: str, where: str | None = None) -> None:
        self.kind = kind
        self.ident = ident
        self.where = where
        msg = f"{kind} {ident!r} not found"
        if where:
            msg += f" in {where}"
        super().__init__(msg)


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str, where: str | None = None) -> None:
        super().__init__("job", job_id, where)
        self.job_id = job_id


class DuplicateJobError(SerpAdsError):
    def __init__(self, job_id: str, bucket: str) -> None:
        super().__init__(f"job {job_id!r} is already tracked in {bucket}")
        self.job_id = job_id
        self.bucket = bucket


class UpstreamError(SerpAdsError):
    """A store or service call failed; carries the underlying message."""

    retryable = True

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class StoreError(UpstreamError):
    pass


class FetchError(UpstreamError):
    pass


class ConcurrentUpdateError(UpstreamError):
    """A conditional write lost a race against another writer."""


class InvalidTransitionError(SerpAdsError):
    pass


class MalformedMarkupError(SerpAdsError):
    """Raised by the pipeline (never by ``extract``) when fetched markup is unusable."""


__all__ = [
    "ConcurrentUpdateError",
    "DuplicateJobError",
    "FetchError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "MalformedMarkupError",
    "NotFoundError",
    "SerpAdsError",
    "StoreError",
    "UpstreamError",
]
