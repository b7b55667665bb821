"""Durable documents backing the batch buckets: local JSON files or Google Cloud Storage."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from google.api_core import exceptions as gexc
from google.cloud import storage  # type: ignore[attr-defined]

from .errors import ConcurrentUpdateError, StoreError
from .logging import jlog

UTC = getattr(datetime, "UTC", timezone.utc)


@dataclass
class BucketDocument:
    """One named collection of job entries.

    ``generation`` is the version the document was read at; stores that support
    conditional writes refuse to save over a newer version. ``None`` means
    "overwrite unconditionally".
    """

    name: str
    queries: list[dict[str, Any]] = field(default_factory=list)
    generation: Optional[int] = None

    def ids(self) -> list[str]:
        return [str(q.get("id")) for q in self.queries]

    def index_of(self, job_id: str) -> Optional[int]:
        for i, q in enumerate(self.queries):
            if str(q.get("id")) == job_id:
                return i
        return None

    def to_payload(self) -> dict[str, Any]:
        return {
            "queries": self.queries,
            "total_count": len(self.queries),
            "updated_at": datetime.now(UTC).isoformat(),
        }


class BucketStore(Protocol):
    def load(self, name: str) -> BucketDocument: ...

    def save(self, doc: BucketDocument) -> None: ...

    def exists(self, name: str) -> bool: ...


def document_filename(name: str) -> str:
    return f"batch-{name}.json"


def _parse_payload(name: str, raw: str) -> list[dict[str, Any]]:
    try:
        payload = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError as exc:
        raise StoreError(f"load_bucket:{name}", f"invalid JSON: {exc}") from exc
    queries = payload.get("queries") if isinstance(payload, dict) else None
    return list(queries or [])


class FileBucketStore:
    """Bucket documents as ``batch-<name>.json`` files in one directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / document_filename(name)

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def load(self, name: str) -> BucketDocument:
        path = self.path_for(name)
        if not path.exists():
            return BucketDocument(name=name)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"load_bucket:{name}", str(exc)) from exc
        return BucketDocument(name=name, queries=_parse_payload(name, raw))

    def save(self, doc: BucketDocument) -> None:
        path = self.path_for(doc.name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc.to_payload(), fh, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as exc:
            raise StoreError(f"save_bucket:{doc.name}", str(exc)) from exc
        jlog("debug", event="bucket_saved", bucket=doc.name, path=str(path), count=len(doc.queries))


class GcsBucketStore:
    """Bucket documents as JSON blobs under ``gs://<bucket>/<prefix>/``.

    Reads record the blob generation and writes are conditional on it, so two
    writers racing on the same document cannot silently overwrite each other.
    """

    def __init__(self, storage_client: storage.Client, bucket_name: str, prefix: str = "job-scheduling") -> None:
        self._bucket = storage_client.bucket(bucket_name)
        self.bucket_name = bucket_name
        self.prefix = prefix.strip("/")

    def blob_name(self, name: str) -> str:
        filename = document_filename(name)
        return f"{self.prefix}/{filename}" if self.prefix else filename

    def gs_path(self, name: str) -> str:
        return f"gs://{self.bucket_name}/{self.blob_name(name)}"

    def exists(self, name: str) -> bool:
        try:
            return self._bucket.get_blob(self.blob_name(name)) is not None
        except gexc.GoogleAPIError as exc:
            raise StoreError(f"exists_bucket:{name}", str(exc)) from exc

    def load(self, name: str) -> BucketDocument:
        try:
            blob = self._bucket.get_blob(self.blob_name(name))
            if blob is None:
                # generation 0 == "must not exist yet" for the conditional write
                return BucketDocument(name=name, generation=0)
            raw = blob.download_as_text(if_generation_match=blob.generation)
        except gexc.PreconditionFailed as exc:
            raise ConcurrentUpdateError(f"load_bucket:{name}", str(exc)) from exc
        except gexc.GoogleAPIError as exc:
            raise StoreError(f"load_bucket:{name}", str(exc)) from exc
        return BucketDocument(name=name, queries=_parse_payload(name, raw), generation=blob.generation)

    def save(self, doc: BucketDocument) -> None:
        blob = self._bucket.blob(self.blob_name(doc.name))
        blob.cache_control = "no-cache"
        blob.metadata = {"bucket_document": doc.name, "total_count": str(len(doc.queries))}
        data = json.dumps(doc.to_payload(), indent=2, ensure_ascii=False)
        kwargs: dict[str, Any] = {"content_type": "application/json"}
        if doc.generation is not None:
            kwargs["if_generation_match"] = doc.generation
        try:
            blob.upload_from_string(data, **kwargs)
        except gexc.PreconditionFailed as exc:
            jlog("warning", event="bucket_conflict", bucket=doc.name, path=self.gs_path(doc.name))
            raise ConcurrentUpdateError(f"save_bucket:{doc.name}", str(exc)) from exc
        except gexc.GoogleAPIError as exc:
            raise StoreError(f"save_bucket:{doc.name}", str(exc)) from exc
        doc.generation = blob.generation
        jlog("debug", event="bucket_saved", bucket=doc.name, path=self.gs_path(doc.name), count=len(doc.queries))


__all__ = [
    "BucketDocument",
    "BucketStore",
    "FileBucketStore",
    "GcsBucketStore",
    "document_filename",
]
