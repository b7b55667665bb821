import json
from datetime import datetime, timedelta, timezone

import pytest

from serp_ads.errors import ConcurrentUpdateError, DuplicateJobError, JobNotFoundError, NotFoundError, StoreError
from serp_ads.jobs.buckets import BACKUP_DOCUMENT, BatchQueue, Bucket
from serp_ads.jobs.models import Job
from serp_ads.storage import BucketDocument, FileBucketStore


class StepClock:
    def __init__(self, start=datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc), step=timedelta(seconds=90)):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def _snapshot(store):
    return {b: store.load(b.value).ids() for b in Bucket}


@pytest.fixture
def store(tmp_path):
    return FileBucketStore(tmp_path / "job-scheduling")


@pytest.fixture
def queue(store, log):
    return BatchQueue(store, log=log, clock=StepClock())


def _submit(queue, *ids):
    for job_id in ids:
        queue.submit(Job(id=job_id, query=f"query {job_id}", location="Boston"))


def test_missing_documents_read_as_empty(queue, store):
    assert queue.entries(Bucket.SUBMITTED) == []
    assert queue.stats().total == 0
    assert not store.exists("submitted")


def test_move_missing_job_changes_nothing(queue, store):
    _submit(queue, "job-1", "job-2")
    before = _snapshot(store)
    with pytest.raises(JobNotFoundError) as excinfo:
        queue.move_to_in_progress("job-9")
    assert excinfo.value.job_id == "job-9"
    assert _snapshot(store) == before
    assert not store.exists(BACKUP_DOCUMENT)


def test_move_then_complete(queue, store):
    _submit(queue, "job-1", "job-2")
    started = queue.move_to_in_progress("job-1")
    assert "started_at" in started
    completed = queue.move_to_completed("job-1")
    assert completed["processing_time_ms"] == 90_000

    snap = _snapshot(store)
    assert snap[Bucket.SUBMITTED] == ["job-2"]
    assert snap[Bucket.IN_PROGRESS] == []
    assert snap[Bucket.COMPLETED] == ["job-1"]
    entry = store.load("completed").queries[0]
    assert entry["completed_at"] > entry["started_at"]
    assert entry["status"] == "completed"


def test_backup_is_written_after_removal(queue, store):
    _submit(queue, "job-1", "job-2", "job-3")
    queue.move_to_in_progress("job-2")
    assert store.load(BACKUP_DOCUMENT).ids() == ["job-1", "job-3"]


def test_document_format(queue, store):
    _submit(queue, "job-1")
    payload = json.loads(store.path_for("submitted").read_text())
    assert payload["total_count"] == 1
    assert payload["queries"][0]["id"] == "job-1"
    assert "updated_at" in payload


def test_submit_rejects_ids_tracked_anywhere(queue):
    _submit(queue, "job-1")
    queue.move_to_in_progress("job-1")
    with pytest.raises(DuplicateJobError) as excinfo:
        _submit(queue, "job-1")
    assert excinfo.value.bucket == "in-progress"


def test_move_to_completed_requires_in_progress(queue, store):
    _submit(queue, "job-1")
    with pytest.raises(JobNotFoundError):
        queue.move_to_completed("job-1")
    assert _snapshot(store)[Bucket.SUBMITTED] == ["job-1"]


def test_stats(queue):
    _submit(queue, "a", "b", "c", "d")
    queue.move_to_in_progress("a")
    queue.move_to_completed("a")
    queue.move_to_in_progress("b")
    stats = queue.stats()
    assert (stats.submitted, stats.in_progress, stats.completed, stats.total) == (2, 1, 1, 4)
    assert stats.completion_rate == 25.0
    assert stats.average_processing_time_ms == 90_000


def test_status_lists_recent_completed_first_capped(queue):
    ids = [f"job-{i:02d}" for i in range(12)]
    _submit(queue, *ids)
    for job_id in ids:
        queue.move_to_in_progress(job_id)
        queue.move_to_completed(job_id)
    text = queue.status()
    assert "COMPLETED: 12" in text
    assert "job-11" in text
    assert "job-02" in text
    assert "job-01" not in text
    assert text.index("job-11") < text.index("job-10")
    assert "... and 2 older" in text


def test_find_job(queue):
    _submit(queue, "job-1")
    queue.move_to_in_progress("job-1")
    found = queue.find_job("job-1")
    assert found.bucket is Bucket.IN_PROGRESS
    assert queue.find_job("nope") is None


def test_archive_completed_keeps_newest(queue, store):
    ids = [f"j{i}" for i in range(5)]
    _submit(queue, *ids)
    for job_id in ids:
        queue.move_to_in_progress(job_id)
        queue.move_to_completed(job_id)
    assert queue.archive_completed(keep_last=2) == 3
    assert store.load("completed").ids() == ["j3", "j4"]
    archived = [p for p in store.directory.glob("batch-archived-*.json")]
    assert len(archived) == 1
    assert queue.archive_completed(keep_last=2) == 0


def test_restore_backup(queue, store):
    with pytest.raises(NotFoundError):
        queue.restore_backup()
    _submit(queue, "job-1", "job-2", "job-3")
    queue.move_to_in_progress("job-1")
    store.save(BucketDocument(name="submitted"))
    assert queue.restore_backup() == 2
    assert store.load("submitted").ids() == ["job-2", "job-3"]


class ConflictOnceStore(FileBucketStore):
    """Raises a lost-race error the first time a given document is saved."""

    def __init__(self, directory, conflict_on):
        super().__init__(directory)
        self.conflict_on = conflict_on

    def save(self, doc):
        if doc.name == self.conflict_on:
            self.conflict_on = None
            raise ConcurrentUpdateError(f"save_bucket:{doc.name}", "generation mismatch")
        super().save(doc)


def test_destination_conflict_is_retried(tmp_path, log):
    store = ConflictOnceStore(tmp_path, conflict_on="in-progress")
    queue = BatchQueue(store, log=log, clock=StepClock())
    _submit(queue, "job-1")
    queue.move_to_in_progress("job-1")
    assert _snapshot(store) == {Bucket.SUBMITTED: [], Bucket.IN_PROGRESS: ["job-1"], Bucket.COMPLETED: []}


def test_source_conflict_writes_nothing(tmp_path, log):
    store = ConflictOnceStore(tmp_path, conflict_on=None)
    queue = BatchQueue(store, log=log, clock=StepClock())
    _submit(queue, "job-1")
    store.conflict_on = "submitted"
    with pytest.raises(ConcurrentUpdateError):
        queue.move_to_in_progress("job-1")
    assert _snapshot(store) == {Bucket.SUBMITTED: ["job-1"], Bucket.IN_PROGRESS: [], Bucket.COMPLETED: []}


class FailingSaveStore(FileBucketStore):
    """Refuses writes to the documents named in ``fail_on``."""

    def __init__(self, directory):
        super().__init__(directory)
        self.fail_on = set()

    def save(self, doc):
        if doc.name in self.fail_on:
            raise StoreError(f"save_bucket:{doc.name}", "disk full")
        super().save(doc)


class AlwaysConflictStore(FileBucketStore):
    def __init__(self, directory):
        super().__init__(directory)
        self.conflict_on = None

    def save(self, doc):
        if doc.name == self.conflict_on:
            raise ConcurrentUpdateError(f"save_bucket:{doc.name}", "generation mismatch")
        super().save(doc)


def test_failed_destination_write_puts_entry_back(tmp_path, log):
    store = FailingSaveStore(tmp_path)
    queue = BatchQueue(store, log=log, clock=StepClock())
    _submit(queue, "job-1", "job-2", "job-3")
    store.fail_on.add("in-progress")

    with pytest.raises(StoreError):
        queue.move_to_in_progress("job-2")

    assert _snapshot(store) == {
        Bucket.SUBMITTED: ["job-1", "job-2", "job-3"],
        Bucket.IN_PROGRESS: [],
        Bucket.COMPLETED: [],
    }
    restored = store.load("submitted").queries[1]
    assert "started_at" not in restored
    assert not store.exists(BACKUP_DOCUMENT)
    assert log.events("bucket_move_rolled_back")[0]["job_id"] == "job-2"


def test_repeated_destination_conflicts_put_entry_back(tmp_path, log):
    store = AlwaysConflictStore(tmp_path)
    queue = BatchQueue(store, log=log, clock=StepClock())
    _submit(queue, "job-1")
    queue.move_to_in_progress("job-1")
    store.conflict_on = "completed"

    with pytest.raises(ConcurrentUpdateError):
        queue.move_to_completed("job-1")

    assert _snapshot(store) == {Bucket.SUBMITTED: [], Bucket.IN_PROGRESS: ["job-1"], Bucket.COMPLETED: []}
    assert log.events("bucket_append_lost")


def test_lost_entry_is_logged_when_put_back_fails(tmp_path, log):
    store = FailingSaveStore(tmp_path)
    queue = BatchQueue(store, log=log, clock=StepClock())
    _submit(queue, "job-1")
    queue.move_to_in_progress("job-1")

    real_save = FileBucketStore.save
    saves = []

    def save_then_break(doc):
        saves.append(doc.name)
        if len(saves) > 1:
            raise StoreError(f"save_bucket:{doc.name}", "disk full")
        real_save(store, doc)

    store.save = save_then_break
    with pytest.raises(StoreError):
        queue.move_to_completed("job-1")
    (lost,) = log.events("bucket_entry_lost")
    assert lost["job_id"] == "job-1"
    assert lost["entry"]["id"] == "job-1"


def test_archive_rolled_back_when_completed_write_fails(tmp_path, log):
    store = FailingSaveStore(tmp_path)
    queue = BatchQueue(store, log=log, clock=StepClock())
    ids = [f"j{i}" for i in range(4)]
    _submit(queue, *ids)
    for job_id in ids:
        queue.move_to_in_progress(job_id)
        queue.move_to_completed(job_id)
    store.fail_on.add("completed")

    with pytest.raises(StoreError):
        queue.archive_completed(keep_last=1)

    assert store.load("completed").ids() == ids
    (archive_path,) = store.directory.glob("batch-archived-*.json")
    assert json.loads(archive_path.read_text())["queries"] == []
