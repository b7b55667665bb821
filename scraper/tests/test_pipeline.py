import asyncio

import pytest

from serp_ads.errors import FetchError
from serp_ads.jobs.models import Job, JobStatus, Stage, StageStatus
from serp_ads.pipeline import process_job, run_jobs

BOSTON = (
    '<div data-text-ad="1"><h3>Boston Plumbing Pros</h3>'
    '<a href="https://www.example-plumbing.com/services?gclid=abc">Call (617) 555-0134</a></div>'
)


async def _no_sleep(delay):
    return None


def _job(job_id="job-1", render=False):
    return Job(id=job_id, query="plumber", location="Boston", render_requested=render)


def _run(job, fetcher, **kw):
    kw.setdefault("sleep", _no_sleep)
    return asyncio.run(process_job(object(), job, fetcher, **kw))


def test_happy_path_completes_and_persists(fake_store):
    job = _job()
    outcome = _run(job, lambda query, location: BOSTON)
    assert outcome.status is JobStatus.COMPLETED
    assert outcome.result.metrics.total_ads == 1
    assert outcome.serp_id is not None
    assert fake_store.tracking["job-1"]["status"] == "completed"
    assert fake_store.staging["job-1"]["status"] == "processed"
    assert len(fake_store.serp_ads[outcome.serp_id]) == 1
    assert fake_store.failures == []
    assert all(job.stages[s] is StageStatus.SUCCEEDED for s in Stage)


def test_async_fetcher_and_renderer(fake_store):
    rendered = []

    async def fetcher(query, location):
        return BOSTON

    async def renderer(job, result, serp_id):
        rendered.append((job.id, result.metrics.total_ads, serp_id))

    outcome = _run(_job(render=True), fetcher, renderer=renderer)
    assert outcome.status is JobStatus.COMPLETED
    assert rendered == [("job-1", 1, outcome.serp_id)]


def test_render_requested_without_renderer_is_rejected(fake_store):
    with pytest.raises(ValueError):
        _run(_job(render=True), lambda q, l: BOSTON)


def test_fetch_failure_after_retries_is_recorded(fake_store):
    calls = []

    def fetcher(query, location):
        calls.append(query)
        raise ConnectionError("proxy refused")

    outcome = _run(_job(), fetcher, max_attempts=3)
    assert len(calls) == 3
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is Stage.FETCH
    assert [f["failure_reason"] for f in fake_store.failures] == ["upstream_fetch_error"]
    assert fake_store.tracking["job-1"]["api_call_status"] == "failed"


def test_empty_markup_is_malformed(fake_store):
    outcome = _run(_job(), lambda q, l: "   ")
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is Stage.PARSE
    assert [f["failure_reason"] for f in fake_store.failures] == ["malformed_markup"]
    assert fake_store.staging["job-1"]["status"] == "error"
    assert fake_store.tracking["job-1"]["serp_processing_status"] == "failed"


def test_markers_without_containers_are_recorded_but_job_completes(fake_store):
    outcome = _run(_job(), lambda q, l: "<script>adsbygoogle.push({})</script>")
    assert outcome.status is JobStatus.COMPLETED
    assert outcome.result.metrics.total_ads == 0
    assert [f["failure_reason"] for f in fake_store.failures] == ["no_ad_containers"]


def test_store_write_failure_is_recorded(fake_store):
    fake_store.fail_on.add("store_extraction")
    outcome = _run(_job(), lambda q, l: BOSTON, max_attempts=2)
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is Stage.EXTRACT
    assert len(fake_store.called("store_extraction")) == 2
    assert [f["failure_reason"] for f in fake_store.failures] == ["store_write_error"]


def test_render_failure_is_recorded(fake_store):
    def renderer(job, result, serp_id):
        raise FetchError("render", "screenshot timeout")

    outcome = _run(_job(render=True), lambda q, l: BOSTON, renderer=renderer, max_attempts=1)
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is Stage.RENDER
    assert [f["failure_reason"] for f in fake_store.failures] == ["render_error"]


def test_run_jobs_processes_every_job(fake_store):
    jobs = [_job(f"job-{i}") for i in range(4)]
    outcomes = asyncio.run(run_jobs(object(), jobs, lambda q, l: BOSTON, concurrency=2, sleep=_no_sleep))
    assert sorted(o.job_id for o in outcomes) == ["job-0", "job-1", "job-2", "job-3"]
    assert all(o.status is JobStatus.COMPLETED for o in outcomes)


def test_failed_success_write_is_retried_without_rewriting(fake_store):
    fake_store.fail_next.append(("update_stage_status", "job-1", "extract", "succeeded"))
    job = _job()
    outcome = _run(job, lambda q, l: BOSTON)
    assert outcome.status is JobStatus.COMPLETED
    assert outcome.failed_stage is None
    assert len(fake_store.called("store_extraction")) == 1
    row = fake_store.tracking["job-1"]
    assert (row["ads_extraction_status"], row["status"]) == ("succeeded", "completed")
    assert fake_store.failures == []


def test_outcome_matches_store_when_success_write_keeps_failing(fake_store):
    fake_store.fail_next.extend([("update_stage_status", "job-1", "extract", "succeeded")] * 2)
    job = _job()
    outcome = _run(job, lambda q, l: BOSTON, max_attempts=2)
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is Stage.EXTRACT
    assert job.stages[Stage.EXTRACT] is StageStatus.FAILED
    row = fake_store.tracking["job-1"]
    assert (row["ads_extraction_status"], row["status"]) == ("failed", "failed")
    assert [f["failure_reason"] for f in fake_store.failures] == ["store_write_error"]


def test_registration_failure_is_an_outcome(fake_store):
    fake_store.fail_on.add("create_job_tracking")
    outcome = _run(_job(), lambda q, l: BOSTON)
    assert outcome.status is JobStatus.FAILED
    assert outcome.failed_stage is None
    assert "create_job_tracking" in outcome.error
    assert [f["failure_reason"] for f in fake_store.failures] == ["store_write_error"]


def test_run_jobs_survives_store_outage(fake_store):
    fake_store.fail_on.add("create_job_tracking")
    jobs = [_job(f"job-{i}") for i in range(3)]
    outcomes = asyncio.run(run_jobs(object(), jobs, lambda q, l: BOSTON, concurrency=2, sleep=_no_sleep))
    assert sorted(o.job_id for o in outcomes) == ["job-0", "job-1", "job-2"]
    assert all(o.status is JobStatus.FAILED for o in outcomes)
    assert fake_store.serps == {}


def test_run_jobs_reports_a_crashing_job_and_continues(fake_store):
    jobs = [_job("job-0"), _job("job-1", render=True), _job("job-2")]
    outcomes = asyncio.run(run_jobs(object(), jobs, lambda q, l: BOSTON, concurrency=1, sleep=_no_sleep))
    by_id = {o.job_id: o for o in outcomes}
    assert by_id["job-0"].status is JobStatus.COMPLETED
    assert by_id["job-2"].status is JobStatus.COMPLETED
    assert by_id["job-1"].status is JobStatus.FAILED
    assert by_id["job-1"].error.startswith("ValueError")
