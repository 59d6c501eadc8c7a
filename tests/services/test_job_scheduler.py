import json
import threading
import time
from unittest.mock import Mock

import pytest

from doccrawl.domain.batch_report import BatchStatus
from doccrawl.domain.config import CrawlerConfig
from doccrawl.domain.job import JobResult, JobSpec, JobStats, JobStatus
from doccrawl.services.crawl_job_factory import CrawlJobFactory
from doccrawl.services.job_scheduler import JobScheduler, order_by_priority, save_report
from doccrawl.services.state_store import CrawlStateStore
from doccrawl.utils.datetime_utils import utc_now


class FakeJob:
    def __init__(self, spec, outcome=JobStatus.COMPLETED, duration=0.0, tracker=None):
        self.spec = spec
        self.outcome = outcome
        self.duration = duration
        self.tracker = tracker
        self.cancelled = threading.Event()

    def cancel(self):
        self.cancelled.set()

    def run(self):
        if self.tracker is not None:
            self.tracker.enter()
        try:
            if self.outcome == "raise":
                raise RuntimeError("boom")
            if self.outcome == "block":
                self.cancelled.wait(5)
                status = JobStatus.CANCELLED
            else:
                time.sleep(self.duration)
                status = self.outcome
            return JobResult(id=self.spec.id, name=self.spec.name, status=status, stats=JobStats(pages=1),
                             start_time=utc_now(), end_time=utc_now())
        finally:
            if self.tracker is not None:
                self.tracker.leave()


class Tracker:
    def __init__(self):
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def enter(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def leave(self):
        with self._lock:
            self.active -= 1


class FakeJobFactory:
    def __init__(self, outcomes=None, durations=None, tracker=None, broken=()):
        self.outcomes = outcomes or {}
        self.durations = durations or {}
        self.tracker = tracker
        self.broken = set(broken)
        self.jobs = {}
        self.calls = []

    def create(self, spec, *, resume=False, reset=False):
        self.calls.append((spec.id, resume, reset))
        if spec.id in self.broken:
            raise ValueError(f"cannot build {spec.id}")
        job = FakeJob(spec, self.outcomes.get(spec.id, JobStatus.COMPLETED), self.durations.get(spec.id, 0.0),
                      self.tracker)
        self.jobs[spec.id] = job
        return job


def _spec(job_id, priority=0):
    return JobSpec(id=job_id, name=job_id, config=CrawlerConfig(job_id, ["https://example.com/"]), priority=priority)


def _statuses(report):
    return {j.id: j.status for j in report.jobs}


def test_order_by_priority_is_stable():
    specs = [_spec("a", 5), _spec("b", 10), _spec("c", 5), _spec("d")]
    assert [s.id for s in order_by_priority(specs)] == ["b", "a", "c", "d"]


def test_jobs_start_in_priority_order():
    scheduler = JobScheduler(FakeJobFactory(), max_parallel=1)

    report = scheduler.run([_spec("low-1", 5), _spec("high", 10), _spec("low-2", 5)])

    assert scheduler.start_order == ["high", "low-1", "low-2"]
    assert [j.id for j in report.jobs] == ["high", "low-1", "low-2"]
    assert report.status == BatchStatus.COMPLETED


def test_running_jobs_never_exceed_max_parallel():
    tracker = Tracker()
    factory = FakeJobFactory(durations={f"job{i}": 0.05 for i in range(6)}, tracker=tracker)
    scheduler = JobScheduler(factory, max_parallel=2)

    report = scheduler.run([_spec(f"job{i}") for i in range(6)])

    assert report.completed == 6
    assert tracker.max_active <= 2
    assert scheduler.max_running_seen == 2


def test_failure_without_continue_on_error_cancels_queued_jobs():
    factory = FakeJobFactory(outcomes={"job2": JobStatus.FAILED}, durations={"job1": 0.5})
    scheduler = JobScheduler(factory, max_parallel=2, continue_on_error=False)

    report = scheduler.run([_spec("job1"), _spec("job2"), _spec("job3")])

    assert _statuses(report) == {
        "job1": JobStatus.COMPLETED,
        "job2": JobStatus.FAILED,
        "job3": JobStatus.CANCELLED,
    }
    assert "job3" not in scheduler.start_order
    cancelled = next(j for j in report.jobs if j.id == "job3")
    assert cancelled.error == "cancelled: job job2 failed"
    assert report.status == BatchStatus.FAILED


def test_failure_with_continue_on_error_runs_everything():
    factory = FakeJobFactory(outcomes={"job1": JobStatus.FAILED})
    scheduler = JobScheduler(factory, max_parallel=1, continue_on_error=True)

    report = scheduler.run([_spec("job1"), _spec("job2")])

    assert report.completed == 1
    assert report.failed == 1
    assert report.status == BatchStatus.COMPLETED_WITH_ERRORS


def test_job_that_raises_is_reported_failed():
    scheduler = JobScheduler(FakeJobFactory(outcomes={"job1": "raise"}), max_parallel=1)

    report = scheduler.run([_spec("job1")])

    assert report.jobs[0].status == JobStatus.FAILED
    assert report.jobs[0].error == "boom"


def test_job_that_cannot_be_built_is_reported_failed():
    factory = FakeJobFactory(broken={"job1"})
    scheduler = JobScheduler(factory, max_parallel=1, continue_on_error=False)

    report = scheduler.run([_spec("job1", priority=1), _spec("job2")])

    assert _statuses(report) == {"job1": JobStatus.FAILED, "job2": JobStatus.CANCELLED}
    assert report.status == BatchStatus.FAILED


def test_cancel_stops_running_and_queued_jobs():
    factory = FakeJobFactory(outcomes={"job1": "block"})
    registry = Mock()
    scheduler = JobScheduler(factory, max_parallel=1, registry=registry)
    timer = threading.Timer(0.2, scheduler.cancel)
    timer.start()

    report = scheduler.run([_spec("job1"), _spec("job2")])
    timer.join()

    assert _statuses(report) == {"job1": JobStatus.CANCELLED, "job2": JobStatus.CANCELLED}
    assert factory.jobs["job1"].cancelled.is_set()
    assert "job2" not in factory.jobs
    registry.cancel_all.assert_called_once_with()
    assert report.status == BatchStatus.CANCELLED


def test_resume_and_reset_flags_reach_the_factory():
    factory = FakeJobFactory()
    JobScheduler(factory, max_parallel=1, resume=True, reset=False).run([_spec("job1")])
    assert factory.calls == [("job1", True, False)]


def test_duplicate_job_ids_are_rejected():
    with pytest.raises(ValueError):
        JobScheduler(FakeJobFactory()).run([_spec("same"), _spec("same")])


def test_max_parallel_must_be_positive():
    with pytest.raises(ValueError):
        JobScheduler(FakeJobFactory(), max_parallel=0)


def test_empty_batch_completes():
    report = JobScheduler(FakeJobFactory()).run([])
    assert report.total == 0
    assert report.status == BatchStatus.COMPLETED


def test_save_report_writes_results_json(tmp_path):
    report = JobScheduler(FakeJobFactory(outcomes={"b": JobStatus.FAILED})).run([_spec("a"), _spec("b")])
    path = tmp_path / "out" / "batch-results.json"

    save_report(report, str(path))

    data = json.loads(path.read_text())
    assert data["status"] == BatchStatus.COMPLETED_WITH_ERRORS
    assert data["total"] == 2
    assert {j["id"]: j["status"] for j in data["jobs"]} == {"a": "completed", "b": "failed"}
    assert [p.name for p in path.parent.iterdir()] == ["batch-results.json"]


def test_batch_of_real_crawl_jobs(tmp_path, fake_site, html_page, crawler_config, fetcher_factory_for):
    site = fake_site({
        "https://one.example.com/": html_page("One"),
        "https://two.example.com/": html_page("Two", ["/more"]),
        "https://two.example.com/more": html_page("More"),
    })
    factory = CrawlJobFactory(
        fetcher_factory=fetcher_factory_for(site),
        state_store=CrawlStateStore(),
        state_dir=str(tmp_path / "state"),
        output_dir=str(tmp_path / "output"),
    )
    specs = [
        JobSpec(id="one", name="one", config=crawler_config(["https://one.example.com/"], name="one")),
        JobSpec(id="two", name="two", config=crawler_config(["https://two.example.com/"], name="two"), priority=1),
    ]

    report = JobScheduler(factory, max_parallel=2).run(specs)

    assert report.status == BatchStatus.COMPLETED
    assert {j.id: j.stats.pages for j in report.jobs} == {"one": 1, "two": 2}
    lines = (tmp_path / "output" / "two.jsonl").read_text().splitlines()
    assert len(lines) == 2
    assert (tmp_path / "state" / "two.state.json.completed").exists()
