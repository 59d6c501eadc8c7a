from unittest.mock import Mock

from doccrawl.domain.events import CheckpointSaved, JobFinished, JobStarted, PageFailed, PageFetched
from doccrawl.domain.job import JobResult, JobStats, JobStatus
from doccrawl.services.event_bus import EventBus
from doccrawl.services.progress_logger import ProgressLogger


def test_attach_logs_lifecycle_events():
    bus = EventBus()
    log = Mock()
    ProgressLogger(bus, log=log).attach()

    bus.publish(JobStarted(job_id="docs", name="Docs", resumed=True))
    bus.publish(JobFinished(result=JobResult(id="docs", name="Docs", status=JobStatus.COMPLETED,
                                             stats=JobStats(pages=3, duration=1.5, errors=1))))

    first, second = log.info.call_args_list
    assert first.args == ("Job %s (%s) %s", "docs", "Docs", "resumed")
    assert second.args[1:] == ("docs", "completed", 3, 1, 1.5, "")


def test_only_final_page_failures_are_warnings():
    bus = EventBus()
    log = Mock()
    ProgressLogger(bus, log=log).attach()

    bus.publish(PageFailed(job_id="docs", url="https://a/", error="HTTP 503", attempts=1, final=False))
    bus.publish(PageFailed(job_id="docs", url="https://a/", error="HTTP 503", attempts=3, final=True))
    bus.publish(PageFetched(job_id="docs", url="https://b/", final_url="https://b/", title="B"))
    bus.publish(CheckpointSaved(job_id="docs", path="s.json", visited=1, failed=1, reason="pages"))

    assert log.warning.call_count == 1
    assert log.debug.call_count == 3


def test_detach_stops_logging_and_attach_is_idempotent():
    bus = EventBus()
    log = Mock()
    progress = ProgressLogger(bus, log=log)
    progress.attach()
    progress.attach()

    bus.publish(JobStarted(job_id="docs", name="Docs"))
    progress.detach()
    bus.publish(JobStarted(job_id="docs", name="Docs"))

    assert log.info.call_count == 1
