import logging
from typing import Callable, List

from doccrawl.domain.events import CheckpointSaved, JobFinished, JobStarted, PageFailed, PageFetched

logger = logging.getLogger(__name__)


class ProgressLogger:
    """Logs job and page progress from event bus events."""

    def __init__(self, event_bus, *, log=logger):
        self.event_bus = event_bus
        self.log = log
        self._unsubscribers: List[Callable[[], None]] = []

    def attach(self) -> "ProgressLogger":
        if self._unsubscribers:
            return self
        self._unsubscribers = [
            self.event_bus.subscribe(JobStarted, self.on_job_started),
            self.event_bus.subscribe(JobFinished, self.on_job_finished),
            self.event_bus.subscribe(PageFetched, self.on_page_fetched),
            self.event_bus.subscribe(PageFailed, self.on_page_failed),
            self.event_bus.subscribe(CheckpointSaved, self.on_checkpoint_saved),
        ]
        return self

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def on_job_started(self, event: JobStarted) -> None:
        self.log.info("Job %s (%s) %s", event.job_id, event.name, "resumed" if event.resumed else "started")

    def on_job_finished(self, event: JobFinished) -> None:
        result = event.result
        stats = result.stats
        if stats is None:
            self.log.info("Job %s %s", result.id, result.status.value)
            return
        self.log.info("Job %s %s: %d pages, %d errors, %.1fs%s", result.id, result.status.value,
                      stats.pages, stats.errors, stats.duration, f" ({result.error})" if result.error else "")

    def on_page_fetched(self, event: PageFetched) -> None:
        self.log.debug("[%s] %s %r (+%d links)", event.job_id, event.url, event.title, event.links_found)

    def on_page_failed(self, event: PageFailed) -> None:
        if event.final:
            self.log.warning("[%s] Gave up on %s after %d attempt(s): %s", event.job_id, event.url, event.attempts, event.error)
        else:
            self.log.debug("[%s] Attempt %d failed for %s: %s", event.job_id, event.attempts, event.url, event.error)

    def on_checkpoint_saved(self, event: CheckpointSaved) -> None:
        self.log.debug("[%s] Checkpoint (%s): %d visited, %d failed -> %s",
                       event.job_id, event.reason, event.visited, event.failed, event.path)
