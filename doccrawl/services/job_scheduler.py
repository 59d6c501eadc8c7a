import json
import logging
import os
import queue
import tempfile
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, Dict, List, Optional, Sequence

from doccrawl.domain.batch_report import BatchReport, BatchStatus
from doccrawl.domain.job import JobResult, JobSpec, JobStatus
from doccrawl.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.25


def order_by_priority(specs: Sequence[JobSpec]) -> List[JobSpec]:
    """Higher priority first; equal priorities keep their input order."""
    return sorted(specs, key=lambda s: -s.priority)


class JobScheduler:
    """Runs many crawl jobs, at most `max_parallel` at a time.

    Job threads only put their `JobResult` on a completion queue; the thread
    calling `run()` is the only one that reads it and writes the report.
    Priority decides start order, never preemption.
    """

    def __init__(
        self,
        job_factory,
        *,
        max_parallel: int = 3,
        continue_on_error: bool = True,
        registry=None,
        resume: bool = False,
        reset: bool = False,
    ):
        if int(max_parallel) < 1:
            raise ValueError("max_parallel must be >= 1")
        self.job_factory = job_factory
        self.max_parallel = int(max_parallel)
        self.continue_on_error = bool(continue_on_error)
        self.registry = registry
        self.resume = bool(resume)
        self.reset = bool(reset)
        self._cancel_event = threading.Event()
        self.start_order: List[str] = []
        self.max_running_seen = 0

    def cancel(self) -> None:
        """Stop starting jobs and ask running ones to stop. Safe from a signal handler."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def run(self, specs: Sequence[JobSpec]) -> BatchReport:
        ids = [s.id for s in specs]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate job ids: {', '.join(duplicates)}")

        report = BatchReport(timestamp=utc_now())
        pending: Deque[JobSpec] = deque(order_by_priority(specs))
        completions: "queue.Queue[JobResult]" = queue.Queue()
        running: Dict[str, object] = {}
        aborted_by: Optional[str] = None
        cancel_seen = False

        logger.info("Running %d job(s), max_parallel=%d, continue_on_error=%s",
                    len(pending), self.max_parallel, self.continue_on_error)
        with ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="crawl-job") as pool:
            while True:
                if self.cancelled and not cancel_seen:
                    cancel_seen = True
                    self._cancel_pending(pending, report, "cancelled: batch interrupted")
                    self._cancel_running(running)

                while pending and len(running) < self.max_parallel and aborted_by is None and not cancel_seen:
                    spec = pending.popleft()
                    job = self._create_job(spec, report)
                    if job is None:
                        if not self.continue_on_error:
                            aborted_by = spec.id
                            self._cancel_pending(pending, report, f"cancelled: job {spec.id} failed")
                        continue
                    running[spec.id] = job
                    self.start_order.append(spec.id)
                    self.max_running_seen = max(self.max_running_seen, len(running))
                    logger.info("Starting job %s (priority %d)", spec.id, spec.priority)
                    pool.submit(self._run_job, job, spec, completions)

                if not running:
                    break

                try:
                    result = completions.get(timeout=POLL_INTERVAL_SECONDS)
                except queue.Empty:
                    continue
                running.pop(result.id, None)
                report.append(result)
                logger.info("Job %s finished: %s", result.id, result.status.value)
                if result.status == JobStatus.FAILED and not self.continue_on_error and aborted_by is None:
                    aborted_by = result.id
                    logger.warning("Job %s failed and continue_on_error is off; cancelling %d queued job(s)",
                                   result.id, len(pending))
                    self._cancel_pending(pending, report, f"cancelled: job {result.id} failed")

        report.status = self._overall_status(report, aborted_by, cancel_seen)
        logger.info("Batch %s: %d completed, %d failed, %d cancelled",
                    report.status, report.completed, report.failed, report.cancelled)
        return report

    def _create_job(self, spec: JobSpec, report: BatchReport):
        try:
            return self.job_factory.create(spec, resume=self.resume, reset=self.reset)
        except Exception as e:
            logger.error("Could not create job %s: %s", spec.id, e)
            now = utc_now()
            report.append(JobResult(id=spec.id, name=spec.name, status=JobStatus.FAILED, error=str(e),
                                    start_time=now, end_time=now))
            return None

    def _run_job(self, job, spec: JobSpec, completions: "queue.Queue[JobResult]") -> None:
        start = utc_now()
        try:
            result = job.run()
        except Exception as e:
            logger.exception("Job %s raised", spec.id)
            result = JobResult(id=spec.id, name=spec.name, status=JobStatus.FAILED, error=str(e) or type(e).__name__,
                               start_time=start, end_time=utc_now())
        completions.put(result)

    def _cancel_pending(self, pending: Deque[JobSpec], report: BatchReport, reason: str) -> None:
        now = utc_now()
        while pending:
            spec = pending.popleft()
            logger.info("Job %s not started: %s", spec.id, reason)
            report.append(JobResult(id=spec.id, name=spec.name, status=JobStatus.CANCELLED, error=reason,
                                    start_time=None, end_time=now))

    def _cancel_running(self, running: Dict[str, object]) -> None:
        for job_id, job in list(running.items()):
            logger.info("Cancelling running job %s", job_id)
            job.cancel()
        if self.registry is not None:
            self.registry.cancel_all()

    def _overall_status(self, report: BatchReport, aborted_by: Optional[str], cancel_seen: bool) -> str:
        if cancel_seen:
            return BatchStatus.CANCELLED
        if aborted_by is not None:
            return BatchStatus.FAILED
        if report.failed:
            return BatchStatus.COMPLETED_WITH_ERRORS if self.continue_on_error else BatchStatus.FAILED
        return BatchStatus.COMPLETED


def save_report(report: BatchReport, path: str) -> str:
    """Write the batch results JSON next to its final location, then move it in place."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".results-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(report.to_dict(), fh, indent=2)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.info("Batch results written to %s", path)
    return path
