import logging
import threading
import time
from typing import Optional

from doccrawl.domain.crawl_state import CrawlState
from doccrawl.domain.events import CheckpointSaved, JobFinished, JobStarted, PageFailed, PageFetched
from doccrawl.domain.job import JobResult, JobSpec, JobStats, JobStatus
from doccrawl.domain.page_record import PageRecord
from doccrawl.domain.url_record import UrlRecord
from doccrawl.exceptions import DiscoveryError, StateWriteError
from doccrawl.services.checkpointer import Checkpointer
from doccrawl.services.crawl_policy import CrawlPolicy
from doccrawl.services.fetch_executor import ExecutionResult, FetchExecutor
from doccrawl.services.frontier import UrlFrontier
from doccrawl.services.state_store import CrawlStateStore
from doccrawl.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class CrawlJob:
    """One crawl: a frontier, a fetch executor and the job's crawl state.

    The job owns its `CrawlState`; executor callbacks mutate it under
    `_state_lock` and the checkpointer reads copies of it. It does NOT build
    its collaborators (see `CrawlJobFactory`).
    """

    def __init__(
        self,
        spec: JobSpec,
        *,
        fetcher,
        extractor,
        sink,
        state_store: CrawlStateStore,
        state_path: str,
        sitemap_loader=None,
        event_bus=None,
        registry=None,
        rate_limiter=None,
        resume: bool = False,
        reset: bool = False,
        cancel_timeout_seconds: float = 10.0,
    ):
        self.spec = spec
        self.config = spec.config
        self.fetcher = fetcher
        self.extractor = extractor
        self.sink = sink
        self.state_store = state_store
        self.state_path = state_path
        self.sitemap_loader = sitemap_loader
        self.event_bus = event_bus
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.resume_requested = bool(resume)
        self.reset_requested = bool(reset)
        self.cancel_timeout_seconds = float(cancel_timeout_seconds)

        self._state_lock = threading.Lock()
        self._control_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._cancel_requested = False
        self._running = threading.Event()
        self._running.set()
        self.state = CrawlState(job_id=spec.id)
        self.frontier: Optional[UrlFrontier] = None
        self.result: Optional[JobResult] = None
        self._checkpointer: Optional[Checkpointer] = None

    @property
    def job_id(self) -> str:
        return self.spec.id

    # -- control -----------------------------------------------------------

    def pause(self) -> None:
        """Hold dispatch; in-flight fetches still complete."""
        self._running.clear()
        logger.info("[%s] Paused", self.job_id)

    def resume(self) -> None:
        self._running.set()
        logger.info("[%s] Resumed", self.job_id)

    def cancel(self) -> None:
        with self._control_lock:
            self._cancel_requested = True
            self._stop_event.set()
        # a paused job must wake up to notice the stop
        self._running.set()
        logger.info("[%s] Cancellation requested", self.job_id)

    @property
    def is_paused(self) -> bool:
        return not self._running.is_set()

    def _attach_stop_event(self, stop_event: threading.Event) -> None:
        with self._control_lock:
            self._stop_event = stop_event
            if self._cancel_requested:
                stop_event.set()

    # -- state -------------------------------------------------------------

    def _load_state(self) -> CrawlState:
        if self.reset_requested:
            try:
                self.state_store.discard(self.state_path)
            except StateWriteError as e:
                logger.warning("[%s] %s", self.job_id, e)
        if self.resume_requested and not self.reset_requested:
            return self.state_store.load_or_fresh(self.state_path, self.job_id)
        return CrawlState(job_id=self.job_id)

    def snapshot_state(self) -> CrawlState:
        with self._state_lock:
            return self.state.copy()

    def _on_checkpoint(self, saved: CrawlState, reason: str) -> None:
        self._publish(CheckpointSaved(
            job_id=self.job_id,
            path=self.state_path,
            visited=len(saved.visited_urls),
            failed=len(saved.failed_urls),
            reason=reason,
        ))

    def _publish(self, event) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    def _update_registry(self, current_url: Optional[str] = None) -> None:
        if self.registry is None:
            return
        with self._state_lock:
            fetched = self.state.stats.successful_pages
            failed = self.state.stats.failed_pages
        try:
            self.registry.update(self.job_id, pages_fetched=fetched, pages_failed=failed, current_url=current_url)
        except Exception as e:
            logger.warning("[%s] Failed to update registry progress: %s", self.job_id, e)

    # -- executor callbacks ------------------------------------------------

    def page_succeeded(self, record: UrlRecord, page: PageRecord, new_links: int) -> None:
        with self._state_lock:
            self.state.record_success(record.canonical_url)
            if self.frontier is not None:
                self.state.set_total(self.frontier.known_count())
        self._checkpointer.page_succeeded()
        self._update_registry(current_url=record.canonical_url)
        self._publish(PageFetched(
            job_id=self.job_id,
            url=record.canonical_url,
            final_url=page.final_url,
            title=page.title,
            links_found=new_links,
        ))

    def page_failed(self, record: UrlRecord, error: BaseException, final: bool) -> None:
        if final:
            with self._state_lock:
                self.state.record_failure(record.canonical_url)
            self._checkpointer.mark_dirty()
            self._update_registry(current_url=record.canonical_url)
        self._publish(PageFailed(
            job_id=self.job_id,
            url=record.canonical_url,
            error=str(error),
            attempts=record.attempts,
            final=final,
        ))

    # -- run ---------------------------------------------------------------

    def _build_frontier(self) -> UrlFrontier:
        max_retries = self.spec.max_retries
        if max_retries is None:
            max_retries = self.config.crawling.max_retries
        return UrlFrontier(
            policy=CrawlPolicy.for_config(self.config),
            sitemap_loader=self.sitemap_loader,
            max_retries=max_retries,
            base_url=self.config.data.base_url,
            include_alternates=self.config.data.sitemap_alternate_links,
        )

    def _build_executor(self) -> FetchExecutor:
        crawling = self.config.crawling
        return FetchExecutor(
            fetcher=self.fetcher,
            extractor=self.extractor,
            sink=self.sink,
            job_id=self.job_id,
            rate_limiter=self.rate_limiter,
            follow_links=crawling.follow_links,
            retry_backoff_seconds=crawling.retry_backoff_ms / 1000,
            retry_backoff_max_seconds=crawling.retry_backoff_max_ms / 1000,
            cancel_timeout_seconds=self.cancel_timeout_seconds,
        )

    def run(self) -> JobResult:
        """Run the crawl to a terminal state and return its result. Never raises."""
        start_time = utc_now()
        started = time.monotonic()
        if self.registry is not None:
            try:
                handle = self.registry.start(self.job_id, self.spec.name)
            except ValueError as e:
                return self._finish(JobStatus.FAILED, start_time, started, None, error=str(e), registered=False)
            self._attach_stop_event(handle.stop_event)

        try:
            self.state = self._load_state()
            resumed = bool(self.state.visited_urls or self.state.failed_urls)
            # only a resumed crawl keeps the records of the run it continues
            self._begin_sink(append=resumed)
        except Exception as e:
            logger.exception("[%s] Could not prepare crawl state", self.job_id)
            return self._finish(JobStatus.FAILED, start_time, started, None, error=str(e))
        self._checkpointer = Checkpointer(
            self.state_store,
            self.state_path,
            self.snapshot_state,
            interval_seconds=self.config.progress.autosave_interval_seconds,
            every_pages=self.config.progress.autosave_every_pages,
            on_saved=self._on_checkpoint,
        )
        if resumed:
            logger.info("[%s] Resuming crawl %s (%d visited, %d failed)", self.job_id, self.spec.name,
                        len(self.state.visited_urls), len(self.state.failed_urls))
        else:
            logger.info("[%s] Starting crawl %s", self.job_id, self.spec.name)
        self._publish(JobStarted(job_id=self.job_id, name=self.spec.name, resumed=resumed))

        execution: Optional[ExecutionResult] = None
        try:
            self.frontier = self._build_frontier()
            try:
                self.frontier.seed(self.config.start_urls, self.config.sitemap_urls, stop_event=self._stop_event)
            except DiscoveryError as e:
                if self._stop_event.is_set():
                    return self._finish(JobStatus.CANCELLED, start_time, started, None, error="cancelled")
                logger.error("[%s] Discovery failed: %s", self.job_id, e)
                return self._finish(JobStatus.FAILED, start_time, started, None, error=f"discovery failed: {e}")

            if resumed:
                skipped = self.frontier.exclude_visited(self.state.visited_urls)
                retried = self.frontier.requeue_failed(self.state.failed_urls)
                logger.info("[%s] Resume: %d visited URLs excluded, %d failed URLs re-offered", self.job_id, skipped, retried)
            with self._state_lock:
                self.state.set_total(self.frontier.known_count())

            self._checkpointer.start()
            try:
                execution = self._build_executor().run(
                    self.frontier,
                    self.config.crawling.max_concurrent,
                    self.config.crawling.delay_ms,
                    stop_event=self._stop_event,
                    running_event=self._running,
                    listener=self,
                )
            finally:
                self._checkpointer.stop()
        except Exception as e:
            logger.exception("[%s] Crawl failed", self.job_id)
            return self._finish(JobStatus.FAILED, start_time, started, execution, error=str(e) or type(e).__name__)
        finally:
            self._close_sink()

        if execution.stopped:
            return self._finish(JobStatus.CANCELLED, start_time, started, execution, error="cancelled")

        if self.config.progress.archive_on_complete:
            try:
                self.state_store.archive(self.state_path)
            except StateWriteError as e:
                logger.warning("[%s] %s", self.job_id, e)
        return self._finish(JobStatus.COMPLETED, start_time, started, execution)

    def _begin_sink(self, append: bool) -> None:
        begin = getattr(self.sink, "begin", None)
        if begin is not None:
            begin(append)

    def _close_sink(self) -> None:
        close = getattr(self.sink, "close", None)
        if close is None:
            return
        try:
            close()
        except Exception:
            logger.exception("[%s] Could not close output sink", self.job_id)

    def _finish(self, status: JobStatus, start_time, started: float, execution: Optional[ExecutionResult],
                error: Optional[str] = None, registered: bool = True) -> JobResult:
        stats = JobStats(
            pages=execution.succeeded if execution else 0,
            duration=time.monotonic() - started,
            errors=execution.failed if execution else 0,
        )
        self.result = JobResult(
            id=self.job_id,
            name=self.spec.name,
            status=status,
            stats=stats,
            error=error,
            start_time=start_time,
            end_time=utc_now(),
        )
        logger.info("[%s] Crawl %s: %d pages, %d errors in %.1fs",
                    self.job_id, status.value, stats.pages, stats.errors, stats.duration)
        if self.registry is not None and registered:
            self.registry.finish(self.job_id, status=status.value, error=error)
        self._publish(JobFinished(result=self.result))
        return self.result
