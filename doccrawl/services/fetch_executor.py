import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from doccrawl.domain.page_record import PageRecord
from doccrawl.domain.url_record import UrlRecord, UrlStatus
from doccrawl.exceptions import DoccrawlError, HttpError, OutputError, is_retryable
from doccrawl.services.frontier import FrontierSignal, UrlFrontier
from doccrawl.services.rate_limiter import RateLimiter
from doccrawl.utils.datetime_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

# Upper bound on how long the dispatcher sleeps before re-checking for work.
POLL_INTERVAL_SECONDS = 0.25


class ExecutionListener(Protocol):
    def page_succeeded(self, record: UrlRecord, page: PageRecord, new_links: int) -> None: ...

    def page_failed(self, record: UrlRecord, error: BaseException, final: bool) -> None: ...


@dataclass(frozen=True)
class ExecutionResult:
    succeeded: int
    failed: int
    stopped: bool
    abandoned: int = 0


class FetchExecutor:
    """Drives a frontier to completion on a bounded pool of fetch workers.

    The dispatcher (the thread calling `run`) is the only one claiming URLs,
    so the number of in-flight fetches never exceeds `concurrency_limit`.
    Workers fetch, extract, write to the sink and report the outcome back to
    the frontier and to the optional listener.
    """

    def __init__(
        self,
        *,
        fetcher,
        extractor,
        sink,
        job_id: str = "job",
        rate_limiter: Optional[RateLimiter] = None,
        follow_links: bool = True,
        retry_backoff_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 30.0,
        cancel_timeout_seconds: float = 10.0,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.sink = sink
        self.job_id = job_id
        self.rate_limiter = rate_limiter
        self.follow_links = follow_links
        self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
        self.retry_backoff_max_seconds = max(0.0, float(retry_backoff_max_seconds))
        self.cancel_timeout_seconds = float(cancel_timeout_seconds)
        self._counter_lock = threading.Lock()
        # held while a worker reports; once `_detached` is set nothing reports
        self._report_lock = threading.RLock()
        self._detached = False
        self._succeeded = 0
        self._failed = 0
        self.max_in_flight_seen = 0

    def _is_stopped(self, stop_event) -> bool:
        return stop_event is not None and stop_event.is_set()

    def backoff_for(self, record: UrlRecord, error: BaseException) -> float:
        if self.retry_backoff_seconds <= 0 and not isinstance(error, HttpError):
            return 0.0
        delay = self.retry_backoff_seconds * (2 ** max(record.attempts - 1, 0))
        if isinstance(error, HttpError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return min(delay, self.retry_backoff_max_seconds)

    def run(
        self,
        frontier: UrlFrontier,
        concurrency_limit: int,
        delay_ms: int = 0,
        *,
        stop_event: Optional[threading.Event] = None,
        running_event: Optional[threading.Event] = None,
        listener: Optional[ExecutionListener] = None,
    ) -> ExecutionResult:
        """Fetch every dispatchable URL of `frontier`.

        `running_event`, when given, pauses dispatch while cleared. Returns
        once the frontier is complete or `stop_event` is set. Fetches still
        running after `cancel_timeout_seconds` are abandoned: their outcome
        never reaches the frontier, the sink or the listener.
        """
        limit = max(1, int(concurrency_limit))
        limiter = self.rate_limiter or RateLimiter.from_millis(delay_ms)
        in_flight: Dict[Future, UrlRecord] = {}
        stopped = False
        with self._report_lock:
            self._detached = False

        pool = ThreadPoolExecutor(max_workers=limit, thread_name_prefix=f"fetch-{self.job_id}")
        try:
            while True:
                if self._is_stopped(stop_event):
                    stopped = True
                    break
                if running_event is not None and not running_event.is_set():
                    running_event.wait(POLL_INTERVAL_SECONDS)
                    continue
                if len(in_flight) >= limit:
                    self._wait_some(frontier, in_flight, POLL_INTERVAL_SECONDS)
                    continue

                item = frontier.claim()
                if item is FrontierSignal.COMPLETE:
                    break
                if item is FrontierSignal.DRAINED:
                    if in_flight:
                        self._wait_some(frontier, in_flight, POLL_INTERVAL_SECONDS)
                    else:
                        pause = frontier.seconds_until_ready()
                        pause = POLL_INTERVAL_SECONDS if pause is None else min(max(pause, 0.01), POLL_INTERVAL_SECONDS)
                        if stop_event is not None:
                            stop_event.wait(pause)
                        else:
                            time.sleep(pause)
                    continue

                record = item
                if not limiter.wait(stop_event):
                    frontier.release(record.canonical_url)
                    stopped = True
                    break
                future = pool.submit(self._process, frontier, record, stop_event, listener)
                in_flight[future] = record
                self.max_in_flight_seen = max(self.max_in_flight_seen, len(in_flight))

            abandoned = 0
            if in_flight:
                timeout = self.cancel_timeout_seconds if stopped else None
                done, not_done = wait(list(in_flight), timeout=timeout)
                for future in done:
                    self._collect(frontier, future, in_flight.pop(future))
                abandoned = len(not_done)
                if abandoned:
                    logger.warning("[%s] Abandoning %d in-flight fetch(es) after cancel timeout", self.job_id, abandoned)
        finally:
            with self._report_lock:
                self._detached = True
            pool.shutdown(wait=not stopped, cancel_futures=True)

        with self._counter_lock:
            return ExecutionResult(succeeded=self._succeeded, failed=self._failed, stopped=stopped, abandoned=abandoned)

    def _wait_some(self, frontier: UrlFrontier, in_flight: Dict[Future, UrlRecord], timeout: Optional[float]) -> None:
        done, _ = wait(list(in_flight), timeout=timeout, return_when=FIRST_COMPLETED)
        for future in done:
            self._collect(frontier, future, in_flight.pop(future))

    def _collect(self, frontier: UrlFrontier, future: Future, record: UrlRecord) -> None:
        exc = future.exception()
        if exc is None:
            return
        logger.error("[%s] Worker crashed for %s: %s", self.job_id, record.canonical_url, exc, exc_info=exc)
        current = frontier.get(record.canonical_url)
        if current is not None and current.status == UrlStatus.IN_FLIGHT:
            frontier.mark_failed(record.canonical_url, exc, retryable=False)

    def _process(self, frontier: UrlFrontier, record: UrlRecord, stop_event, listener: Optional[ExecutionListener]) -> None:
        url = record.canonical_url
        try:
            response = self.fetcher.fetch(url, stop_event=stop_event)
        except Exception as e:
            self._fail(frontier, record, e, listener)
            return

        final_url = response.url or url
        with self._report_lock:
            if self._detached:
                logger.info("[%s] Dropping result for %s: fetch was abandoned", self.job_id, url)
                return
            if not frontier.resolve_redirect(url, final_url):
                logger.info("[%s] Skipping %s: redirects to already known %s", self.job_id, url, final_url)
                frontier.mark_skipped(url)
                return

        try:
            result = self.extractor.extract(response, record)
        except Exception as e:
            self._fail(frontier, record, e, listener)
            return

        with self._report_lock:
            if self._detached:
                logger.info("[%s] Dropping result for %s: fetch was abandoned", self.job_id, url)
                return
            page = PageRecord(
                job_id=self.job_id,
                url=url,
                final_url=final_url,
                status_code=response.status_code,
                title=result.title,
                content=result.content,
                fetched_at=to_iso(utc_now()),
                code_blocks=list(result.code_blocks),
                discovered_links=list(result.discovered_links),
                rank=record.rank,
                tags=sorted(record.tags),
                selectors_key=record.selectors_key,
            )
            try:
                self.sink.write(page)
            except Exception as e:
                self._fail(frontier, record, e if isinstance(e, OutputError) else OutputError(str(e)), listener)
                return

            new_links = 0
            if self.follow_links:
                # offer before mark_done so the frontier never looks complete with links still unseen
                new_links = sum(1 for link in result.discovered_links if frontier.offer(link, from_page=final_url) is not None)
            frontier.mark_done(url)
            with self._counter_lock:
                self._succeeded += 1
            logger.info("[%s] Fetched %s -> %s (%d new links)", self.job_id, url, response.status_code, new_links)
            if listener is not None:
                listener.page_succeeded(record, page, new_links)

    def _fail(self, frontier: UrlFrontier, record: UrlRecord, error: BaseException, listener: Optional[ExecutionListener]) -> None:
        with self._report_lock:
            if self._detached:
                logger.info("[%s] Dropping failure for %s: fetch was abandoned (%s)", self.job_id, record.canonical_url, error)
                return
            retryable = is_retryable(error)
            if not isinstance(error, DoccrawlError):
                logger.error("[%s] Unexpected error for %s: %s", self.job_id, record.canonical_url, error, exc_info=error)
            backoff = self.backoff_for(record, error) if retryable else 0.0
            status = frontier.mark_failed(record.canonical_url, error, retryable=retryable, backoff_seconds=backoff)
            final = status == UrlStatus.FAILED
            if final:
                with self._counter_lock:
                    self._failed += 1
                logger.warning("[%s] Failed %s: %s", self.job_id, record.canonical_url, error)
            else:
                logger.info("[%s] Retrying %s in %.2fs (attempt %d): %s", self.job_id, record.canonical_url, backoff, record.attempts, error)
            if listener is not None:
                listener.page_failed(record, error, final)
