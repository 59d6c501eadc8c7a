import logging
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from doccrawl.domain.crawl_state import CrawlState
from doccrawl.exceptions import StateWriteError
from doccrawl.services.state_store import CrawlStateStore

logger = logging.getLogger(__name__)


class Checkpointer:
    """Periodically flushes a job's crawl state to disk.

    A flush happens every `interval_seconds` when something changed, after
    every `every_pages` successful pages, and once more on `stop()`. Write
    failures are logged; the crawl keeps going.
    """

    def __init__(
        self,
        store: CrawlStateStore,
        path: str,
        state_provider: Callable[[], CrawlState],
        *,
        interval_seconds: float = 30.0,
        every_pages: int = 10,
        on_saved: Optional[Callable[[CrawlState, str], None]] = None,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ):
        self.store = store
        self.path = path
        self.state_provider = state_provider
        self.interval_seconds = float(interval_seconds)
        self.every_pages = int(every_pages)
        self.on_saved = on_saved
        self._scheduler_factory = scheduler_factory
        self._sched: Optional[BackgroundScheduler] = None
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._dirty = False
        self._pages_since_flush = 0
        self.saves = 0
        self.failures = 0

    def start(self) -> None:
        if self._sched is not None or self.interval_seconds <= 0:
            return
        self._sched = self._scheduler_factory()
        self._sched.add_job(
            self._on_interval,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=f"checkpoint:{self.path}",
            replace_existing=True,
        )
        self._sched.start()
        logger.debug("Autosaving %s every %s seconds", self.path, self.interval_seconds)

    def stop(self) -> Optional[CrawlState]:
        """Stop autosaving and write one final snapshot."""
        if self._sched is not None:
            try:
                self._sched.shutdown(wait=True)
            finally:
                self._sched = None
        return self.flush("shutdown")

    def mark_dirty(self) -> None:
        with self._lock:
            self._dirty = True

    def page_succeeded(self) -> None:
        with self._lock:
            self._dirty = True
            self._pages_since_flush += 1
            due = self.every_pages > 0 and self._pages_since_flush >= self.every_pages
        if due:
            self.flush("pages")

    def _on_interval(self) -> None:
        with self._lock:
            dirty = self._dirty
        if dirty:
            self.flush("interval")

    def flush(self, reason: str = "manual") -> Optional[CrawlState]:
        """Write the current state now. Returns the saved state, or None on failure."""
        with self._flush_lock:
            with self._lock:
                self._dirty = False
                self._pages_since_flush = 0
            state = self.state_provider()
            try:
                saved = self.store.snapshot(state, self.path)
            except StateWriteError as e:
                self.failures += 1
                with self._lock:
                    self._dirty = True
                logger.error("Checkpoint (%s) failed: %s", reason, e)
                return None
            self.saves += 1
        if self.on_saved is not None:
            try:
                self.on_saved(saved, reason)
            except Exception:
                logger.exception("Checkpoint callback failed for %s", self.path)
        return saved
