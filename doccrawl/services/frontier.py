import heapq
import itertools
import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from doccrawl.domain.config import StartUrl
from doccrawl.domain.url_record import UrlOrigin, UrlRecord, UrlStatus
from doccrawl.exceptions import DiscoveryError
from doccrawl.services.crawl_policy import CrawlPolicy
from doccrawl.utils.urls import canonicalize

logger = logging.getLogger(__name__)


class FrontierSignal(str, Enum):
    COMPLETE = "complete"
    DRAINED = "drained"


class UrlFrontier:
    """The set of URLs known to one crawl job, partitioned by status.

    Thread-safe: worker threads report outcomes while the dispatcher claims
    new work. Every URL is keyed by its canonical form, so a URL can only be
    known once and only be InFlight once.
    """

    def __init__(
        self,
        *,
        policy: Optional[CrawlPolicy] = None,
        sitemap_loader=None,
        max_retries: int = 3,
        base_url: Optional[str] = None,
        include_alternates: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or CrawlPolicy()
        self.sitemap_loader = sitemap_loader
        self.max_retries = int(max_retries)
        self.base_url = base_url
        self.include_alternates = bool(include_alternates)
        self._clock = clock
        self._lock = threading.RLock()
        self._records: Dict[str, UrlRecord] = {}
        # canonical final URL -> canonical URL of the record that fetched it
        self._aliases: Dict[str, str] = {}
        self._heap: List[Tuple[int, int, str]] = []
        self._in_flight: set[str] = set()
        self._sequence = itertools.count()
        self._start_urls: Tuple[StartUrl, ...] = ()

    # -- seeding -----------------------------------------------------------

    def seed(self, start_urls: Sequence[Union[str, StartUrl]], sitemap_urls: Sequence[str] = (), stop_event=None) -> int:
        """Load start URLs and sitemap entries; return how many URLs are known.

        Raises DiscoveryError when nothing resolves and no base URL fallback
        is configured.
        """
        starts = tuple(s if isinstance(s, StartUrl) else StartUrl(url=s) for s in start_urls or ())
        with self._lock:
            self._start_urls = tuple(
                StartUrl(url=canonicalize(s.url) or s.url, page_rank=s.page_rank, selectors_key=s.selectors_key, tags=s.tags)
                for s in starts
            )
            for start in starts:
                canonical = canonicalize(start.url)
                if canonical is None:
                    logger.warning("Ignoring invalid start URL %r", start.url)
                    continue
                if canonical not in self._records:
                    self._add(canonical, UrlOrigin.START)

        for sitemap_url in sitemap_urls or ():
            if self.sitemap_loader is None:
                logger.warning("No sitemap loader configured; skipping %s", sitemap_url)
                continue
            entries = self.sitemap_loader.load(
                sitemap_url,
                include_alternates=self.include_alternates,
                stop_event=stop_event,
            )
            for entry in entries:
                self._offer(entry.loc, UrlOrigin.SITEMAP, None)
                for alt in entry.alternates:
                    self._offer(alt, UrlOrigin.ALT_LANG, entry.loc)

        with self._lock:
            if not self._records:
                fallback = canonicalize(self.base_url) if self.base_url else None
                if fallback is None:
                    raise DiscoveryError("no start URL or sitemap entry could be resolved")
                logger.info("No seeds resolved; falling back to base URL %s", fallback)
                self._add(fallback, UrlOrigin.START)
            count = len(self._records)
        logger.info("Frontier seeded with %d URLs", count)
        return count

    def _attributes_for(self, canonical: str) -> Tuple[int, set, str]:
        """Rank, tags and selectors key of the longest matching start URL."""
        best: Optional[StartUrl] = None
        for start in self._start_urls:
            if canonical.startswith(start.url) and (best is None or len(start.url) > len(best.url)):
                best = start
        if best is None:
            return 0, set(), "default"
        return best.page_rank, set(best.tags), best.selectors_key

    def _add(self, canonical: str, origin: UrlOrigin, found_on: Optional[str] = None,
             status: UrlStatus = UrlStatus.PENDING, attempts: int = 0) -> UrlRecord:
        rank, tags, selectors_key = self._attributes_for(canonical)
        record = UrlRecord(
            canonical_url=canonical,
            origin=origin,
            rank=rank,
            tags=tags,
            selectors_key=selectors_key,
            status=status,
            attempts=attempts,
            found_on=found_on,
            sequence=next(self._sequence),
        )
        self._records[canonical] = record
        if status == UrlStatus.PENDING:
            self._push(record)
        return record

    def _push(self, record: UrlRecord) -> None:
        heapq.heappush(self._heap, (-record.rank, record.sequence, record.canonical_url))

    def _is_known(self, canonical: str) -> bool:
        return canonical in self._records or canonical in self._aliases

    # -- discovery ---------------------------------------------------------

    def offer(self, url: str, from_page: Optional[str] = None) -> Optional[UrlRecord]:
        """Add a discovered link; return its record, or None when rejected or known."""
        return self._offer(url, UrlOrigin.DISCOVERED, from_page)

    def _offer(self, url: str, origin: UrlOrigin, from_page: Optional[str]) -> Optional[UrlRecord]:
        canonical = canonicalize(url, base=from_page)
        if canonical is None:
            return None
        reason = self.policy.rejection_reason(canonical)
        if reason is not None:
            logger.debug("Skipping (%s) %s", reason, canonical)
            return None
        with self._lock:
            if self._is_known(canonical):
                return None
            return self._add(canonical, origin, found_on=from_page)

    # -- dispatch ----------------------------------------------------------

    def next(self) -> Union[UrlRecord, FrontierSignal]:
        """Peek at the highest-rank dispatchable Pending URL (FIFO tie-break).

        Returns COMPLETE when nothing is Pending or InFlight, DRAINED when
        work remains but none of it can be dispatched right now.
        """
        with self._lock:
            record = self._peek_ready()
            if record is not None:
                return record
            if not self._in_flight and not self._has_pending():
                return FrontierSignal.COMPLETE
            return FrontierSignal.DRAINED

    def claim(self) -> Union[UrlRecord, FrontierSignal]:
        """`next()` and `mark_in_flight()` as one atomic step."""
        with self._lock:
            item = self.next()
            if isinstance(item, UrlRecord):
                self.mark_in_flight(item.canonical_url)
            return item

    def _peek_ready(self) -> Optional[UrlRecord]:
        now = self._clock()
        deferred = []
        found = None
        while self._heap:
            entry = self._heap[0]
            record = self._records.get(entry[2])
            # stale heap entries are dropped lazily
            if record is None or record.status != UrlStatus.PENDING or record.sequence != entry[1]:
                heapq.heappop(self._heap)
                continue
            if record.not_before > now:
                deferred.append(heapq.heappop(self._heap))
                continue
            found = record
            break
        for entry in deferred:
            heapq.heappush(self._heap, entry)
        return found

    def _has_pending(self) -> bool:
        return any(r.status == UrlStatus.PENDING for r in self._records.values())

    def seconds_until_ready(self) -> Optional[float]:
        """Time until the earliest backed-off Pending URL becomes dispatchable."""
        with self._lock:
            waits = [r.not_before for r in self._records.values() if r.status == UrlStatus.PENDING]
            if not waits:
                return None
            return max(0.0, min(waits) - self._clock())

    # -- state transitions -------------------------------------------------

    def _get(self, url: str) -> UrlRecord:
        canonical = canonicalize(url) or url
        record = self._records.get(canonical)
        if record is None:
            raise KeyError(f"unknown URL {url!r}")
        return record

    def mark_in_flight(self, url: str) -> UrlRecord:
        with self._lock:
            record = self._get(url)
            if record.status != UrlStatus.PENDING:
                raise ValueError(f"{record.canonical_url} is {record.status.value}, not pending")
            record.status = UrlStatus.IN_FLIGHT
            record.attempts += 1
            self._in_flight.add(record.canonical_url)
            return record

    def release(self, url: str) -> None:
        """Return a claimed but never fetched URL to Pending without counting an attempt."""
        with self._lock:
            record = self._get(url)
            if record.status != UrlStatus.IN_FLIGHT:
                return
            self._in_flight.discard(record.canonical_url)
            record.status = UrlStatus.PENDING
            record.attempts = max(0, record.attempts - 1)
            self._push(record)

    def mark_done(self, url: str) -> UrlRecord:
        with self._lock:
            record = self._get(url)
            self._in_flight.discard(record.canonical_url)
            record.status = UrlStatus.DONE
            record.last_error = None
            return record

    def mark_skipped(self, url: str) -> UrlRecord:
        with self._lock:
            record = self._get(url)
            self._in_flight.discard(record.canonical_url)
            record.status = UrlStatus.SKIPPED
            return record

    def mark_failed(self, url: str, error, retryable: bool = True, backoff_seconds: float = 0.0) -> UrlStatus:
        """Record a failed attempt.

        A retryable failure goes back to Pending while attempts < max_retries;
        everything else is final. Returns the resulting status.
        """
        with self._lock:
            record = self._get(url)
            self._in_flight.discard(record.canonical_url)
            record.last_error = str(error)
            if retryable and record.attempts < self.max_retries:
                record.status = UrlStatus.PENDING
                record.not_before = self._clock() + max(0.0, backoff_seconds)
                self._push(record)
                logger.debug("Re-queued %s after attempt %d: %s", record.canonical_url, record.attempts, error)
            else:
                record.status = UrlStatus.FAILED
                logger.info("Giving up on %s after %d attempt(s): %s", record.canonical_url, record.attempts, error)
            return record.status

    def resolve_redirect(self, url: str, final_url: Optional[str]) -> bool:
        """Register the canonical final URL of a fetched record.

        Returns False when another record already owns that final URL, in
        which case the caller should skip the page as a duplicate.
        """
        final = canonicalize(final_url) if final_url else None
        with self._lock:
            record = self._get(url)
            if final is None or final == record.canonical_url:
                return True
            owner = self._aliases.get(final)
            if owner is not None and owner != record.canonical_url:
                return False
            if final in self._records:
                return False
            self._aliases[final] = record.canonical_url
            return True

    # -- resume ------------------------------------------------------------

    def exclude_visited(self, urls: Iterable[str]) -> int:
        """Mark URLs visited by an earlier run as Done so they are never dispatched."""
        count = 0
        with self._lock:
            for url in urls:
                canonical = canonicalize(url) or url
                record = self._records.get(canonical)
                if record is None:
                    self._add(canonical, UrlOrigin.RESUMED, status=UrlStatus.DONE)
                    count += 1
                elif record.status == UrlStatus.PENDING:
                    record.status = UrlStatus.DONE
                    count += 1
        return count

    def requeue_failed(self, urls: Iterable[str]) -> int:
        """Give URLs that failed in an earlier run exactly one more attempt."""
        attempts = max(self.max_retries - 1, 0)
        count = 0
        for url in urls:
            canonical = canonicalize(url)
            if canonical is None or self.policy.rejection_reason(canonical) is not None:
                continue
            with self._lock:
                record = self._records.get(canonical)
                if record is None:
                    self._add(canonical, UrlOrigin.RESUMED, attempts=attempts)
                elif record.status in (UrlStatus.PENDING, UrlStatus.FAILED):
                    record.status = UrlStatus.PENDING
                    record.attempts = attempts
                    record.sequence = next(self._sequence)
                    self._push(record)
                else:
                    continue
                count += 1
        return count

    # -- introspection -----------------------------------------------------

    def get(self, url: str) -> Optional[UrlRecord]:
        with self._lock:
            return self._records.get(canonicalize(url) or url)

    def is_known(self, url: str) -> bool:
        canonical = canonicalize(url) or url
        with self._lock:
            return self._is_known(canonical)

    def known_count(self) -> int:
        with self._lock:
            return len(self._records)

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            out = {s.value: 0 for s in UrlStatus}
            for record in self._records.values():
                out[record.status.value] += 1
            return out

    def records(self) -> List[UrlRecord]:
        with self._lock:
            return list(self._records.values())
