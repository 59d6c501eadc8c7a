from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from doccrawl.utils.datetime_utils import parse_to_utc, to_iso, utc_now


@dataclass
class CrawlStats:
    total_pages: int = 0
    successful_pages: int = 0
    failed_pages: int = 0


@dataclass
class CrawlState:
    """Persisted crawl progress for a single job.

    Owned by exactly one job; the job serializes every mutation.
    """

    job_id: Optional[str] = None
    start_time: datetime = field(default_factory=utc_now)
    visited_urls: Set[str] = field(default_factory=set)
    failed_urls: Set[str] = field(default_factory=set)
    stats: CrawlStats = field(default_factory=CrawlStats)
    saved_at: Optional[datetime] = None

    def record_success(self, url: str) -> None:
        if url not in self.visited_urls:
            self.visited_urls.add(url)
            self.stats.successful_pages += 1
        if url in self.failed_urls:
            self.failed_urls.discard(url)
            self.stats.failed_pages -= 1

    def record_failure(self, url: str) -> None:
        if url in self.visited_urls or url in self.failed_urls:
            return
        self.failed_urls.add(url)
        self.stats.failed_pages += 1

    def set_total(self, total: int) -> None:
        self.stats.total_pages = int(total)

    def copy(self) -> "CrawlState":
        return CrawlState(
            job_id=self.job_id,
            start_time=self.start_time,
            visited_urls=set(self.visited_urls),
            failed_urls=set(self.failed_urls),
            stats=CrawlStats(
                total_pages=self.stats.total_pages,
                successful_pages=self.stats.successful_pages,
                failed_pages=self.stats.failed_pages,
            ),
            saved_at=self.saved_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "start_time": to_iso(self.start_time),
            "saved_at": to_iso(self.saved_at),
            "visited_urls": sorted(self.visited_urls),
            "failed_urls": sorted(self.failed_urls),
            "statistics": {
                "total_pages": self.stats.total_pages,
                "successful_pages": self.stats.successful_pages,
                "failed_pages": self.stats.failed_pages,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlState":
        """Build a state from its persisted form.

        Raises ValueError/TypeError/KeyError when `data` does not follow the schema.
        """
        if not isinstance(data, dict):
            raise TypeError("state must be a JSON object")
        visited = data["visited_urls"]
        failed = data["failed_urls"]
        stats = data["statistics"]
        if not isinstance(visited, list) or not all(isinstance(u, str) for u in visited):
            raise TypeError("visited_urls must be a list of strings")
        if not isinstance(failed, list) or not all(isinstance(u, str) for u in failed):
            raise TypeError("failed_urls must be a list of strings")
        if not isinstance(stats, dict):
            raise TypeError("statistics must be an object")
        counts = {}
        for key in ("total_pages", "successful_pages", "failed_pages"):
            value = stats.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"statistics.{key} must be an integer")
            counts[key] = value
        start_time = parse_to_utc(data.get("start_time"))
        if data.get("start_time") is not None and start_time is None:
            raise ValueError("start_time is not an ISO-8601 timestamp")
        job_id = data.get("job_id")
        if job_id is not None and not isinstance(job_id, str):
            raise TypeError("job_id must be a string")
        return cls(
            job_id=job_id,
            start_time=start_time or utc_now(),
            visited_urls=set(visited),
            failed_urls=set(failed),
            stats=CrawlStats(**counts),
            saved_at=parse_to_utc(data.get("saved_at")),
        )
