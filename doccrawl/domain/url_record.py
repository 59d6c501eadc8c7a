from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set


class UrlStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class UrlOrigin(str, Enum):
    SITEMAP = "sitemap"
    START = "start"
    DISCOVERED = "discovered"
    ALT_LANG = "alt-lang"
    RESUMED = "resumed"


TERMINAL_STATUSES = frozenset({UrlStatus.DONE, UrlStatus.FAILED, UrlStatus.SKIPPED})


@dataclass
class UrlRecord:
    """One URL known to a crawl job's frontier.

    `canonical_url` is the dedup key. `not_before` is a monotonic timestamp
    gating re-dispatch while a retry backoff is pending.
    """

    canonical_url: str
    origin: UrlOrigin
    rank: int = 0
    tags: Set[str] = field(default_factory=set)
    selectors_key: str = "default"
    status: UrlStatus = UrlStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    found_on: Optional[str] = None
    not_before: float = 0.0
    sequence: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<UrlRecord {self.canonical_url} status={self.status.value} attempts={self.attempts}>"
