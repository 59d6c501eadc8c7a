from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

RUNNING = "running"
CANCELLING = "cancelling"
ACTIVE_STATUSES = frozenset({RUNNING, CANCELLING})


@dataclass
class JobRecord:
    """Registry view of one crawl job. Mutated only under the registry lock."""

    id: str
    name: str
    status: str
    started_at: datetime
    last_seen: datetime
    finished_at: Optional[datetime] = None
    pages_fetched: int = 0
    pages_failed: int = 0
    current_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    stop_event: threading.Event
