from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from doccrawl.domain.config import CrawlerConfig
from doccrawl.utils.datetime_utils import to_iso


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobSpec:
    """A batch entry. Immutable once handed to the scheduler."""

    id: str
    name: str
    config: CrawlerConfig
    priority: int = 0
    max_retries: Optional[int] = None
    output_path: Optional[str] = None
    state_file: Optional[str] = None


@dataclass(frozen=True)
class JobStats:
    pages: int = 0
    duration: float = 0.0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"pages": self.pages, "duration": round(self.duration, 3), "errors": self.errors}


@dataclass(frozen=True)
class JobResult:
    id: str
    name: str
    status: JobStatus
    stats: Optional[JobStats] = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
        }
        if self.stats is not None:
            out["stats"] = self.stats.to_dict()
        if self.error:
            out["error"] = self.error
        return out


@dataclass(frozen=True)
class BatchConfig:
    jobs: tuple
    max_parallel: int = 3
    continue_on_error: bool = True
    source: Optional[str] = None
