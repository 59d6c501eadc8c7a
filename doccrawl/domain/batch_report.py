from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from doccrawl.domain.job import JobResult, JobStatus
from doccrawl.utils.datetime_utils import to_iso, utc_now


class BatchStatus:
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class BatchReport:
    """Job results in completion order.

    Only the scheduler thread appends; job threads hand results over a queue.
    """

    timestamp: datetime = field(default_factory=utc_now)
    status: str = BatchStatus.COMPLETED
    jobs: List[JobResult] = field(default_factory=list)

    def append(self, result: JobResult) -> None:
        if any(j.id == result.id for j in self.jobs):
            raise ValueError(f"result for job {result.id!r} already recorded")
        self.jobs.append(result)

    def _count(self, status: JobStatus) -> int:
        return sum(1 for j in self.jobs if j.status == status)

    @property
    def total(self) -> int:
        return len(self.jobs)

    @property
    def completed(self) -> int:
        return self._count(JobStatus.COMPLETED)

    @property
    def failed(self) -> int:
        return self._count(JobStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(JobStatus.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "status": self.status,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "jobs": [j.to_dict() for j in self.jobs],
        }
