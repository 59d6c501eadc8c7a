from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from .models import CANCELLING, RUNNING, JobRecord


class _InMemoryJobRecordStore:
    """Job records by id. Finished records are retained oldest-first up to a cap."""

    def __init__(self, *, max_completed_records: int):
        if max_completed_records < 0:
            raise ValueError("max_completed_records must be >= 0")
        self._records: Dict[str, JobRecord] = {}
        self._finished: "OrderedDict[str, None]" = OrderedDict()
        self._retain = max_completed_records

    def create_running(self, *, job_id: str, name: str, now: datetime) -> JobRecord:
        current = self._records.get(job_id)
        if current is not None and current.is_active:
            raise ValueError(f"job {job_id!r} is already running")
        self._finished.pop(job_id, None)
        self._records[job_id] = JobRecord(id=job_id, name=name, status=RUNNING, started_at=now, last_seen=now)
        return self._records[job_id]

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._records.get(job_id)

    def update(self, job_id: str, *, pages_fetched: Optional[int] = None, pages_failed: Optional[int] = None,
               current_url: Optional[str] = None, now: datetime) -> bool:
        record = self._records.get(job_id)
        if record is None:
            return False
        changes = {"pages_fetched": pages_fetched, "pages_failed": pages_failed, "current_url": current_url}
        for attr, value in changes.items():
            if value is not None:
                setattr(record, attr, value)
        record.last_seen = now
        return True

    def finish(self, job_id: str, *, status: str, error: Optional[str], now: datetime) -> bool:
        record = self._records.get(job_id)
        if record is None or not record.is_active:
            return False
        record.status = status
        record.error = error or record.error
        record.finished_at = record.last_seen = now
        self._finished[job_id] = None
        return True

    def mark_cancelling(self, job_id: str, *, now: datetime) -> bool:
        record = self._records.get(job_id)
        if record is None or record.status != RUNNING:
            return False
        record.status = CANCELLING
        record.last_seen = now
        return True

    def evict_completed_overflow(self) -> List[str]:
        """Drop the oldest finished records beyond the cap; return their ids."""
        evicted: List[str] = []
        while len(self._finished) > self._retain:
            job_id, _ = self._finished.popitem(last=False)
            if self._records.pop(job_id, None) is not None:
                evicted.append(job_id)
        return evicted

    def list_active(self) -> List[JobRecord]:
        return [r for r in self._records.values() if r.is_active]
