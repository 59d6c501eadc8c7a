from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Dict, List, Optional

from doccrawl.utils.datetime_utils import utc_now

from .cancellation import _InMemoryCancellationManager
from .models import JobHandle, JobRecord
from .store import _InMemoryJobRecordStore


def _as_dict(record: Optional[JobRecord]) -> Optional[Dict]:
    return asdict(record) if record is not None else None


class InMemoryJobRegistry:
    """Thread-safe in-memory registry for running and recently finished jobs.

    `start()` hands each job its stop event and `cancel()` sets it; the job
    itself reports the terminal status through `finish()`. At most
    `max_completed_records` finished records are kept.
    """

    def __init__(self, *, max_completed_records: int = 1000):
        self._lock = threading.Lock()
        self._records = _InMemoryJobRecordStore(max_completed_records=max_completed_records)
        self._cancellation = _InMemoryCancellationManager()

    def start(self, job_id: str, name: str) -> JobHandle:
        with self._lock:
            self._records.create_running(job_id=job_id, name=name, now=utc_now())
            return JobHandle(job_id=job_id, stop_event=self._cancellation.create(job_id))

    def update(self, job_id: str, *, pages_fetched: Optional[int] = None, pages_failed: Optional[int] = None,
               current_url: Optional[str] = None) -> bool:
        with self._lock:
            return self._records.update(job_id, pages_fetched=pages_fetched, pages_failed=pages_failed,
                                        current_url=current_url, now=utc_now())

    def finish(self, job_id: str, *, status: str, error: Optional[str] = None) -> bool:
        with self._lock:
            if not self._records.finish(job_id, status=status, error=error, now=utc_now()):
                return False
            self._cancellation.cleanup(job_id)
            for evicted in self._records.evict_completed_overflow():
                self._cancellation.cleanup(evicted)
            return True

    def get(self, job_id: str) -> Optional[Dict]:
        with self._lock:
            return _as_dict(self._records.get(job_id))

    def get_stop_event(self, job_id: str) -> Optional[threading.Event]:
        with self._lock:
            return self._cancellation.get(job_id)

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            if not self._cancellation.request_cancel(job_id):
                return False
            self._records.mark_cancelling(job_id, now=utc_now())
            return True

    def cancel_all(self) -> int:
        """Signal every running job; return how many were signalled."""
        with self._lock:
            signalled = self._cancellation.request_cancel_all()
            now = utc_now()
            for job_id in signalled:
                self._records.mark_cancelling(job_id, now=now)
            return len(signalled)

    def list_active(self) -> List[Dict]:
        with self._lock:
            return [asdict(r) for r in self._records.list_active()]
