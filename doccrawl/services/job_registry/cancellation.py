from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional


class _InMemoryCancellationManager:
    """Stop events of running jobs, keyed by job id."""

    def __init__(self, *, event_factory: Callable[[], threading.Event] = threading.Event):
        self._new_event = event_factory
        self._events: Dict[str, threading.Event] = {}

    def create(self, job_id: str) -> threading.Event:
        self._events[job_id] = event = self._new_event()
        return event

    def get(self, job_id: str) -> Optional[threading.Event]:
        return self._events.get(job_id)

    def request_cancel(self, job_id: str) -> bool:
        event = self._events.get(job_id)
        if event is None or event.is_set():
            return False
        event.set()
        return True

    def request_cancel_all(self) -> List[str]:
        """Set every unset stop event; return the ids that were signalled."""
        return [job_id for job_id in list(self._events) if self.request_cancel(job_id)]

    def cleanup(self, job_id: str) -> None:
        # the job holds its own reference; the registry no longer hands it out
        self._events.pop(job_id, None)
