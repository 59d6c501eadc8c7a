import logging
import threading
from typing import Callable, List, Tuple, Type

logger = logging.getLogger(__name__)

Handler = Callable[[object], None]


class EventBus:
    """Synchronous publish/subscribe for lifecycle events.

    Handlers run on the publishing thread. A failing handler is logged and
    never affects the publisher or the other handlers.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[Type, Handler]] = []

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register `handler` for `event_type` (and subclasses). Returns an unsubscribe function."""
        entry = (event_type, handler)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        return self.subscribe(object, handler)

    def publish(self, event: object) -> int:
        with self._lock:
            handlers = [h for t, h in self._subscribers if isinstance(event, t)]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)
        return len(handlers)
