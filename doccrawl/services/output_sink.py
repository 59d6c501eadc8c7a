import json
import logging
import os
import threading
from typing import List, Protocol

from doccrawl.domain.page_record import PageRecord
from doccrawl.exceptions import OutputError

logger = logging.getLogger(__name__)


class OutputSink(Protocol):
    def begin(self, append: bool) -> None: ...

    def write(self, record: PageRecord) -> None: ...

    def close(self) -> None: ...


class JsonLinesOutputSink:
    """Writes one JSON object per page record to a file.

    `begin(append=False)` starts the file over; a resumed crawl calls
    `begin(append=True)` to keep the records of the interrupted run. Writes
    after `close()` are refused rather than reopening the file.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._fh = None
        self._mode = "a"
        self._closed = False
        self.count = 0

    def begin(self, append: bool) -> None:
        with self._lock:
            self._closed = False
            self._mode = "a" if append else "w"
            if not append and self._fh is None and os.path.exists(self.path):
                try:
                    open(self.path, "w", encoding="utf-8").close()
                except OSError as e:
                    raise OutputError(f"could not truncate {self.path}: {e}") from e
                logger.info("Truncated previous output %s", self.path)

    def write(self, record: PageRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            if self._closed:
                raise OutputError(f"output {self.path} is closed")
            try:
                if self._fh is None:
                    parent = os.path.dirname(self.path)
                    if parent:
                        os.makedirs(parent, exist_ok=True)
                    self._fh = open(self.path, self._mode, encoding="utf-8")
                    self._mode = "a"
                self._fh.write(line + "\n")
                self._fh.flush()
            except OSError as e:
                raise OutputError(f"could not write page record to {self.path}: {e}") from e
            self.count += 1

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._fh is not None:
                self._fh.close()
                self._fh = None


class CollectingOutputSink:
    """Keeps page records in memory; handy for embedding and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: List[PageRecord] = []

    def begin(self, append: bool) -> None:
        if not append:
            with self._lock:
                self.records = []

    def write(self, record: PageRecord) -> None:
        with self._lock:
            self.records.append(record)

    def close(self) -> None:
        pass

    @property
    def urls(self) -> List[str]:
        with self._lock:
            return [r.url for r in self.records]
