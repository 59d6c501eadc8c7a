import json
import logging
import os
import tempfile
from typing import Optional

from doccrawl.domain.crawl_state import CrawlState
from doccrawl.exceptions import StateLoadError, StateWriteError
from doccrawl.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".completed"


class CrawlStateStore:
    """Reads and writes `CrawlState` snapshots as JSON files.

    Writes go to a temporary file in the target directory which is then
    renamed over the destination, so a crash mid-write leaves either the
    previous snapshot or the new one, never a torn file.
    """

    def __init__(self, *, indent: Optional[int] = 2):
        self.indent = indent

    def load(self, path: str) -> CrawlState:
        """Return the state stored at `path`, or a fresh state when missing.

        Raises StateLoadError when the file exists but is unreadable or
        does not follow the state schema.
        """
        if not os.path.exists(path):
            logger.debug("No state file at %s; starting fresh", path)
            return CrawlState()
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, UnicodeDecodeError) as e:
            raise StateLoadError(path, str(e)) from e
        except json.JSONDecodeError as e:
            raise StateLoadError(path, f"invalid JSON: {e}") from e
        try:
            return CrawlState.from_dict(data)
        except KeyError as e:
            raise StateLoadError(path, f"missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise StateLoadError(path, str(e)) from e

    def load_or_fresh(self, path: str, job_id: Optional[str]) -> CrawlState:
        """Like `load`, but a corrupt file or another job's file yields a fresh state."""
        try:
            state = self.load(path)
        except StateLoadError as e:
            logger.warning("%s; starting fresh", e)
            return CrawlState(job_id=job_id)
        if state.job_id is None:
            state.job_id = job_id
            return state
        if job_id is not None and state.job_id != job_id:
            logger.warning("State file %s belongs to job %r, not %r; starting fresh", path, state.job_id, job_id)
            return CrawlState(job_id=job_id)
        return state

    def snapshot(self, state: CrawlState, path: str) -> CrawlState:
        """Persist `state` to `path` atomically and return the saved copy."""
        saved = state.copy()
        saved.saved_at = utc_now()
        payload = json.dumps(saved.to_dict(), indent=self.indent)
        directory = os.path.dirname(os.path.abspath(path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StateWriteError(path, e) from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    logger.warning("Could not remove temporary state file %s", tmp_path)
        logger.debug("Saved state for %s to %s (%d visited, %d failed)",
                     saved.job_id, path, len(saved.visited_urls), len(saved.failed_urls))
        state.saved_at = saved.saved_at
        return saved

    def discard(self, path: str) -> bool:
        """Delete the state file; return True if one existed."""
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StateWriteError(path, e) from e
        logger.info("Discarded crawl state %s", path)
        return True

    def archive(self, path: str) -> Optional[str]:
        """Move a finished job's state aside so the next run starts fresh."""
        if not os.path.exists(path):
            return None
        target = path + ARCHIVE_SUFFIX
        try:
            os.replace(path, target)
        except OSError as e:
            raise StateWriteError(path, e) from e
        logger.info("Archived crawl state %s -> %s", path, target)
        return target
