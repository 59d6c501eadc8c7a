"""Custom exceptions for doccrawl services."""
from typing import Optional


class DoccrawlError(Exception):
    """Base class for every error raised by doccrawl."""


class ConfigError(DoccrawlError):
    """Raised when a crawl or batch configuration fails validation."""

    def __init__(self, problems, source: Optional[str] = None):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        self.source = source
        prefix = f"Invalid config '{source}'" if source else "Invalid config"
        super().__init__(f"{prefix}: {'; '.join(self.problems)}")


class ConfigNotFoundError(ConfigError):
    """Raised when a requested config file cannot be found on disk."""

    def __init__(self, config_path: str, reason: str = "not found"):
        self.config_path = config_path
        self.reason = reason
        super().__init__([f"file {reason}: {config_path}"], source=config_path)


class DiscoveryError(DoccrawlError):
    """No seed URL could be resolved for a job; fatal for that job."""


class FetchError(DoccrawlError):
    """Base class for failures while fetching a single URL."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{message} ({url})")


class NetworkError(FetchError):
    """Timeout, DNS failure, connection reset and other transport errors."""

    def __init__(self, url: str, original: Exception):
        self.original = original
        super().__init__(url, f"network error: {original}")


class HttpError(FetchError):
    """The server answered with a non-success status code."""

    def __init__(self, url: str, status: int, retry_after: Optional[float] = None):
        self.status = int(status)
        self.retry_after = retry_after
        super().__init__(url, f"HTTP {self.status}")


class RedirectLimitError(FetchError):
    """More redirect hops than the configured cap."""

    def __init__(self, url: str, hops: int):
        self.hops = hops
        super().__init__(url, f"too many redirects (>{hops})")


class ExtractError(DoccrawlError):
    """The extraction collaborator could not turn a response into a page."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"extraction failed for {url}: {reason}")


class OutputError(DoccrawlError):
    """The output sink rejected a page record."""


class StateLoadError(DoccrawlError):
    """A persisted crawl state exists but cannot be read or is not schema-valid."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not load crawl state {path}: {reason}")


class StateWriteError(DoccrawlError):
    """A crawl state snapshot could not be written."""

    def __init__(self, path: str, original: Exception):
        self.path = path
        self.original = original
        super().__init__(f"Could not write crawl state {path}: {original}")


def is_retryable(exc: BaseException) -> bool:
    """Return True when a per-URL failure deserves another attempt.

    Network errors and HTTP 5xx/429 are transient; every other HTTP status,
    redirect loops, extraction and output failures are final for that URL.
    """
    if isinstance(exc, NetworkError):
        return True
    if isinstance(exc, HttpError):
        return exc.status == 429 or 500 <= exc.status <= 599
    return False
