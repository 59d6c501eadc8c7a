import base64
import logging
import time
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, Optional
from urllib.parse import urljoin

import requests

from doccrawl.domain.config import AuthConfig
from doccrawl.domain.http_response import HttpResponse
from doccrawl.exceptions import FetchError, HttpError, NetworkError, RedirectLimitError
from doccrawl.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
READ_CHUNK_SIZE = 64 * 1024


def auth_headers(auth: Optional[AuthConfig]) -> Dict[str, str]:
    """Translate an authentication block into request headers."""
    if auth is None or auth.type == "none":
        return {}
    if auth.type == "basic" and auth.username and auth.password:
        token = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    if auth.type == "bearer" and auth.token:
        return {"Authorization": f"Bearer {auth.token}"}
    if auth.type == "apikey" and auth.token and auth.header_name:
        return {auth.header_name: auth.token}
    return {}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, (when - utc_now()).total_seconds())


class HttpService:
    """
    HTTP client wrapper for fetching web pages.

    Requires http_client callable for dependency injection. Redirects are
    followed here, hop by hop, so the hop cap and the final URL are ours.
    Failures surface as NetworkError / HttpError / RedirectLimitError.
    """

    def __init__(
        self,
        user_agent: str,
        http_client: Callable,
        timeout: float = 30.0,
        *,
        follow_redirects: bool = True,
        max_redirects: int = 5,
        extra_headers: Optional[Dict[str, str]] = None,
    ):
        self.user_agent = user_agent
        self.timeout = timeout
        self.http_client = http_client
        self.follow_redirects = follow_redirects
        self.max_redirects = int(max_redirects)
        self.extra_headers = dict(extra_headers or {})

    def _request(self, url: str):
        headers = {"User-Agent": self.user_agent}
        headers.update(self.extra_headers)
        try:
            return self.http_client(url, headers=headers, timeout=self.timeout, allow_redirects=False, stream=True)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError, requests.exceptions.ChunkedEncodingError) as e:
            raise NetworkError(url, e) from e
        except requests.exceptions.RequestException as e:
            raise FetchError(url, f"request failed: {e}") from e

    def _read_text(self, url: str, resp, deadline: float, content_type: Optional[str]) -> str:
        """Read a streamed body, giving up once `deadline` passes.

        requests' timeout bounds each socket read, not the whole body.
        """
        chunks = []
        try:
            for chunk in resp.iter_content(chunk_size=READ_CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise NetworkError(url, TimeoutError(f"response not complete within {self.timeout}s"))
                chunks.append(chunk)
        except requests.exceptions.RequestException as e:
            raise NetworkError(url, e) from e
        finally:
            resp.close()
        body = b"".join(chunks)
        # without a declared charset requests guesses ISO-8859-1 for text/*; docs are UTF-8
        encoding = resp.encoding if "charset=" in (content_type or "").lower() and resp.encoding else "utf-8"
        try:
            return body.decode(encoding, errors="replace")
        except LookupError:
            return body.decode("utf-8", errors="replace")

    def fetch(self, url: str) -> HttpResponse:
        """Fetch URL and return response with status code, body text, Content-Type and final URL.

        `timeout` bounds the whole fetch, redirects and body included.
        """
        deadline = time.monotonic() + self.timeout
        current = url
        hops = 0
        while True:
            resp = self._request(current)
            status = int(resp.status_code)
            resp_headers = getattr(resp, "headers", None) or {}
            if status in REDIRECT_STATUSES and self.follow_redirects:
                resp.close()
                location = resp_headers.get("Location")
                if not location:
                    raise HttpError(current, status)
                hops += 1
                if hops > self.max_redirects:
                    raise RedirectLimitError(url, self.max_redirects)
                nxt = urljoin(current, location)
                logger.debug("Redirect %s -> %s (%d)", current, nxt, status)
                current = nxt
                continue
            if status >= 300:
                resp.close()
                raise HttpError(current, status, retry_after=parse_retry_after(resp_headers.get("Retry-After")))
            return HttpResponse(
                status,
                self._read_text(current, resp, deadline, resp_headers.get("Content-Type")),
                resp_headers.get("Content-Type"),
                url=current,
                headers=dict(resp_headers),
            )
