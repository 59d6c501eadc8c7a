from __future__ import annotations

from typing import Protocol

from doccrawl.domain.http_response import HttpResponse


class Fetcher(Protocol):
    """Fetch a URL and return a normalized HTTP-like response.

    Implementations raise NetworkError, HttpError or RedirectLimitError.
    """

    def fetch(self, url: str, stop_event=None) -> HttpResponse: ...


class HttpServiceFetcher:
    def __init__(self, http_service):
        self._http_service = http_service

    @property
    def http_service(self):
        return self._http_service

    def fetch(self, url: str, stop_event=None) -> HttpResponse:
        return self._http_service.fetch(url)
