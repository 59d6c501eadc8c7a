import threading
import time

import pytest

from doccrawl.domain.config import CrawlerConfig, CrawlingOptions, ProgressOptions
from doccrawl.domain.http_response import HttpResponse
from doccrawl.exceptions import HttpError
from doccrawl.utils.urls import canonicalize


def page(title, links=(), body="Some documentation text."):
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body><main><h1>{title}</h1><p>{body}</p>{anchors}</main></body></html>"


class FakeSite:
    """In-memory web site used in place of the HTTP fetcher.

    `pages` maps URL -> HTML, an int status code, an exception, or a list of
    those consumed one per request (the last one repeats).
    """

    def __init__(self, pages=None, *, delay=0.0, redirects=None):
        self.pages = {canonicalize(k): v for k, v in (pages or {}).items()}
        self.redirects = {canonicalize(k): v for k, v in (redirects or {}).items()}
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()
        self._active = 0
        self.max_active = 0
        self.gate = None

    def fetch(self, url, stop_event=None):
        with self._lock:
            self.calls.append(url)
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.delay:
                time.sleep(self.delay)
            return self._respond(url)
        finally:
            with self._lock:
                self._active -= 1

    def _respond(self, url):
        key = canonicalize(url)
        final_url = self.redirects.get(key, url)
        outcome = self.pages.get(canonicalize(final_url), 404)
        if isinstance(outcome, list):
            with self._lock:
                outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int):
            raise HttpError(url, outcome)
        return HttpResponse(status_code=200, text=outcome, content_type="text/html; charset=utf-8", url=final_url, headers={})

    def fetch_count(self, url):
        key = canonicalize(url)
        with self._lock:
            return sum(1 for c in self.calls if canonicalize(c) == key)


class FakeFetcherFactory:
    def __init__(self, site):
        self.site = site

    def for_config(self, config):
        return self.site


def make_config(start_urls, name="docs", **crawling):
    options = dict(max_concurrent=2, delay_ms=0, max_retries=3, retry_backoff_ms=0)
    options.update(crawling)
    return CrawlerConfig(
        name=name,
        start_urls=start_urls,
        crawling=CrawlingOptions(**options),
        progress=ProgressOptions(autosave_interval_seconds=0, autosave_every_pages=1),
    )


@pytest.fixture
def fake_site():
    return FakeSite


@pytest.fixture
def html_page():
    return page


@pytest.fixture
def crawler_config():
    return make_config


@pytest.fixture
def fetcher_factory_for():
    return FakeFetcherFactory
