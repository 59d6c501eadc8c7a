from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from doccrawl.domain.config import CrawlerConfig
from doccrawl.services.fetcher import Fetcher, HttpServiceFetcher
from doccrawl.services.http_service import HttpService, auth_headers


@dataclass(frozen=True)
class FetcherFactory:
    """Builds the fetcher a crawl job uses from its crawling options."""

    user_agent: str
    http_client: Callable

    def for_config(self, config: CrawlerConfig) -> Fetcher:
        if config is None:
            raise ValueError("config is required")
        crawling = config.crawling
        service = HttpService(
            user_agent=self.user_agent,
            http_client=self.http_client,
            timeout=crawling.timeout_ms / 1000,
            follow_redirects=crawling.follow_redirects,
            max_redirects=crawling.max_redirects,
            extra_headers=auth_headers(config.data.authentication),
        )
        return HttpServiceFetcher(service)
