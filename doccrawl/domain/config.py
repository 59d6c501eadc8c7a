from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class StartUrl:
    url: str
    page_rank: int = 0
    selectors_key: str = "default"
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class SelectorSet:
    """CSS selectors the default extractor applies for one `selectors_key`."""

    content: str = "main, article, [role=main], body"
    title: str = "h1, title"
    code: str = "pre code, pre"


@dataclass(frozen=True)
class AuthConfig:
    type: str = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    header_name: Optional[str] = None


@dataclass(frozen=True)
class CrawlingOptions:
    max_concurrent: int = 3
    delay_ms: int = 1000
    max_retries: int = 3
    timeout_ms: int = 30000
    follow_redirects: bool = True
    max_redirects: int = 5
    follow_links: bool = True
    retry_backoff_ms: int = 1000
    retry_backoff_max_ms: int = 30000
    delay_scope: str = "job"


@dataclass(frozen=True)
class ProgressOptions:
    state_file: Optional[str] = None
    autosave_interval_seconds: float = 30.0
    autosave_every_pages: int = 10
    archive_on_complete: bool = True


@dataclass(frozen=True)
class CrawlerConfigMetadata:
    """Where a crawler configuration came from."""

    name: str
    config_path: Optional[str] = None


@dataclass(frozen=True)
class CrawlerConfigData:
    """Crawl-behavior fields for a crawler configuration."""

    start_urls: tuple[StartUrl, ...]
    sitemap_urls: tuple[str, ...] = ()
    sitemap_alternate_links: bool = False
    base_url: Optional[str] = None
    stop_urls: tuple[str, ...] = ()
    allowed_domains: tuple[str, ...] = ()
    selectors: Dict[str, SelectorSet] = field(default_factory=lambda: {"default": SelectorSet()})
    authentication: AuthConfig = field(default_factory=AuthConfig)
    crawling: CrawlingOptions = field(default_factory=CrawlingOptions)
    progress: ProgressOptions = field(default_factory=ProgressOptions)


class CrawlerConfig:
    """Configuration record composed of metadata + crawl settings."""

    def __init__(
        self,
        name: str,
        start_urls=None,
        *,
        config_path: Optional[str] = None,
        sitemap_urls=None,
        sitemap_alternate_links: bool = False,
        base_url: Optional[str] = None,
        stop_urls=None,
        allowed_domains=None,
        selectors: Optional[Dict[str, SelectorSet]] = None,
        authentication: Optional[AuthConfig] = None,
        crawling: Optional[CrawlingOptions] = None,
        progress: Optional[ProgressOptions] = None,
    ):
        starts = tuple(s if isinstance(s, StartUrl) else StartUrl(url=s) for s in (start_urls or []))
        merged_selectors = {"default": SelectorSet()}
        merged_selectors.update(selectors or {})
        self.meta = CrawlerConfigMetadata(name=name, config_path=config_path)
        self.data = CrawlerConfigData(
            start_urls=starts,
            sitemap_urls=tuple(sitemap_urls or ()),
            sitemap_alternate_links=bool(sitemap_alternate_links),
            base_url=base_url,
            stop_urls=tuple(stop_urls or ()),
            allowed_domains=tuple(allowed_domains or ()),
            selectors=merged_selectors,
            authentication=authentication or AuthConfig(),
            crawling=crawling or CrawlingOptions(),
            progress=progress or ProgressOptions(),
        )

    @property
    def name(self) -> str:
        return self.meta.name

    @property
    def config_path(self) -> Optional[str]:
        return self.meta.config_path

    @property
    def start_urls(self) -> tuple[StartUrl, ...]:
        return self.data.start_urls

    @property
    def sitemap_urls(self) -> tuple[str, ...]:
        return self.data.sitemap_urls

    @property
    def crawling(self) -> CrawlingOptions:
        return self.data.crawling

    @property
    def progress(self) -> ProgressOptions:
        return self.data.progress

    def selector_set(self, key: Optional[str]) -> SelectorSet:
        return self.data.selectors.get(key or "default") or self.data.selectors["default"]

    def __repr__(self):
        return f"<CrawlerConfig name={self.name} path={self.config_path} starts={len(self.start_urls)}>"
