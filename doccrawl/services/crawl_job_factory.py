"""Factory for creating CrawlJob instances."""
import logging
import os
import re
from typing import Callable, Optional

from doccrawl.domain.config import CrawlerConfig
from doccrawl.domain.job import JobSpec
from doccrawl.services.crawl_job import CrawlJob
from doccrawl.services.fetcher_factory import FetcherFactory
from doccrawl.services.output_sink import JsonLinesOutputSink
from doccrawl.services.page_extractor import HtmlPageExtractor
from doccrawl.services.rate_limiter import RateLimiter
from doccrawl.services.sitemap_loader import SitemapLoader
from doccrawl.services.state_store import CrawlStateStore

logger = logging.getLogger(__name__)

GLOBAL_DELAY_SCOPE = "global"


def safe_file_stem(job_id: str) -> str:
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", job_id).strip("._")
    return stem or "job"


def default_extractor_factory(config: CrawlerConfig) -> HtmlPageExtractor:
    return HtmlPageExtractor(selectors=config.data.selectors)


class CrawlJobFactory:
    """Builds a ready-to-run CrawlJob, with its collaborators, from a JobSpec."""

    def __init__(
        self,
        *,
        fetcher_factory: FetcherFactory,
        state_store: CrawlStateStore,
        event_bus=None,
        registry=None,
        state_dir: str = ".doccrawl",
        output_dir: str = "output",
        extractor_factory: Callable[[CrawlerConfig], object] = default_extractor_factory,
        sink_factory: Callable[[str], object] = JsonLinesOutputSink,
        shared_rate_limiter: Optional[RateLimiter] = None,
        cancel_timeout_seconds: float = 10.0,
    ):
        self.fetcher_factory = fetcher_factory
        self.state_store = state_store
        self.event_bus = event_bus
        self.registry = registry
        self.state_dir = state_dir
        self.output_dir = output_dir
        self.extractor_factory = extractor_factory
        self.sink_factory = sink_factory
        self.shared_rate_limiter = shared_rate_limiter
        self.cancel_timeout_seconds = float(cancel_timeout_seconds)

    def state_path_for(self, spec: JobSpec, state_path: Optional[str] = None) -> str:
        """Where a job keeps its state.

        Precedence: explicit path, the job spec, the config's
        `progress.state_file`, then `<state_dir>/<job id>.state.json`.
        """
        path = state_path or spec.state_file or spec.config.progress.state_file
        if path:
            return path
        return os.path.join(self.state_dir, f"{safe_file_stem(spec.id)}.state.json")

    def output_path_for(self, spec: JobSpec) -> str:
        if spec.output_path:
            return spec.output_path
        return os.path.join(self.output_dir, f"{safe_file_stem(spec.id)}.jsonl")

    def _rate_limiter_for(self, config: CrawlerConfig) -> RateLimiter:
        crawling = config.crawling
        if crawling.delay_scope == GLOBAL_DELAY_SCOPE and self.shared_rate_limiter is not None:
            return self.shared_rate_limiter
        return RateLimiter.from_millis(crawling.delay_ms)

    def create(self, spec: JobSpec, *, resume: bool = False, reset: bool = False,
               state_path: Optional[str] = None) -> CrawlJob:
        if spec is None or spec.config is None:
            raise ValueError("spec with a config is required")
        fetcher = self.fetcher_factory.for_config(spec.config)
        path = self.state_path_for(spec, state_path)
        output = self.output_path_for(spec)
        logger.debug("Creating job %s (state=%s, output=%s)", spec.id, path, output)
        return CrawlJob(
            spec,
            fetcher=fetcher,
            extractor=self.extractor_factory(spec.config),
            sink=self.sink_factory(output),
            state_store=self.state_store,
            state_path=path,
            sitemap_loader=SitemapLoader(fetcher),
            event_bus=self.event_bus,
            registry=self.registry,
            rate_limiter=self._rate_limiter_for(spec.config),
            resume=resume,
            reset=reset,
            cancel_timeout_seconds=self.cancel_timeout_seconds,
        )
