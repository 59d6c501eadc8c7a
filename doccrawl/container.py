"""Dependency injection container for doccrawl."""
from dependency_injector import containers, providers
import requests

from doccrawl import config as env
from doccrawl.services.config_file_store import ConfigFileStore
from doccrawl.services.crawl_job_factory import CrawlJobFactory
from doccrawl.services.crawler_config_parser import BatchConfigParser, CrawlerConfigParser
from doccrawl.services.event_bus import EventBus
from doccrawl.services.fetcher_factory import FetcherFactory
from doccrawl.services.job_registry import InMemoryJobRegistry
from doccrawl.services.job_scheduler import JobScheduler
from doccrawl.services.progress_logger import ProgressLogger
from doccrawl.services.rate_limiter import RateLimiter
from doccrawl.services.state_store import CrawlStateStore


# Environment variables used by the container (read via `doccrawl.config` helpers).
#
# USER_AGENT (str, default: "doccrawl/0.1 (+documentation crawler)")
#   User-Agent header for every page and sitemap request.
#
# DOCCRAWL_STATE_DIR (str, default: ".doccrawl")
#   Directory holding `<job id>.state.json` files when a job names no state file.
#
# DOCCRAWL_OUTPUT_DIR (str, default: "output")
#   Directory for `<job id>.jsonl` page records when a job names no output file.
#
# DOCCRAWL_MAX_PARALLEL (int, default: 3)
#   Batch parallelism when the batch file does not set max_parallel.
#
# DOCCRAWL_CANCEL_TIMEOUT (float seconds, default: 10.0)
#   How long a cancelled job waits for in-flight fetches before abandoning them.
#
# DOCCRAWL_GLOBAL_DELAY_MS (int, default: 1000)
#   Interval of the rate limiter shared by jobs with `crawling.delay_scope: global`.
#
# DOCCRAWL_MAX_COMPLETED_RECORDS (int, default: 1000)
#   Finished job records kept by the in-memory job registry.
ENV = {
    "USER_AGENT": env.USER_AGENT,
    "DOCCRAWL_STATE_DIR": env.STATE_DIR,
    "DOCCRAWL_OUTPUT_DIR": env.output_dir(),
    "DOCCRAWL_MAX_PARALLEL": env.max_parallel(),
    "DOCCRAWL_CANCEL_TIMEOUT": env.cancel_timeout_seconds(),
    "DOCCRAWL_GLOBAL_DELAY_MS": env.global_delay_ms(),
    "DOCCRAWL_MAX_COMPLETED_RECORDS": env.max_completed_records(),
}


class Container(containers.DeclarativeContainer):
    """Dependency injection container for the doccrawl application."""

    config = providers.Configuration(default=ENV)

    event_bus = providers.Singleton(EventBus)

    job_registry = providers.Singleton(
        InMemoryJobRegistry,
        max_completed_records=config.DOCCRAWL_MAX_COMPLETED_RECORDS.as_(int),
    )

    state_store = providers.Singleton(CrawlStateStore)

    fetcher_factory = providers.Singleton(
        FetcherFactory,
        user_agent=config.USER_AGENT.as_(str),
        http_client=providers.Object(requests.get),
    )

    shared_rate_limiter = providers.Singleton(
        RateLimiter,
        interval_seconds=providers.Callable(lambda ms: ms / 1000, config.DOCCRAWL_GLOBAL_DELAY_MS.as_(int)),
    )

    config_file_store = providers.Singleton(ConfigFileStore)

    crawler_config_parser = providers.Singleton(CrawlerConfigParser)

    batch_config_parser = providers.Singleton(
        BatchConfigParser,
        store=config_file_store,
        crawler_parser=crawler_config_parser,
        default_max_parallel=config.DOCCRAWL_MAX_PARALLEL.as_(int),
    )

    crawl_job_factory = providers.Singleton(
        CrawlJobFactory,
        fetcher_factory=fetcher_factory,
        state_store=state_store,
        event_bus=event_bus,
        registry=job_registry,
        state_dir=config.DOCCRAWL_STATE_DIR.as_(str),
        output_dir=config.DOCCRAWL_OUTPUT_DIR.as_(str),
        shared_rate_limiter=shared_rate_limiter,
        cancel_timeout_seconds=config.DOCCRAWL_CANCEL_TIMEOUT.as_(float),
    )

    job_scheduler = providers.Factory(
        JobScheduler,
        job_factory=crawl_job_factory,
        registry=job_registry,
    )

    progress_logger = providers.Singleton(
        ProgressLogger,
        event_bus=event_bus,
    )
