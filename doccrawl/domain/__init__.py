"""Domain objects for doccrawl - explicit re-exports to satisfy linters."""
from .url_record import UrlRecord as UrlRecord, UrlStatus as UrlStatus, UrlOrigin as UrlOrigin
from .crawl_state import CrawlState as CrawlState, CrawlStats as CrawlStats
from .config import CrawlerConfig as CrawlerConfig, StartUrl as StartUrl
from .job import BatchConfig as BatchConfig, JobSpec as JobSpec, JobResult as JobResult, JobStatus as JobStatus, JobStats as JobStats
from .batch_report import BatchReport as BatchReport, BatchStatus as BatchStatus
from .page_record import PageRecord as PageRecord, ExtractionResult as ExtractionResult, CodeBlock as CodeBlock
from .http_response import HttpResponse as HttpResponse

__all__ = [
    "UrlRecord",
    "UrlStatus",
    "UrlOrigin",
    "CrawlState",
    "CrawlStats",
    "CrawlerConfig",
    "StartUrl",
    "BatchConfig",
    "JobSpec",
    "JobResult",
    "JobStatus",
    "JobStats",
    "BatchReport",
    "BatchStatus",
    "PageRecord",
    "ExtractionResult",
    "CodeBlock",
    "HttpResponse",
]
