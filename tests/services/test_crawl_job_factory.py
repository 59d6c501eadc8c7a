import os

import pytest

from doccrawl.domain.config import CrawlingOptions, ProgressOptions, CrawlerConfig
from doccrawl.domain.job import JobSpec
from doccrawl.services.crawl_job import CrawlJob
from doccrawl.services.crawl_job_factory import CrawlJobFactory, safe_file_stem
from doccrawl.services.output_sink import CollectingOutputSink
from doccrawl.services.rate_limiter import RateLimiter
from doccrawl.services.state_store import CrawlStateStore


def _factory(site, fetcher_factory_for, **kwargs):
    kwargs.setdefault("sink_factory", lambda path: CollectingOutputSink())
    return CrawlJobFactory(
        fetcher_factory=fetcher_factory_for(site),
        state_store=CrawlStateStore(),
        state_dir="state",
        output_dir="out",
        **kwargs,
    )


def test_safe_file_stem():
    assert safe_file_stem("docs") == "docs"
    assert safe_file_stem("my docs/v2") == "my_docs_v2"
    assert safe_file_stem("../..") == "job"


def test_state_path_precedence(fake_site, fetcher_factory_for):
    factory = _factory(fake_site(), fetcher_factory_for)
    with_progress = CrawlerConfig("a", ["https://a.example.com/"], progress=ProgressOptions(state_file="cfg.json"))
    plain = CrawlerConfig("a", ["https://a.example.com/"])

    assert factory.state_path_for(JobSpec(id="a", name="a", config=plain)) == os.path.join("state", "a.state.json")
    assert factory.state_path_for(JobSpec(id="a", name="a", config=with_progress)) == "cfg.json"
    assert factory.state_path_for(JobSpec(id="a", name="a", config=with_progress, state_file="spec.json")) == "spec.json"
    assert factory.state_path_for(JobSpec(id="a", name="a", config=with_progress), "explicit.json") == "explicit.json"


def test_output_path_defaults_to_output_dir(fake_site, fetcher_factory_for):
    factory = _factory(fake_site(), fetcher_factory_for)
    config = CrawlerConfig("a", ["https://a.example.com/"])

    assert factory.output_path_for(JobSpec(id="a", name="a", config=config)) == os.path.join("out", "a.jsonl")
    assert factory.output_path_for(JobSpec(id="a", name="a", config=config, output_path="x.jsonl")) == "x.jsonl"


def test_create_wires_job(fake_site, fetcher_factory_for):
    site = fake_site()
    factory = _factory(site, fetcher_factory_for)
    spec = JobSpec(id="a", name="a", config=CrawlerConfig("a", ["https://a.example.com/"]))

    job = factory.create(spec, resume=True, reset=False)

    assert isinstance(job, CrawlJob)
    assert job.fetcher is site
    assert job.sitemap_loader.fetcher is site
    assert job.state_path == os.path.join("state", "a.state.json")
    assert job.resume_requested is True
    assert job.rate_limiter.interval_seconds == 1.0


def test_global_delay_scope_shares_one_rate_limiter(fake_site, fetcher_factory_for):
    shared = RateLimiter(0.5)
    factory = _factory(fake_site(), fetcher_factory_for, shared_rate_limiter=shared)
    global_config = CrawlerConfig("g", ["https://g.example.com/"], crawling=CrawlingOptions(delay_scope="global"))
    job_config = CrawlerConfig("j", ["https://j.example.com/"], crawling=CrawlingOptions(delay_ms=200))

    first = factory.create(JobSpec(id="g1", name="g1", config=global_config))
    second = factory.create(JobSpec(id="g2", name="g2", config=global_config))
    own = factory.create(JobSpec(id="j", name="j", config=job_config))

    assert first.rate_limiter is shared
    assert second.rate_limiter is shared
    assert own.rate_limiter is not shared
    assert own.rate_limiter.interval_seconds == 0.2


def test_create_requires_config(fake_site, fetcher_factory_for):
    with pytest.raises(ValueError):
        _factory(fake_site(), fetcher_factory_for).create(None)
