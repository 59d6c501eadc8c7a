from doccrawl.container import Container
from doccrawl.services.crawl_job_factory import CrawlJobFactory
from doccrawl.services.job_scheduler import JobScheduler


def test_container_creates_services():
    container = Container()
    container.config.USER_AGENT.from_value("TestBot/1.0")
    container.config.DOCCRAWL_STATE_DIR.from_value("/tmp/state")

    factory = container.crawl_job_factory()

    assert isinstance(factory, CrawlJobFactory)
    assert factory.state_dir == "/tmp/state"
    assert factory.fetcher_factory.user_agent == "TestBot/1.0"
    assert factory.registry is container.job_registry()
    assert factory.event_bus is container.event_bus()
    assert container.batch_config_parser().store is container.config_file_store()


def test_job_scheduler_is_built_per_call():
    container = Container()

    first = container.job_scheduler(max_parallel=2, continue_on_error=False)
    second = container.job_scheduler(max_parallel=1)

    assert isinstance(first, JobScheduler)
    assert first is not second
    assert first.max_parallel == 2
    assert first.continue_on_error is False
    assert first.job_factory is second.job_factory


def test_shared_rate_limiter_follows_global_delay():
    container = Container()
    container.config.DOCCRAWL_GLOBAL_DELAY_MS.from_value(250)

    assert container.shared_rate_limiter().interval_seconds == 0.25
