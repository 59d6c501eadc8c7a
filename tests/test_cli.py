import json

from dependency_injector import providers

from doccrawl.cli import EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK, default_results_path, exit_code_for, main
from doccrawl.container import Container
from doccrawl.domain.batch_report import BatchReport
from doccrawl.domain.crawl_state import CrawlState
from doccrawl.domain.job import JobResult, JobStatus
from doccrawl.services.state_store import CrawlStateStore

FAST = """
crawling:
  delay_ms: 0
  retry_backoff_ms: 0
progress:
  autosave_interval_seconds: 0
"""


def _container(tmp_path, site, fetcher_factory_for):
    container = Container()
    container.config.DOCCRAWL_STATE_DIR.from_value(str(tmp_path / "state"))
    container.config.DOCCRAWL_OUTPUT_DIR.from_value(str(tmp_path / "output"))
    container.fetcher_factory.override(providers.Object(fetcher_factory_for(site)))
    return container


def _docs_site(fake_site, html_page):
    return fake_site({
        "https://docs.example.com/": html_page("Home", ["/guide", "/api"]),
        "https://docs.example.com/guide": html_page("Guide"),
        "https://docs.example.com/api": html_page("API"),
    })


def _read(path):
    return json.loads(path.read_text())


def test_single_config_run(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    config_path = tmp_path / "docs.yml"
    config_path.write_text("start_urls:\n  - https://docs.example.com/\n" + FAST)
    results = tmp_path / "results.json"

    code = main([str(config_path), "--results", str(results)], container=_container(tmp_path, site, fetcher_factory_for))

    assert code == EXIT_OK
    report = _read(results)
    assert report["status"] == "completed"
    assert report["jobs"][0]["id"] == "docs"
    assert report["jobs"][0]["stats"]["pages"] == 3
    assert len((tmp_path / "output" / "docs.jsonl").read_text().splitlines()) == 3


def test_results_file_defaults_next_to_config(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    config_path = tmp_path / "docs.yml"
    config_path.write_text("start_urls:\n  - https://docs.example.com/\n" + FAST)

    main([str(config_path)], container=_container(tmp_path, site, fetcher_factory_for))

    assert (tmp_path / "docs-results.json").exists()


def test_url_argument_crawls_that_site(tmp_path, fake_site, html_page, fetcher_factory_for, monkeypatch):
    monkeypatch.chdir(tmp_path)
    site = fake_site({"https://docs.example.com/": html_page("Home")})
    container = _container(tmp_path, site, fetcher_factory_for)

    code = main(["https://docs.example.com/", "--output", str(tmp_path / "pages.jsonl")], container=container)

    assert code == EXIT_OK
    assert (tmp_path / "pages.jsonl").exists()
    assert _read(tmp_path / "docs.example.com-results.json")["status"] == "completed"


def test_invalid_config_exits_with_failure(tmp_path):
    config_path = tmp_path / "bad.yml"
    config_path.write_text("crawling:\n  max_concurrent: 0\n")

    assert main([str(config_path)], container=Container()) == EXIT_FAILED


def test_missing_config_exits_with_failure(tmp_path):
    assert main([str(tmp_path / "missing.yml")], container=Container()) == EXIT_FAILED


BATCH = """
continueOnError: {continue_on_error}
maxParallel: 1
globalConfig:
  crawling:
    delay_ms: 0
  progress:
    autosave_interval_seconds: 0
jobs:
  - id: broken
    priority: 10
    config:
      sitemap_urls:
        - https://docs.example.com/missing-sitemap.xml
  - id: docs
    url: https://docs.example.com/
"""


def test_batch_failure_without_continue_on_error(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    batch = tmp_path / "batch.yml"
    batch.write_text(BATCH.format(continue_on_error="false"))

    code = main([str(batch)], container=_container(tmp_path, site, fetcher_factory_for))

    assert code == EXIT_FAILED
    report = _read(tmp_path / "batch-results.json")
    assert report["status"] == "failed"
    assert {j["id"]: j["status"] for j in report["jobs"]} == {"broken": "failed", "docs": "cancelled"}


def test_batch_failure_with_continue_on_error(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    batch = tmp_path / "batch.yml"
    batch.write_text(BATCH.format(continue_on_error="true"))

    code = main([str(batch)], container=_container(tmp_path, site, fetcher_factory_for))

    assert code == EXIT_OK
    report = _read(tmp_path / "batch-results.json")
    assert report["status"] == "completed_with_errors"
    assert report["completed"] == 1


def test_resume_from_state_file(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    config_path = tmp_path / "docs.yml"
    config_path.write_text("start_urls:\n  - https://docs.example.com/\n" + FAST)
    state = CrawlState(job_id="docs")
    state.record_success("https://docs.example.com/guide")
    state_path = tmp_path / "saved.json"
    CrawlStateStore().snapshot(state, str(state_path))

    code = main([str(config_path), "--resume", str(state_path)], container=_container(tmp_path, site, fetcher_factory_for))

    assert code == EXIT_OK
    assert site.fetch_count("https://docs.example.com/guide") == 0
    assert site.fetch_count("https://docs.example.com/api") == 1
    assert (tmp_path / "saved.json.completed").exists()


def test_resume_from_state_directory(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    config_path = tmp_path / "docs.yml"
    config_path.write_text("start_urls:\n  - https://docs.example.com/\n" + FAST)
    resume_dir = tmp_path / "resume"
    state = CrawlState(job_id="docs")
    state.record_success("https://docs.example.com/")
    state.record_success("https://docs.example.com/api")
    CrawlStateStore().snapshot(state, str(resume_dir / "docs.state.json"))

    code = main([str(config_path), "--resume", str(resume_dir)], container=_container(tmp_path, site, fetcher_factory_for))

    assert code == EXIT_OK
    assert site.calls == []


def test_reset_ignores_saved_state(tmp_path, fake_site, html_page, fetcher_factory_for):
    site = _docs_site(fake_site, html_page)
    config_path = tmp_path / "docs.yml"
    config_path.write_text("start_urls:\n  - https://docs.example.com/\n" + FAST)
    state = CrawlState(job_id="docs")
    state.record_success("https://docs.example.com/")
    state_path = tmp_path / "saved.json"
    CrawlStateStore().snapshot(state, str(state_path))

    main([str(config_path), "--resume", str(state_path), "--reset"], container=_container(tmp_path, site, fetcher_factory_for))

    assert site.fetch_count("https://docs.example.com/") == 1


def _report(*statuses):
    report = BatchReport()
    for i, status in enumerate(statuses):
        report.append(JobResult(id=f"job{i}", name=f"job{i}", status=status))
    return report


def test_exit_codes():
    assert exit_code_for(_report(JobStatus.COMPLETED), continue_on_error=False, interrupted=False) == EXIT_OK
    assert exit_code_for(_report(JobStatus.FAILED), continue_on_error=False, interrupted=False) == EXIT_FAILED
    assert exit_code_for(_report(JobStatus.FAILED), continue_on_error=True, interrupted=False) == EXIT_OK
    assert exit_code_for(_report(JobStatus.CANCELLED), continue_on_error=False, interrupted=False) == EXIT_FAILED
    assert exit_code_for(_report(JobStatus.CANCELLED), continue_on_error=True, interrupted=True) == EXIT_INTERRUPTED


def test_default_results_path():
    assert default_results_path("configs/batch.yml") == "configs/batch-results.json"
    assert default_results_path("https://docs.example.com/guide") == "docs.example.com-results.json"
