import copy
import logging
import os
import re
from typing import Any, Dict, List, Optional

from doccrawl.domain.config import (
    AuthConfig,
    CrawlerConfig,
    CrawlingOptions,
    ProgressOptions,
    SelectorSet,
    StartUrl,
)
from doccrawl.domain.job import BatchConfig, JobSpec
from doccrawl.exceptions import ConfigError
from doccrawl.services.config_file_store import ConfigFileStore
from doccrawl.utils.urls import canonicalize, hostname

logger = logging.getLogger(__name__)

AUTH_TYPES = ("none", "basic", "bearer", "apikey")
DELAY_SCOPES = ("job", "global")
DEFAULT_APIKEY_HEADER = "X-API-Key"

# batch keys accepted in either spelling
BATCH_ALIASES = {
    "maxParallel": "max_parallel",
    "continueOnError": "continue_on_error",
    "globalConfig": "global_config",
}
JOB_ALIASES = {
    "configFile": "config_file",
    "maxRetries": "max_retries",
    "stateFile": "state_file",
}


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Return `base` updated by `overrides`; nested mappings merge key by key."""
    out = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _normalize_keys(data: Dict[str, Any], aliases: Dict[str, str]) -> Dict[str, Any]:
    out = dict(data)
    for alias, key in aliases.items():
        if alias in out:
            value = out.pop(alias)
            out.setdefault(key, value)
    return out


class _Problems:
    def __init__(self):
        self.items: List[str] = []

    def add(self, message: str) -> None:
        self.items.append(message)

    def __bool__(self) -> bool:
        return bool(self.items)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _string_list(data: dict, key: str, problems: _Problems) -> tuple:
    value = data.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        problems.add(f"{key} must be a list of strings")
        return ()
    return tuple(value)


class CrawlerConfigParser:
    """Parse a crawl config mapping into a CrawlerConfig.

    Responsibility: schema/validation. It does NOT perform filesystem IO.
    Every problem found is reported in a single ConfigError.
    """

    def parse(self, *, data: dict, name: Optional[str] = None, config_path: Optional[str] = None) -> CrawlerConfig:
        if not isinstance(data, dict):
            raise ConfigError(["config must be a mapping"], source=config_path)
        problems = _Problems()

        start_urls = self._start_urls(data.get("start_urls"), problems)
        sitemap_urls = _string_list(data, "sitemap_urls", problems)
        stop_urls = _string_list(data, "stop_urls", problems)
        allowed_domains = _string_list(data, "allowed_domains", problems)
        base_url = data.get("base_url")
        if base_url is not None and (not isinstance(base_url, str) or canonicalize(base_url) is None):
            problems.add("base_url must be an http(s) URL")
            base_url = None
        if not start_urls and not sitemap_urls and not base_url and not problems:
            problems.add("at least one of start_urls, sitemap_urls or base_url is required")
        for pattern in stop_urls:
            if pattern.startswith("regex:"):
                try:
                    re.compile(pattern[len("regex:"):])
                except re.error as e:
                    problems.add(f"stop_urls pattern {pattern!r} is not a valid regex: {e}")

        selectors = self._selectors(data.get("selectors"), problems)
        for start in start_urls:
            if start.selectors_key not in selectors and start.selectors_key != "default":
                problems.add(f"start URL {start.url} uses unknown selectors_key {start.selectors_key!r}")
        authentication = self._authentication(data.get("authentication"), problems)
        crawling = self._crawling(data.get("crawling"), problems)
        progress = self._progress(data.get("progress"), problems)

        if problems:
            raise ConfigError(problems.items, source=config_path or name)

        return CrawlerConfig(
            name=self._name(data, name, config_path, start_urls, sitemap_urls, base_url),
            start_urls=start_urls,
            config_path=config_path,
            sitemap_urls=sitemap_urls,
            sitemap_alternate_links=bool(data.get("sitemap_alternate_links", False)),
            base_url=base_url,
            stop_urls=stop_urls,
            allowed_domains=allowed_domains,
            selectors=selectors,
            authentication=authentication,
            crawling=crawling,
            progress=progress,
        )

    def from_url(self, url: str, name: Optional[str] = None) -> CrawlerConfig:
        return self.parse(data={"start_urls": [url]}, name=name)

    @staticmethod
    def _name(data, name, config_path, start_urls, sitemap_urls, base_url) -> str:
        if name:
            return name
        explicit = data.get("name") or data.get("index_uid")
        if isinstance(explicit, str) and explicit:
            return explicit
        if config_path:
            return os.path.splitext(os.path.basename(config_path))[0]
        for url in [s.url for s in start_urls] + list(sitemap_urls) + [base_url]:
            host = hostname(url) if url else None
            if host:
                return host
        return "crawl"

    def _start_urls(self, value, problems: _Problems) -> tuple:
        if value is None:
            return ()
        if isinstance(value, (str, dict)):
            value = [value]
        if not isinstance(value, list):
            problems.add("start_urls must be a list")
            return ()
        starts = []
        for i, item in enumerate(value):
            if isinstance(item, str):
                item = {"url": item}
            if not isinstance(item, dict):
                problems.add(f"start_urls[{i}] must be a string or a mapping")
                continue
            url = item.get("url")
            if not isinstance(url, str) or canonicalize(url) is None:
                problems.add(f"start_urls[{i}].url must be an http(s) URL")
                continue
            page_rank = item.get("page_rank", 0)
            if not _is_int(page_rank):
                problems.add(f"start_urls[{i}].page_rank must be an integer")
                page_rank = 0
            selectors_key = item.get("selectors_key", "default")
            if not isinstance(selectors_key, str):
                problems.add(f"start_urls[{i}].selectors_key must be a string")
                selectors_key = "default"
            tags = item.get("tags", [])
            if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
                problems.add(f"start_urls[{i}].tags must be a list of strings")
                tags = []
            starts.append(StartUrl(url=url, page_rank=page_rank, selectors_key=selectors_key, tags=tuple(tags)))
        return tuple(starts)

    def _selectors(self, value, problems: _Problems) -> Dict[str, SelectorSet]:
        out = {"default": SelectorSet()}
        if value is None:
            return out
        if not isinstance(value, dict):
            problems.add("selectors must be a mapping of selector sets")
            return out
        defaults = SelectorSet()
        for key, raw in value.items():
            if not isinstance(raw, dict):
                problems.add(f"selectors.{key} must be a mapping")
                continue
            fields = {}
            for field, aliases in (("content", ("content", "text")), ("title", ("title", "lvl1", "lvl0")), ("code", ("code",))):
                selector = next((raw[a] for a in aliases if a in raw), getattr(defaults, field))
                if isinstance(selector, dict):
                    selector = selector.get("selector")
                if not isinstance(selector, str) or not selector.strip():
                    problems.add(f"selectors.{key}.{field} must be a CSS selector string")
                    selector = getattr(defaults, field)
                fields[field] = selector
            out[str(key)] = SelectorSet(**fields)
        return out

    def _authentication(self, value, problems: _Problems) -> AuthConfig:
        if value is None:
            return AuthConfig()
        if not isinstance(value, dict):
            problems.add("authentication must be a mapping")
            return AuthConfig()
        auth_type = value.get("type", "none")
        if auth_type not in AUTH_TYPES:
            problems.add(f"authentication.type must be one of {', '.join(AUTH_TYPES)}")
            return AuthConfig()
        auth = AuthConfig(
            type=auth_type,
            username=value.get("username"),
            password=value.get("password"),
            token=value.get("token"),
            header_name=value.get("header_name") or (DEFAULT_APIKEY_HEADER if auth_type == "apikey" else None),
        )
        if auth_type == "basic" and not (auth.username and auth.password):
            problems.add("authentication.basic requires username and password")
        if auth_type in ("bearer", "apikey") and not auth.token:
            problems.add(f"authentication.{auth_type} requires token")
        return auth

    def _crawling(self, value, problems: _Problems) -> CrawlingOptions:
        if value is None:
            return CrawlingOptions()
        if not isinstance(value, dict):
            problems.add("crawling must be a mapping")
            return CrawlingOptions()
        defaults = CrawlingOptions()
        minimums = {
            "max_concurrent": 1,
            "delay_ms": 0,
            "max_retries": 1,
            "timeout_ms": 1,
            "max_redirects": 0,
            "retry_backoff_ms": 0,
            "retry_backoff_max_ms": 0,
        }
        fields: Dict[str, Any] = {}
        for key, minimum in minimums.items():
            raw = value.get(key, getattr(defaults, key))
            if not _is_int(raw) or raw < minimum:
                problems.add(f"crawling.{key} must be an integer >= {minimum}")
                raw = getattr(defaults, key)
            fields[key] = raw
        for key in ("follow_redirects", "follow_links"):
            raw = value.get(key, getattr(defaults, key))
            if not isinstance(raw, bool):
                problems.add(f"crawling.{key} must be true or false")
                raw = getattr(defaults, key)
            fields[key] = raw
        scope = value.get("delay_scope", defaults.delay_scope)
        if scope not in DELAY_SCOPES:
            problems.add(f"crawling.delay_scope must be one of {', '.join(DELAY_SCOPES)}")
            scope = defaults.delay_scope
        fields["delay_scope"] = scope
        unknown = sorted(set(value) - set(fields))
        if unknown:
            logger.debug("Ignoring unknown crawling options: %s", ", ".join(unknown))
        return CrawlingOptions(**fields)

    def _progress(self, value, problems: _Problems) -> ProgressOptions:
        if value is None:
            return ProgressOptions()
        if not isinstance(value, dict):
            problems.add("progress must be a mapping")
            return ProgressOptions()
        defaults = ProgressOptions()
        state_file = value.get("state_file")
        if state_file is not None and not isinstance(state_file, str):
            problems.add("progress.state_file must be a string")
            state_file = None
        interval = value.get("autosave_interval_seconds", defaults.autosave_interval_seconds)
        if not _is_number(interval) or interval < 0:
            problems.add("progress.autosave_interval_seconds must be a number >= 0")
            interval = defaults.autosave_interval_seconds
        every = value.get("autosave_every_pages", defaults.autosave_every_pages)
        if not _is_int(every) or every < 0:
            problems.add("progress.autosave_every_pages must be an integer >= 0")
            every = defaults.autosave_every_pages
        archive = value.get("archive_on_complete", defaults.archive_on_complete)
        if not isinstance(archive, bool):
            problems.add("progress.archive_on_complete must be true or false")
            archive = defaults.archive_on_complete
        return ProgressOptions(
            state_file=state_file,
            autosave_interval_seconds=float(interval),
            autosave_every_pages=every,
            archive_on_complete=archive,
        )


class BatchConfigParser:
    """Parse a batch file (or a single crawl config) into a BatchConfig.

    Job sources: `url` (bare start URL), `config` (inline crawl config) or
    `config_file` (path relative to the batch file). `global_config` is
    merged into every job's config and wins over it.
    """

    def __init__(self, *, store: Optional[ConfigFileStore] = None, crawler_parser: Optional[CrawlerConfigParser] = None,
                 default_max_parallel: int = 3):
        self.store = store or ConfigFileStore()
        self.crawler_parser = crawler_parser or CrawlerConfigParser()
        self.default_max_parallel = int(default_max_parallel)

    @staticmethod
    def is_batch(data: dict) -> bool:
        return isinstance(data, dict) and "jobs" in data

    def load(self, path: str) -> BatchConfig:
        """Load `path`; a plain crawl config becomes a batch of one job."""
        data = self.store.load_dict(path)
        if self.is_batch(data):
            return self.parse(data, source_path=path)
        config = self.crawler_parser.parse(data=data, config_path=path)
        spec = JobSpec(
            id=config.name,
            name=config.name,
            config=config,
            output_path=data.get("output") if isinstance(data.get("output"), str) else None,
        )
        return BatchConfig(jobs=(spec,), max_parallel=1, continue_on_error=False, source=path)

    def parse(self, data: dict, source_path: Optional[str] = None) -> BatchConfig:
        data = _normalize_keys(data, BATCH_ALIASES)
        problems: List[str] = []

        max_parallel = data.get("max_parallel", self.default_max_parallel)
        if not _is_int(max_parallel) or max_parallel < 1:
            problems.append("max_parallel must be an integer >= 1")
            max_parallel = self.default_max_parallel
        continue_on_error = data.get("continue_on_error", True)
        if not isinstance(continue_on_error, bool):
            problems.append("continue_on_error must be true or false")
            continue_on_error = True
        global_config = data.get("global_config") or {}
        if not isinstance(global_config, dict):
            problems.append("global_config must be a mapping")
            global_config = {}

        jobs = data.get("jobs")
        specs: List[JobSpec] = []
        if not isinstance(jobs, list) or not jobs:
            problems.append("jobs must be a non-empty list")
            jobs = []
        seen = set()
        base_dir = os.path.dirname(os.path.abspath(source_path)) if source_path else None
        for i, raw in enumerate(jobs):
            try:
                spec = self._job(i, raw, global_config, base_dir)
            except ConfigError as e:
                problems.extend(f"jobs[{i}]: {p}" for p in e.problems)
                continue
            if spec.id in seen:
                problems.append(f"jobs[{i}]: duplicate id {spec.id!r}")
                continue
            seen.add(spec.id)
            specs.append(spec)

        if problems:
            raise ConfigError(problems, source=source_path)
        return BatchConfig(
            jobs=tuple(specs),
            max_parallel=max_parallel,
            continue_on_error=continue_on_error,
            source=source_path,
        )

    def _job(self, index: int, raw, global_config: dict, base_dir: Optional[str]) -> JobSpec:
        if not isinstance(raw, dict):
            raise ConfigError(["job must be a mapping"])
        raw = _normalize_keys(raw, JOB_ALIASES)
        problems: List[str] = []

        job_id = raw.get("id")
        if not isinstance(job_id, str) or not job_id.strip():
            problems.append("id must be a non-empty string")
            job_id = f"job-{index + 1}"
        name = raw.get("name", job_id)
        if not isinstance(name, str):
            problems.append("name must be a string")
            name = job_id
        priority = raw.get("priority", 0)
        if not _is_int(priority):
            problems.append("priority must be an integer")
            priority = 0
        max_retries = raw.get("max_retries")
        if max_retries is not None and (not _is_int(max_retries) or max_retries < 1):
            problems.append("max_retries must be an integer >= 1")
            max_retries = None
        output = raw.get("output")
        if output is not None and not isinstance(output, str):
            problems.append("output must be a file path")
            output = None
        state_file = raw.get("state_file")
        if state_file is not None and not isinstance(state_file, str):
            problems.append("state_file must be a file path")
            state_file = None

        sources = [k for k in ("url", "config", "config_file") if raw.get(k) is not None]
        config_path = None
        config_data: Optional[dict] = None
        if len(sources) != 1:
            problems.append("exactly one of url, config or config_file is required")
        elif sources[0] == "url":
            if not isinstance(raw["url"], str):
                problems.append("url must be a string")
            else:
                config_data = {"start_urls": [raw["url"]]}
        elif sources[0] == "config":
            if not isinstance(raw["config"], dict):
                problems.append("config must be a mapping")
            else:
                config_data = raw["config"]
        else:
            if not isinstance(raw["config_file"], str):
                problems.append("config_file must be a file path")
            else:
                config_path = self.store.resolve_path(raw["config_file"], base_dir)
                config_data = self.store.load_dict(config_path)

        if problems:
            raise ConfigError(problems)

        merged = deep_merge(config_data, global_config)
        config = self.crawler_parser.parse(data=merged, name=name, config_path=config_path)
        if output is None and isinstance(merged.get("output"), str) and "output" not in global_config:
            output = merged["output"]
        return JobSpec(
            id=job_id,
            name=name,
            config=config,
            priority=priority,
            max_retries=max_retries,
            output_path=output,
            state_file=state_file,
        )
