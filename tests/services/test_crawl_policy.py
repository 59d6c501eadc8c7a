from doccrawl.domain.config import CrawlerConfig
from doccrawl.services.crawl_policy import CrawlPolicy, StopUrlMatcher


def test_stop_matcher_plain_pattern_matches_exact_substring_or_regex():
    matcher = StopUrlMatcher(["https://example.com/changelog/", "/blog/", r"\.pdf$"])
    assert matcher.matches("https://example.com/changelog")
    assert matcher.matches("https://example.com/blog/post-1")
    assert matcher.matches("https://example.com/files/manual.pdf")
    assert not matcher.matches("https://example.com/docs/intro")


def test_stop_matcher_prefixes_force_a_single_mode():
    matcher = StopUrlMatcher(["exact:https://example.com/a", "contains:?print=", "regex:/v[0-9]+/"])
    assert matcher.matches("https://example.com/a")
    assert not matcher.matches("https://example.com/a/b")
    assert matcher.matches("https://example.com/page?print=1")
    assert matcher.matches("https://example.com/v2/api")
    assert not matcher.matches("https://example.com/vx/api")


def test_invalid_regex_plain_pattern_falls_back_to_substring():
    matcher = StopUrlMatcher(["/docs/[draft"])
    assert matcher.matches("https://example.com/docs/[draft/page")
    assert not matcher.matches("https://example.com/docs/final")


def test_policy_rejection_reasons():
    policy = CrawlPolicy(allowed_domains=["example.com"], stop_urls=["/private/"])
    assert policy.rejection_reason("https://docs.example.com/a") is None
    assert policy.rejection_reason("https://other.org/a") == "domain"
    assert policy.rejection_reason("https://example.com/private/x") == "stop_url"


def test_policy_without_domains_allows_everything():
    assert CrawlPolicy().is_allowed_domain("https://anything.test/")


def test_for_config_defaults_scope_to_seed_hosts():
    cfg = CrawlerConfig(
        name="docs",
        start_urls=["https://docs.example.com/start"],
        sitemap_urls=["https://cdn.example.net/sitemap.xml"],
        base_url="https://example.org/",
    )
    policy = CrawlPolicy.for_config(cfg)
    assert set(policy.allowed_domains) == {"docs.example.com", "cdn.example.net", "example.org"}
    assert policy.rejection_reason("https://elsewhere.com/") == "domain"


def test_for_config_uses_explicit_allowed_domains():
    cfg = CrawlerConfig(name="docs", start_urls=["https://docs.example.com/"], allowed_domains=["example.com"])
    policy = CrawlPolicy.for_config(cfg)
    assert policy.allowed_domains == ("example.com",)
    assert policy.is_allowed_domain("https://api.example.com/")
