import logging
import re
from typing import Iterable, List, Optional, Pattern, Tuple

from doccrawl.utils.urls import canonicalize, host_matches, hostname

logger = logging.getLogger(__name__)


class StopUrlMatcher:
    """Matches URLs against `stop_urls` patterns.

    A plain pattern matches when it equals the URL (after canonicalization),
    occurs in it as a substring, or matches it as a regular expression.
    `exact:`, `contains:` and `regex:` prefixes force a single mode.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self._exact: set[str] = set()
        self._substrings: List[str] = []
        self._regexes: List[Pattern[str]] = []
        for pattern in patterns or ():
            self._add(pattern)

    def _add(self, pattern: str) -> None:
        if not pattern:
            return
        if pattern.startswith("exact:"):
            value = pattern[len("exact:"):]
            self._exact.add(canonicalize(value) or value)
            return
        if pattern.startswith("contains:"):
            self._substrings.append(pattern[len("contains:"):])
            return
        if pattern.startswith("regex:"):
            self._regexes.append(re.compile(pattern[len("regex:"):]))
            return
        canonical = canonicalize(pattern)
        if canonical:
            self._exact.add(canonical)
        self._substrings.append(pattern)
        try:
            self._regexes.append(re.compile(pattern))
        except re.error:
            logger.debug("Stop pattern %r is not a valid regex; using substring match only", pattern)

    def matches(self, url: str) -> bool:
        if url in self._exact:
            return True
        if any(s in url for s in self._substrings):
            return True
        return any(r.search(url) for r in self._regexes)


class CrawlPolicy:
    """Encapsulates crawl scope rules: allowed domains and stop patterns.

    Separates scope decisions from frontier bookkeeping.
    """

    def __init__(self, allowed_domains: Iterable[str] = (), stop_urls: Iterable[str] = ()):
        self.allowed_domains: Tuple[str, ...] = tuple(d.lower().lstrip(".") for d in allowed_domains if d)
        self.stop_matcher = StopUrlMatcher(stop_urls)

    @classmethod
    def for_config(cls, config) -> "CrawlPolicy":
        """Build the policy for a crawler config.

        Without explicit `allowed_domains`, the hosts of the start URLs, the
        sitemaps and the base URL are the crawl scope.
        """
        domains = list(config.data.allowed_domains)
        if not domains:
            candidates = [s.url for s in config.start_urls] + list(config.sitemap_urls)
            if config.data.base_url:
                candidates.append(config.data.base_url)
            domains = [h for h in (hostname(u) for u in candidates) if h]
        return cls(allowed_domains=domains, stop_urls=config.data.stop_urls)

    def is_allowed_domain(self, url: str) -> bool:
        if not self.allowed_domains:
            return True
        host = hostname(url)
        return any(host_matches(host, d) for d in self.allowed_domains)

    def rejection_reason(self, url: str) -> Optional[str]:
        """Return why `url` is out of scope, or None when it may be crawled."""
        if not self.is_allowed_domain(url):
            return "domain"
        if self.stop_matcher.matches(url):
            return "stop_url"
        return None
