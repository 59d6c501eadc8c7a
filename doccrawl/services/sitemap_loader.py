import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set
from xml.etree import ElementTree

from doccrawl.exceptions import FetchError

logger = logging.getLogger(__name__)

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
XHTML_NS = "http://www.w3.org/1999/xhtml"


@dataclass(frozen=True)
class SitemapEntry:
    loc: str
    alternates: List[str] = field(default_factory=list)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def parse_sitemap(xml_text: str, *, include_alternates: bool = False):
    """Parse a sitemap document.

    Returns `(entries, child_sitemaps)`; the second list is non-empty for a
    `<sitemapindex>`. Raises `ElementTree.ParseError` on malformed XML.
    """
    root = ElementTree.fromstring(xml_text.strip().encode("utf-8"))
    entries: List[SitemapEntry] = []
    children: List[str] = []
    if _local(root.tag) == "sitemapindex":
        for sm in root:
            if _local(sm.tag) != "sitemap":
                continue
            for child in sm:
                if _local(child.tag) == "loc" and child.text and child.text.strip():
                    children.append(child.text.strip())
        return entries, children

    for url_el in root:
        if _local(url_el.tag) != "url":
            continue
        loc = None
        alternates: List[str] = []
        for child in url_el:
            name = _local(child.tag)
            if name == "loc" and child.text:
                loc = child.text.strip()
            elif include_alternates and name == "link" and child.get("rel") == "alternate":
                href = child.get("href")
                if href:
                    alternates.append(href.strip())
        if loc:
            entries.append(SitemapEntry(loc=loc, alternates=alternates))
    return entries, children


class SitemapLoader:
    """Fetches sitemaps through a `Fetcher` and flattens sitemap indexes."""

    def __init__(self, fetcher, *, max_index_depth: int = 3):
        self.fetcher = fetcher
        self.max_index_depth = int(max_index_depth)

    def load(self, sitemap_url: str, *, include_alternates: bool = False, stop_event=None) -> List[SitemapEntry]:
        """Return every `<url>` entry reachable from `sitemap_url`.

        Unreachable or malformed sitemaps are logged and contribute nothing.
        """
        seen: Set[str] = set()
        return self._load(sitemap_url, include_alternates, 0, seen, stop_event)

    def _load(self, url: str, include_alternates: bool, depth: int, seen: Set[str], stop_event) -> List[SitemapEntry]:
        if url in seen:
            return []
        seen.add(url)
        text = self._fetch_text(url, stop_event)
        if text is None:
            return []
        try:
            entries, children = parse_sitemap(text, include_alternates=include_alternates)
        except ElementTree.ParseError as e:
            logger.warning("Could not parse sitemap %s: %s", url, e)
            return []
        logger.info("Sitemap %s: %d urls, %d child sitemaps", url, len(entries), len(children))
        if children and depth >= self.max_index_depth:
            logger.warning("Sitemap index nesting too deep at %s; ignoring %d children", url, len(children))
            return entries
        for child in children:
            entries.extend(self._load(child, include_alternates, depth + 1, seen, stop_event))
        return entries

    def _fetch_text(self, url: str, stop_event) -> Optional[str]:
        try:
            response = self.fetcher.fetch(url, stop_event=stop_event)
        except FetchError as e:
            logger.warning("Could not fetch sitemap %s: %s", url, e)
            return None
        return response.text
