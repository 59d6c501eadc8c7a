from unittest.mock import Mock

from doccrawl.domain.http_response import HttpResponse
from doccrawl.exceptions import HttpError
from doccrawl.services.sitemap_loader import SitemapLoader, parse_sitemap

URLSET = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9" xmlns:xhtml="http://www.w3.org/1999/xhtml">
  <url>
    <loc>https://example.com/docs/a</loc>
    <xhtml:link rel="alternate" hreflang="fr" href="https://example.com/fr/docs/a"/>
  </url>
  <url><loc> https://example.com/docs/b </loc></url>
</urlset>
"""

INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://example.com/sitemap-docs.xml</loc></sitemap>
  <sitemap><loc>https://example.com/sitemap-broken.xml</loc></sitemap>
</sitemapindex>
"""


def _fetcher(documents):
    def fetch(url, stop_event=None):
        if url not in documents:
            raise HttpError(url, 404)
        return HttpResponse(200, documents[url], "application/xml", url=url)

    return Mock(fetch=Mock(side_effect=fetch))


def test_parse_urlset_with_and_without_alternates():
    entries, children = parse_sitemap(URLSET)
    assert children == []
    assert [e.loc for e in entries] == ["https://example.com/docs/a", "https://example.com/docs/b"]
    assert entries[0].alternates == []

    entries, _ = parse_sitemap(URLSET, include_alternates=True)
    assert entries[0].alternates == ["https://example.com/fr/docs/a"]


def test_parse_sitemap_index_lists_children():
    entries, children = parse_sitemap(INDEX)
    assert entries == []
    assert children == ["https://example.com/sitemap-docs.xml", "https://example.com/sitemap-broken.xml"]


def test_loader_follows_index_and_skips_unreachable_children():
    fetcher = _fetcher({
        "https://example.com/sitemap.xml": INDEX,
        "https://example.com/sitemap-docs.xml": URLSET,
    })
    entries = SitemapLoader(fetcher).load("https://example.com/sitemap.xml")
    assert [e.loc for e in entries] == ["https://example.com/docs/a", "https://example.com/docs/b"]


def test_loader_returns_nothing_for_malformed_xml():
    fetcher = _fetcher({"https://example.com/sitemap.xml": "<urlset><url>"})
    assert SitemapLoader(fetcher).load("https://example.com/sitemap.xml") == []


def test_loader_stops_at_max_index_depth():
    looping = INDEX.replace("sitemap-docs.xml", "sitemap.xml")
    fetcher = _fetcher({"https://example.com/sitemap.xml": looping})
    assert SitemapLoader(fetcher, max_index_depth=1).load("https://example.com/sitemap.xml") == []
    assert fetcher.fetch.call_count <= 3
