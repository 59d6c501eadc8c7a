import logging
from typing import Callable, Dict, List, Optional, Protocol

from bs4 import BeautifulSoup

from doccrawl.domain.config import SelectorSet
from doccrawl.domain.http_response import HttpResponse
from doccrawl.domain.page_record import CodeBlock, ExtractionResult
from doccrawl.domain.url_record import UrlRecord
from doccrawl.exceptions import ExtractError

logger = logging.getLogger(__name__)

UNWANTED_TAGS = [
    'script', 'style', 'noscript',
    'nav', 'header', 'footer',
    'aside', 'form', 'button',
    'iframe', 'embed', 'object',
    'svg', 'canvas',
]

SKIPPED_LINK_SCHEMES = ("mailto:", "javascript:", "tel:", "data:")


class PageExtractor(Protocol):
    def extract(self, response: HttpResponse, record: UrlRecord) -> ExtractionResult: ...


def _is_supported_content_type(content_type: Optional[str]) -> bool:
    ct = (content_type or "").lower()
    return ct == "" or ct.startswith("text/") or "application/xhtml+xml" in ct


class HtmlPageExtractor:
    """Default extraction collaborator.

    Picks title, main text, code blocks and links out of an HTML page using
    the selector set named by the record's `selectors_key`.
    """

    def __init__(
        self,
        selectors: Optional[Dict[str, SelectorSet]] = None,
        soup_factory: Optional[Callable[[str], BeautifulSoup]] = None,
    ):
        self.selectors = dict(selectors or {})
        self.selectors.setdefault("default", SelectorSet())
        self._soup_factory = soup_factory or (lambda html: BeautifulSoup(html, "html.parser"))

    def _selector_set(self, key: Optional[str]) -> SelectorSet:
        return self.selectors.get(key or "default") or self.selectors["default"]

    def extract(self, response: HttpResponse, record: UrlRecord) -> ExtractionResult:
        url = response.url or record.canonical_url
        if not _is_supported_content_type(response.content_type):
            raise ExtractError(url, f"unsupported content type {response.content_type!r}")
        if not response.text or not response.text.strip():
            raise ExtractError(url, "empty body")

        selectors = self._selector_set(record.selectors_key)
        soup = self._soup_factory(response.text)
        links = self._extract_links(soup)
        code_blocks = self._extract_code(soup, selectors.code)
        title = self._extract_title(soup, selectors.title) or url

        for tag in UNWANTED_TAGS:
            for element in soup.find_all(tag):
                element.decompose()
        container = self._select_preferred(soup, selectors.content)
        content = (container or soup).get_text(separator="\n", strip=True)
        return ExtractionResult(title=title, content=content, discovered_links=links, code_blocks=code_blocks)

    @staticmethod
    def _select_preferred(soup: BeautifulSoup, selector: str):
        """First match of the earliest comma-separated alternative that matches anything."""
        for part in (selector or "").split(","):
            part = part.strip()
            el = soup.select_one(part) if part else None
            if el is not None:
                return el
        return None

    def _extract_title(self, soup: BeautifulSoup, selector: str) -> Optional[str]:
        for part in (selector or "").split(","):
            el = self._select_preferred(soup, part)
            text = el.get_text(" ", strip=True) if el is not None else ""
            if text:
                return text
        return None

    def _extract_code(self, soup: BeautifulSoup, selector: str) -> List[CodeBlock]:
        if not selector:
            return []
        blocks: List[CodeBlock] = []
        seen = set()
        for el in soup.select(selector):
            # "pre code" and "pre" both hit the same block
            target = el.parent if el.name == "code" and el.parent is not None and el.parent.name == "pre" else el
            if id(target) in seen:
                continue
            seen.add(id(target))
            code = target.get_text()
            if not code.strip():
                continue
            blocks.append(CodeBlock(code=code.strip("\n"), language=self._language_of(target)))
        return blocks

    @staticmethod
    def _language_of(el) -> Optional[str]:
        candidates = [el] + el.find_all("code", limit=1)
        for node in candidates:
            for cls in node.get("class") or []:
                for prefix in ("language-", "lang-"):
                    if cls.startswith(prefix):
                        return cls[len(prefix):]
        return None

    @staticmethod
    def _extract_links(soup: BeautifulSoup) -> List[str]:
        links: List[str] = []
        for a in soup.find_all("a", href=True):
            href = a.get("href", "").strip()
            if not href or href.startswith("#") or href.lower().startswith(SKIPPED_LINK_SCHEMES):
                continue
            links.append(href)
        return links
