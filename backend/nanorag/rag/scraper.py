"""Web page text extraction.

Fetches a URL with ``httpx`` and reduces the HTML to readable text: script,
style and navigation chrome are dropped, and the first content container
(``article``, ``main``, …) with a meaningful amount of text wins over the
whole ``<body>``.  The indexing pipeline only depends on the
``TextExtractor`` protocol, so tests substitute a stub.
"""
import logging
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) nanorag/0.1"
TIMEOUT_SECONDS = 30.0

# Elements whose whole subtree is dropped.
_SKIP_TAGS = frozenset({
    "script", "style", "nav", "header", "footer", "aside",
    "noscript", "iframe", "form", "svg", "template",
})
# Containers tried, in order, before falling back to <body>.
_MAIN_TAGS = ("article", "main")
_MIN_MAIN_CHARS = 200
_VOID_TAGS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})

_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ScrapedContent:
    url: str
    title: str
    text: str
    description: str = ""
    word_count: int = 0


class TextExtractor(Protocol):
    def scrape(self, url: str) -> ScrapedContent:
        """Fetch *url* and return its readable text.  Raises on failure."""


def clean_text(text: str) -> str:
    """Collapse whitespace runs and trim."""
    return _WS_RE.sub(" ", text).strip()


def count_words(text: str) -> int:
    return len(text.split())


class _ContentParser(HTMLParser):
    """Collects title, meta description, body text and main-container text."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.title_parts: list[str] = []
        self.body_parts: list[str] = []
        self.main_parts: dict[str, list[str]] = {tag: [] for tag in _MAIN_TAGS}
        self.description = ""
        self._stack: list[str] = []
        self._skip_depth = 0
        self._in_title = False

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag == "meta":
            attr = dict(attrs)
            name = (attr.get("name") or attr.get("property") or "").lower()
            if name in ("description", "og:description") and not self.description:
                self.description = (attr.get("content") or "").strip()
            return
        if tag in _VOID_TAGS:
            return
        self._stack.append(tag)
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag == "title":
            self._in_title = True

    def handle_endtag(self, tag: str) -> None:
        if tag in _VOID_TAGS or tag not in self._stack:
            return
        # Pop up to and including the matching tag; tolerates unclosed children.
        while self._stack:
            popped = self._stack.pop()
            if popped in _SKIP_TAGS:
                self._skip_depth -= 1
            if popped == "title":
                self._in_title = False
            if popped == tag:
                break

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self.title_parts.append(data)
            return
        if self._skip_depth:
            return
        self.body_parts.append(data)
        for tag in _MAIN_TAGS:
            if tag in self._stack:
                self.main_parts[tag].append(data)


def extract_content(html: str, url: str) -> ScrapedContent:
    """Reduce an HTML document to a ``ScrapedContent``."""
    parser = _ContentParser()
    parser.feed(html)
    parser.close()

    text = ""
    for tag in _MAIN_TAGS:
        candidate = clean_text(" ".join(parser.main_parts[tag]))
        if len(candidate) > _MIN_MAIN_CHARS:
            text = candidate
            break
    if not text:
        text = clean_text(" ".join(parser.body_parts))

    return ScrapedContent(
        url=url,
        title=clean_text("".join(parser.title_parts)),
        text=text,
        description=parser.description,
        word_count=count_words(text),
    )


class WebScraper:
    """``TextExtractor`` backed by ``httpx``.

    Args:
        client: Pre-built ``httpx.Client``; mainly for tests.
    """

    def __init__(self, client: Optional[httpx.Client] = None) -> None:
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=TIMEOUT_SECONDS,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    def scrape(self, url: str) -> ScrapedContent:
        """Fetch and extract *url*.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx status.
        """
        logger.info("[WebScraper] Scraping: %s", url)
        resp = self._get_client().get(url)
        resp.raise_for_status()
        content = extract_content(resp.text, str(resp.url))
        logger.info("[WebScraper] Scraped %d characters from %s", len(content.text), url)
        return content

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
