from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Tuple

import httpx
import trafilatura
from bs4 import BeautifulSoup
from readability import Document

from .models import Article
from .urls import is_social_post_url


logger = logging.getLogger(__name__)

OEMBED_ENDPOINT = "https://publish.twitter.com/oembed"
SOCIAL_TITLE_CHARS = 40

_WS = re.compile(r"\s+")

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ja;q=0.8",
    "Cache-Control": "no-cache",
}


def collapse_ws(text: Optional[str]) -> str:
    return _WS.sub(" ", text or "").strip()


def _soup(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:  # noqa: BLE001
        return BeautifulSoup(html, "html.parser")


def _document_title(soup: BeautifulSoup) -> Optional[str]:
    if soup.title and soup.title.string:
        return collapse_ws(soup.title.string) or None
    return None


def extract_main_content(html: str, url: Optional[str] = None) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Boilerplate-free (title, text, source) of an HTML page.

    trafilatura first, readability second. Returns ``(None, None, None)``
    when neither finds a main content block.
    """
    try:
        txt = trafilatura.extract(
            html,
            url=url,
            include_comments=False,
            include_tables=False,
            favor_precision=True,
        )
        if txt and txt.strip():
            meta = trafilatura.extract_metadata(html, default_url=url)
            title = getattr(meta, "title", None) if meta is not None else None
            return title, txt, "trafilatura"
    except Exception as e:  # noqa: BLE001
        logger.debug("trafilatura failed", extra={"url": url, "error": str(e)})

    try:
        doc = Document(html)
        summary = doc.summary(html_partial=True)
        text = BeautifulSoup(summary, "html.parser").get_text(" ", strip=True) if summary else ""
        if text:
            return doc.short_title() or None, text, "readability"
    except Exception as e:  # noqa: BLE001
        logger.debug("readability failed", extra={"url": url, "error": str(e)})

    return None, None, None


def parse_article(url: str, html: str, max_chars: int) -> Article:
    soup = _soup(html)
    page_title = _document_title(soup)

    title, text, source = extract_main_content(html, url=url)
    if text:
        clean = collapse_ws(text)
        logger.debug("Extracted main content", extra={"url": url, "source": source, "chars": len(clean)})
        return Article(url=url, title=title or page_title, text=clean[:max_chars] or None)

    # Raw body text when no main content block was found
    for tag in soup.find_all(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.body.get_text(" ", strip=True) if soup.body else ""
    clean = collapse_ws(body)
    return Article(url=url, title=page_title, text=clean[:max_chars] or None)


class ArticleExtractor:
    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = 15.0,
        embed_timeout: float = 12.0,
        max_chars: int = 2000,
        user_agent: Optional[str] = None,
    ) -> None:
        self._client = client
        self.timeout = timeout
        self.embed_timeout = embed_timeout
        self.max_chars = max_chars
        self._headers = dict(DEFAULT_HEADERS)
        if user_agent:
            self._headers["User-Agent"] = user_agent

    async def fetch(self, url: str) -> Article:
        """Title and readable text for ``url``; an empty Article on any failure."""
        try:
            return await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Article fetch timed out", extra={"url": url, "timeout": self.timeout})
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to fetch article", extra={"url": url, "error": str(e)})
        return Article(url=url)

    async def _fetch(self, url: str) -> Article:
        if is_social_post_url(url):
            embedded = await self.fetch_embed(url)
            if embedded is not None:
                return embedded

        resp = await self._client.get(url, headers=self._headers, follow_redirects=True)
        if not resp.is_success:
            logger.info("Article fetch returned an error status", extra={"url": url, "status": resp.status_code})
            return Article(url=url)
        content_type = resp.headers.get("content-type", "")
        if "text/html" not in content_type:
            logger.info("Skipping non-HTML content", extra={"url": url, "content_type": content_type})
            return Article(url=url)
        html = resp.text
        return await asyncio.to_thread(parse_article, url, html, self.max_chars)

    async def fetch_embed(self, url: str) -> Optional[Article]:
        params = {
            "omit_script": 1,
            "hide_thread": 1,
            "hide_media": 0,
            "dnt": 1,
            "url": url,
        }
        try:
            resp = await asyncio.wait_for(
                self._client.get(OEMBED_ENDPOINT, params=params), timeout=self.embed_timeout
            )
            resp.raise_for_status()
            data = resp.json()
        except Exception as e:  # noqa: BLE001
            logger.debug("oEmbed failed", extra={"url": url, "error": str(e)})
            return None

        text = collapse_ws(BeautifulSoup(f"<div>{data.get('html') or ''}</div>", "html.parser").get_text(" "))
        author = data.get("author_name")
        suffix = f" (by {author})" if author else ""
        title = (text[:SOCIAL_TITLE_CHARS] + suffix) or "Post on X"
        return Article(url=url, title=title, text=text or None)
