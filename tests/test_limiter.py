"""Tests for the concurrency limiter and batch article fetching."""

import asyncio

import pytest

from discord_radio.limiter import ConcurrencyLimiter, fetch_articles
from discord_radio.models import Article


class SlowExtractor:
    def __init__(self, empty=()):
        self.active = 0
        self.max_active = 0
        self.requested = []
        self.empty = set(empty)

    async def fetch(self, url):
        self.requested.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        # Later URLs finish first
        await asyncio.sleep(0.001 * (20 - len(self.requested)))
        self.active -= 1
        if url in self.empty:
            return Article(url=url)
        return Article(url=url, title=f"title of {url}")


def test_limiter_rejects_zero():
    """A limiter needs at least one slot."""
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)


def test_fetch_articles_respects_bound():
    """No more than K fetches are ever in flight."""
    urls = [f"https://site.test/{i}" for i in range(12)]
    extractor = SlowExtractor()
    limiter = ConcurrencyLimiter(3)
    asyncio.run(fetch_articles(urls, extractor, limiter, max_urls=20))
    assert extractor.max_active <= 3
    assert limiter.peak <= 3
    assert limiter.in_flight == 0


def test_fetch_articles_keeps_input_order():
    """Results match their URL regardless of completion order."""
    urls = [f"https://site.test/{i}" for i in range(6)]
    arts = asyncio.run(fetch_articles(urls, SlowExtractor(), ConcurrencyLimiter(4), max_urls=20))
    assert [a.url for a in arts] == urls
    assert all(a.title == f"title of {a.url}" for a in arts)


def test_fetch_articles_truncates_and_drops_empty():
    """Only the first max_urls are fetched; empty articles are dropped."""
    urls = [f"https://site.test/{i}" for i in range(8)]
    extractor = SlowExtractor(empty={"https://site.test/1"})
    arts = asyncio.run(fetch_articles(urls, extractor, ConcurrencyLimiter(2), max_urls=3))
    assert sorted(extractor.requested) == urls[:3]
    assert [a.url for a in arts] == ["https://site.test/0", "https://site.test/2"]


def test_limiter_built_outside_event_loop():
    """A limiter created before asyncio.run still bounds concurrency inside it."""
    limiter = ConcurrencyLimiter(2)
    extractor = SlowExtractor()

    async def go():
        urls = [f"https://site.test/{i}" for i in range(6)]
        return await fetch_articles(urls, extractor, limiter, max_urls=20)

    arts = asyncio.run(go())
    assert len(arts) == 6
    assert limiter.peak == 2
    assert extractor.max_active == 2
