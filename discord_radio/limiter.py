from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

from .models import Article


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConcurrencyLimiter:
    """Caps in-flight coroutines; waiters start in FIFO order as slots free."""

    def __init__(self, max_in_flight: int) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.max_in_flight = max_in_flight
        self._semaphore: Optional[asyncio.Semaphore] = None
        self.in_flight = 0
        self.peak = 0

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        # Bound to the running loop on first use, not at construction
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_in_flight)
        async with self._semaphore:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                return await func()
            finally:
                self.in_flight -= 1


class Fetcher(Protocol):
    async def fetch(self, url: str) -> Article: ...


async def fetch_articles(
    urls: Sequence[str],
    extractor: Fetcher,
    limiter: ConcurrencyLimiter,
    max_urls: int,
) -> List[Article]:
    """Fetch up to ``max_urls`` articles (oldest first) under the limiter.

    Results come back in input order; empty articles are dropped.
    """
    selected = list(urls)[:max_urls]
    if len(urls) > len(selected):
        logger.info("Truncated URL list", extra={"total": len(urls), "kept": len(selected)})

    results = await asyncio.gather(*(limiter.run(lambda u=u: extractor.fetch(u)) for u in selected))
    by_url = {art.url: art for art in results}
    return [by_url[u] for u in selected if u in by_url and not by_url[u].is_empty]
