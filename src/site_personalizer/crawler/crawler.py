"""Fetch and clean website content, serving from the content cache when possible.

The crawler is the only component that calls the crawl provider.  A cache
hit returns immediately and consumes no rate-limit slot; a miss acquires a
slot from the shared limiter, crawls, cleans and saves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from site_personalizer.core.exceptions import CrawlError, CrawlRateLimitError
from site_personalizer.core.url_utils import normalize_url
from site_personalizer.crawler.config import DEFAULT_RETRY_AFTER
from site_personalizer.crawler.content_cache import ContentCache, calculate_word_count
from site_personalizer.crawler.firecrawl_client import FirecrawlClient, parse_retry_after
from site_personalizer.crawler.text_cleaning import clean_crawl_data
from site_personalizer.workers.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_RATE_LIMIT_MARKER = "rate limit exceeded"


@dataclass(frozen=True)
class CrawlOutcome:
    """Content for one website.

    Attributes:
        url: Normalized URL.
        content: Cleaned page fragments.
        word_count: Token count of ``content``.
        cached: ``True`` when served from the content cache.
    """

    url: str
    content: list[Any]
    word_count: int
    cached: bool


class Crawler:
    """Cache-first website crawler.

    Args:
        cache: Content cache shared with the rest of the pipeline.
        provider: Crawl provider client.
        rate_limiter: Limiter gating every provider call.
    """

    def __init__(
        self,
        cache: ContentCache,
        provider: FirecrawlClient,
        rate_limiter: RateLimiter,
    ) -> None:
        self._cache = cache
        self._provider = provider
        self._rate_limiter = rate_limiter

    async def crawl(self, url: str) -> CrawlOutcome:
        """Return cleaned content for *url*.

        Args:
            url: Raw or normalized website URL.

        Returns:
            The cached or freshly crawled content.

        Raises:
            CrawlRateLimitError: The provider rejected the request with a
                rate limit; ``retry_after`` says how long to wait.
            CrawlError: Any other provider failure.
            StorageError: The fresh content could not be saved.
        """
        normalized = normalize_url(url)

        cached = await self._cache.check_cache(normalized)
        if cached is not None:
            logger.info("crawler: cache hit", extra={"url": normalized})
            return CrawlOutcome(
                url=normalized,
                content=cached.content,
                word_count=cached.word_count,
                cached=True,
            )

        await self._rate_limiter.acquire()
        logger.info("crawler: crawling", extra={"url": normalized})
        response = await self._provider.crawl(normalized)

        if not response.success:
            message = response.error or "Failed to crawl website"
            retry_after = parse_retry_after(message)
            if retry_after is not None or _RATE_LIMIT_MARKER in message.lower():
                raise CrawlRateLimitError(
                    message,
                    retry_after=retry_after if retry_after is not None else DEFAULT_RETRY_AFTER,
                    url=normalized,
                )
            logger.warning(
                "crawler: provider error: %s", message, extra={"url": normalized}
            )
            raise CrawlError(message, url=normalized)

        content = clean_crawl_data(response.data)
        word_count = calculate_word_count(content)
        await self._cache.save(normalized, content, word_count)

        logger.info(
            "crawler: crawled",
            extra={"url": normalized, "pages": len(content), "word_count": word_count},
        )
        return CrawlOutcome(
            url=normalized, content=content, word_count=word_count, cached=False
        )
