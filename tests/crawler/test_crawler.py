"""Unit tests for the cache-first Crawler."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import CountingLimiter, FakeContentCache
from site_personalizer.core.exceptions import CrawlError, CrawlRateLimitError
from site_personalizer.crawler.crawler import Crawler
from site_personalizer.crawler.firecrawl_client import CrawlResponse


def _provider(response: CrawlResponse) -> MagicMock:
    provider = MagicMock()
    provider.crawl = AsyncMock(return_value=response)
    return provider


class TestCacheHit:
    async def test_hit_makes_no_provider_call_and_takes_no_slot(
        self, cache: FakeContentCache
    ) -> None:
        cache.seed("https://example.com", [{"markdown": "cached"}], summary="s")
        provider = _provider(CrawlResponse(success=True))
        limiter = CountingLimiter()

        outcome = await Crawler(cache, provider, limiter).crawl("http://www.Example.com/")

        assert outcome.cached is True
        assert outcome.url == "https://example.com"
        assert outcome.content == [{"markdown": "cached"}]
        provider.crawl.assert_not_awaited()
        assert limiter.acquired == 0

    async def test_row_without_content_is_a_miss(self, cache: FakeContentCache) -> None:
        cache.seed("https://example.com", [])
        provider = _provider(
            CrawlResponse(success=True, data=[{"markdown": "We restore vintage cars daily."}])
        )

        outcome = await Crawler(cache, provider, CountingLimiter()).crawl("example.com")

        assert outcome.cached is False
        provider.crawl.assert_awaited_once_with("https://example.com")


class TestCacheMiss:
    async def test_miss_crawls_cleans_and_saves(self, cache: FakeContentCache) -> None:
        provider = _provider(
            CrawlResponse(
                success=True,
                data=[{"markdown": "<h1>Acme</h1> We restore vintage cars daily.", "metadata": {}}],
            )
        )
        limiter = CountingLimiter()

        outcome = await Crawler(cache, provider, limiter).crawl("acme.com")

        assert outcome.cached is False
        assert outcome.content == [{"markdown": "Acme We restore vintage cars daily", "metadata": {}}]
        assert limiter.acquired == 1
        record = cache.records["https://acme.com"]
        assert record.content == outcome.content
        assert record.word_count == outcome.word_count
        assert record.is_loading is False

    async def test_provider_failure_raises_crawl_error(self, cache: FakeContentCache) -> None:
        provider = _provider(CrawlResponse(success=False, error="Website unreachable"))

        with pytest.raises(CrawlError) as exc_info:
            await Crawler(cache, provider, CountingLimiter()).crawl("down.com")

        assert not isinstance(exc_info.value, CrawlRateLimitError)
        assert exc_info.value.url == "https://down.com"
        assert "https://down.com" not in cache.records

    async def test_retry_hint_raises_rate_limit_error(self, cache: FakeContentCache) -> None:
        provider = _provider(
            CrawlResponse(success=False, error="Rate limit exceeded, retry after 12s")
        )

        with pytest.raises(CrawlRateLimitError) as exc_info:
            await Crawler(cache, provider, CountingLimiter()).crawl("busy.com")

        assert exc_info.value.retry_after == 12.0

    async def test_rate_limit_without_hint_uses_default(self, cache: FakeContentCache) -> None:
        provider = _provider(CrawlResponse(success=False, error="Rate limit exceeded"))

        with pytest.raises(CrawlRateLimitError) as exc_info:
            await Crawler(cache, provider, CountingLimiter()).crawl("busy.com")

        assert exc_info.value.retry_after == 60.0
