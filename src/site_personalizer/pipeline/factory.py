"""Assemble a :class:`BatchPipeline` from application settings.

Used by the export worker and by the on-demand site routes.  Both need the
same wiring: one HTTP client and one rate limiter shared by the crawler and
the generation engine, so both kinds of provider call draw from one budget.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from site_personalizer.config.settings import Settings, get_settings
from site_personalizer.crawler.content_cache import ContentCache
from site_personalizer.crawler.crawler import Crawler
from site_personalizer.crawler.firecrawl_client import FirecrawlClient
from site_personalizer.personalization.engine import PersonalizationEngine
from site_personalizer.personalization.store import PersonalizationStore
from site_personalizer.pipeline.batch import BatchPipeline
from site_personalizer.workers.rate_limiter import (
    RateLimiter,
    RedisFixedWindowRateLimiter,
    get_rate_limiter,
)


def build_pipeline(
    client: httpx.AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
    rate_limiter: RateLimiter,
    settings: Settings,
) -> BatchPipeline:
    """Wire the stores, the crawler and the engine around *client*."""
    cache = ContentCache(session_factory)
    crawler = Crawler(
        cache,
        FirecrawlClient(
            client,
            api_key=settings.firecrawl_api_key,
            api_url=settings.firecrawl_api_url,
            poll_interval=settings.crawl_poll_interval_seconds,
            poll_timeout=settings.crawl_poll_timeout_seconds,
        ),
        rate_limiter,
    )
    engine = PersonalizationEngine(
        client,
        api_key=settings.openai_api_key,
        api_url=settings.openai_api_url,
        model=settings.openai_model,
        temperature=settings.openai_temperature,
        max_tokens=settings.openai_max_tokens,
        rate_limiter=rate_limiter,
    )
    return BatchPipeline(
        crawler,
        cache,
        engine,
        PersonalizationStore(session_factory),
        rate_limiter,
        max_attempts=settings.crawl_max_attempts,
    )


@asynccontextmanager
async def open_pipeline(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[BatchPipeline]:
    """Yield a pipeline whose HTTP client and Redis connection close on exit.

    Args:
        session_factory: Defaults to the application's ``AsyncSessionLocal``.
    """
    if session_factory is None:
        from site_personalizer.core.database import AsyncSessionLocal  # noqa: PLC0415

        session_factory = AsyncSessionLocal

    settings = get_settings()
    rate_limiter = get_rate_limiter()
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            yield build_pipeline(client, session_factory, rate_limiter, settings)
    finally:
        if isinstance(rate_limiter, RedisFixedWindowRateLimiter):
            await rate_limiter.redis_client.aclose()
