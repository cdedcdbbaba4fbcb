"""Batch processing of websites: crawl, summarize, personalize.

Each distinct website moves through these states::

    pending -> cached                              (summary already stored)
    pending -> crawling -> summarizing -> stored
    pending -> ... -> failed

Websites are processed in fixed-size batches sized to the rate-limit budget;
inside a batch every website runs concurrently.  Pacing has a single source:
the shared fixed-window limiter gates every provider call (crawls and
generations), and a batch whose calls would overrun the window simply waits
inside ``acquire()``.  Websites served entirely from the cache never touch
the limiter.

One website failing never stops the others.  Rate-limited crawls and
generations are retried after the provider's ``retry_after``.  Crawl and
generation failures that remain are recorded on the website's
:class:`SiteResult`; storage failures propagate and fail the whole export.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Mapping, TypeVar

from site_personalizer.core.exceptions import CrawlError, GenerationError, StorageError
from site_personalizer.core.url_utils import dedupe_urls, favicon_url
from site_personalizer.crawler.content_cache import ContentCache, CrawlRecord
from site_personalizer.crawler.crawler import Crawler
from site_personalizer.personalization.engine import PersonalizationEngine
from site_personalizer.personalization.store import PersonalizationStore
from site_personalizer.pipeline.retry import retry_with_backoff
from site_personalizer.workers.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Awaitable[None]]

T = TypeVar("T")


class SiteState(str, enum.Enum):
    PENDING = "pending"
    CACHED = "cached"
    CRAWLING = "crawling"
    SUMMARIZING = "summarizing"
    STORED = "stored"
    FAILED = "failed"


@dataclass
class SiteResult:
    """What happened to one website during an export.

    Attributes:
        url: Normalized URL.
        state: Final (or current) processing state.
        content: Cleaned page fragments, when available.
        summary: Stored or freshly generated summary.
        cached: ``True`` when the content came from the cache.
        error: Failure description for ``failed`` websites.
        personalizations: Template outputs generated in this run.
        template_errors: Template name to error message for skipped templates.
    """

    url: str
    state: SiteState = SiteState.PENDING
    content: list[Any] | None = None
    summary: str | None = None
    cached: bool = False
    error: str | None = None
    personalizations: dict[str, str] = field(default_factory=dict)
    template_errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state in (SiteState.CACHED, SiteState.STORED)

    @property
    def has_content(self) -> bool:
        return bool(self.content)


def _chunks(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchPipeline:
    """Drive the crawler, the engine and the stores across many websites.

    Args:
        crawler: Cache-first crawler.
        cache: Content cache (for reading records and writing summaries).
        engine: Generation engine, sharing ``rate_limiter``.
        store: Personalization store.
        rate_limiter: The limiter that gates every provider call.
        max_attempts: Attempts per provider call (crawl or generation) when
            rate-limited.
        sleep: Coroutine used for retry waits.  Injected by tests.
    """

    def __init__(
        self,
        crawler: Crawler,
        cache: ContentCache,
        engine: PersonalizationEngine,
        store: PersonalizationStore,
        rate_limiter: RateLimiter,
        max_attempts: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._crawler = crawler
        self._cache = cache
        self._engine = engine
        self._store = store
        self._rate_limiter = rate_limiter
        self._max_attempts = max_attempts
        self._sleep = sleep

    @property
    def cache(self) -> ContentCache:
        return self._cache

    @property
    def store(self) -> PersonalizationStore:
        return self._store

    @property
    def batch_size(self) -> int:
        return self._rate_limiter.config.max_requests

    async def _with_retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await retry_with_backoff(fn, max_attempts=self._max_attempts, sleep=self._sleep)

    def _log_if_throttled(self, batch_number: int, size: int) -> None:
        if self._rate_limiter.would_block():
            logger.info(
                "batch: rate-limit window exhausted, batch %d will wait for the next window",
                batch_number,
                extra={"batch_size": size},
            )

    # ------------------------------------------------------------------
    # Crawl + summarize
    # ------------------------------------------------------------------

    async def process_sites(
        self,
        urls: list[str],
        on_progress: ProgressCallback | None = None,
        force_summary: bool = False,
    ) -> list[SiteResult]:
        """Crawl and summarize every distinct website in *urls*.

        Args:
            urls: Raw website URLs; duplicates after normalization are
                processed once.
            on_progress: Awaited after each batch with the cumulative number
                of websites processed.
            force_summary: Re-summarize cached websites even when a summary
                is already stored.

        Returns:
            One :class:`SiteResult` per distinct website, in first-seen order.

        Raises:
            StorageError: A cache write failed.
        """
        unique = dedupe_urls(urls)
        results: list[SiteResult] = []
        batches = _chunks(unique, self.batch_size)

        logger.info(
            "batch: processing sites",
            extra={"urls": len(urls), "distinct": len(unique), "batches": len(batches)},
        )

        for number, batch in enumerate(batches, start=1):
            self._log_if_throttled(number, len(batch))
            batch_results = await asyncio.gather(
                *(self._process_site(url, force_summary) for url in batch)
            )
            results.extend(batch_results)
            failed = sum(1 for r in batch_results if r.state is SiteState.FAILED)
            logger.info(
                "batch: batch %d/%d done",
                number,
                len(batches),
                extra={"processed": len(results), "failed": failed},
            )
            if on_progress is not None:
                await on_progress(len(results))

        return results

    async def _read_record(self, url: str) -> CrawlRecord | None:
        try:
            return await self._cache.get_record(url)
        except StorageError as exc:
            logger.warning("batch: cache read failed, crawling: %s", exc, extra={"url": url})
            return None

    async def _process_site(self, url: str, force_summary: bool) -> SiteResult:
        result = SiteResult(url=url)
        record = await self._read_record(url)

        if record is not None and record.content and not force_summary and not record.needs_summary:
            result.state = SiteState.CACHED
            result.content = record.content
            result.summary = record.summary
            result.cached = True
            return result

        if record is not None and record.content:
            result.content = record.content
            result.cached = True
        else:
            result.state = SiteState.CRAWLING
            try:
                outcome = await self._with_retry(lambda: self._crawler.crawl(url))
            except CrawlError as exc:
                logger.warning("batch: crawl failed: %s", exc, extra={"url": url})
                result.state = SiteState.FAILED
                result.error = str(exc)
                return result
            result.content = outcome.content
            result.cached = outcome.cached

        result.state = SiteState.SUMMARIZING
        await self._cache.update(url, is_loading=True)
        try:
            summary = await self._with_retry(lambda: self._engine.summarize(result.content))
        except GenerationError as exc:
            logger.warning("batch: summary failed: %s", exc, extra={"url": url})
            await self._cache.update(url, is_loading=False)
            result.state = SiteState.FAILED
            result.error = str(exc)
            return result

        await self._cache.update(
            url, summary=summary, favicon=favicon_url(url), is_loading=False
        )
        result.summary = summary
        result.state = SiteState.STORED
        return result

    # ------------------------------------------------------------------
    # Personalizations
    # ------------------------------------------------------------------

    async def process_personalizations(
        self,
        user_id: str,
        sites: list[SiteResult],
        templates: list[str],
        custom_prompts: Mapping[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[SiteResult]:
        """Generate every template for every website that has content.

        Templates for one website are generated concurrently; their outputs
        are merged into the store in a single write once all have finished,
        so there is never more than one merge in flight per ``(user, url)``.

        Args:
            user_id: Owner of the personalizations.
            sites: Results from :meth:`process_sites`.
            templates: Template names to generate.
            custom_prompts: Prompt text for custom templates, by name.
            on_progress: Awaited after each batch with the cumulative number
                of websites personalized.

        Returns:
            The websites that were eligible, with ``personalizations`` and
            ``template_errors`` filled in.

        Raises:
            StorageError: A personalization merge failed.
        """
        prompts = dict(custom_prompts or {})
        eligible = [site for site in sites if site.has_content]
        done = 0

        for number, batch in enumerate(_chunks(eligible, self.batch_size), start=1):
            self._log_if_throttled(number, len(batch))
            await asyncio.gather(
                *(self._personalize_site(user_id, site, templates, prompts) for site in batch)
            )
            done += len(batch)
            if on_progress is not None:
                await on_progress(done)

        return eligible

    async def personalize_urls(
        self,
        user_id: str,
        urls: list[str],
        templates: list[str],
        custom_prompts: Mapping[str, str] | None = None,
    ) -> list[SiteResult]:
        """Generate *templates* for already-crawled websites, without crawling.

        Websites with no stored content come back ``failed``; the rest are
        personalized as in :meth:`process_personalizations`.

        Returns:
            One :class:`SiteResult` per distinct website, in first-seen order.
        """
        unique = dedupe_urls(urls)
        records = await self._cache.get_records(unique)
        sites: list[SiteResult] = []
        for url in unique:
            record = records.get(url)
            if record is None or not record.content:
                sites.append(
                    SiteResult(url=url, state=SiteState.FAILED, error="No crawl data available")
                )
                continue
            sites.append(
                SiteResult(
                    url=url,
                    state=SiteState.CACHED,
                    content=record.content,
                    summary=record.summary,
                    cached=True,
                )
            )

        await self.process_personalizations(user_id, sites, templates, custom_prompts)
        return sites

    async def _generate_one(
        self,
        site: SiteResult,
        template: str,
        prompt: str | None,
    ) -> str | None:
        try:
            return await self._with_retry(
                lambda: self._engine.generate(site.content, template, prompt)
            )
        except GenerationError as exc:
            logger.warning(
                "batch: template %s failed: %s",
                template,
                exc,
                extra={"url": site.url, "template": template},
            )
            site.template_errors[template] = str(exc)
            return None

    async def _personalize_site(
        self,
        user_id: str,
        site: SiteResult,
        templates: list[str],
        prompts: dict[str, str],
    ) -> None:
        outputs = await asyncio.gather(
            *(self._generate_one(site, t, prompts.get(t)) for t in templates)
        )
        updates = {t: text for t, text in zip(templates, outputs) if text is not None}
        if not updates:
            return
        await self._store.merge(user_id, site.url, updates)
        site.personalizations.update(updates)
