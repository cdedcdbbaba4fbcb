"""Durable cache of crawled website content keyed by normalized URL.

Backed by the ``website_crawls`` table.  Reads are tolerant: a database
error during a lookup is logged and treated as a cache miss.  Writes
are strict: they raise :class:`~site_personalizer.core.exceptions.StorageError`.

Writes merge onto the existing row.  Only the fields a caller passes are
changed, so a crawler saving fresh content never clears a summary or
favicon written by the summarizer, and vice versa.  Writers for the same URL
are serialized by an in-process keyed lock and, across processes, by a
``SELECT ... FOR UPDATE`` row lock.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from site_personalizer.core.exceptions import StorageError
from site_personalizer.core.locks import KeyedLock
from site_personalizer.core.models.crawls import WebsiteCrawl

logger = logging.getLogger(__name__)

#: Columns a caller may set through :meth:`ContentCache.update`.
UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {"crawl_data", "word_count", "summary", "favicon", "is_loading"}
)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CachedContent:
    """The part of a cache row the crawler serves on a hit."""

    content: list[Any]
    word_count: int


@dataclass(frozen=True)
class CrawlRecord:
    """Snapshot of one ``website_crawls`` row.

    Attributes:
        url: Normalized URL.
        content: Cleaned page fragments (empty list when never crawled).
        word_count: Token count of ``content``.
        summary: Generated summary, or ``None``.
        favicon: Favicon URL, or ``None``.
        is_loading: Whether a crawl/summarization is in flight.
        created_at: First write timestamp.
        updated_at: Last write timestamp.
    """

    url: str
    content: list[Any]
    word_count: int
    summary: str | None
    favicon: str | None
    is_loading: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def needs_summary(self) -> bool:
        """``True`` when the row has content but no usable summary."""
        return bool(self.content) and (self.summary is None or self.is_loading)


def _to_record(row: WebsiteCrawl) -> CrawlRecord:
    return CrawlRecord(
        url=row.url,
        content=list(row.crawl_data or []),
        word_count=row.word_count or 0,
        summary=row.summary,
        favicon=row.favicon,
        is_loading=bool(row.is_loading),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def calculate_word_count(content: Any) -> int:
    """Count whitespace-separated tokens in the JSON serialization of *content*.

    Deterministic for equal inputs.  Serialization uses compact separators
    so that the JSON punctuation itself adds no whitespace.
    """
    text = json.dumps(content, ensure_ascii=False, separators=(",", ":"))
    return len(text.split())


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class ContentCache:
    """Read and merge-write access to ``website_crawls``.

    Each operation opens its own session from *session_factory*, so a
    single instance can be shared by many concurrent coroutines.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._locks = KeyedLock()

    async def check_cache(self, url: str) -> CachedContent | None:
        """Return cached content for *url*, or ``None`` on a miss.

        A row that exists but holds no content counts as a miss.  Database
        errors are logged and also reported as a miss.
        """
        try:
            record = await self.get_record(url)
        except StorageError as exc:
            logger.warning(
                "content_cache: lookup failed, treating as miss: %s",
                exc,
                extra={"url": url},
            )
            return None

        if record is None or not record.content:
            logger.debug("content_cache: miss", extra={"url": url})
            return None

        logger.debug("content_cache: hit", extra={"url": url})
        return CachedContent(content=record.content, word_count=record.word_count)

    async def get_record(self, url: str) -> CrawlRecord | None:
        """Return the full row for *url*, or ``None`` if there is none.

        Raises:
            StorageError: On database failure.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(WebsiteCrawl).where(WebsiteCrawl.url == url)
                )
                row = result.scalar_one_or_none()
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read crawl record for {url}: {exc}",
                table="website_crawls",
            ) from exc

    async def get_records(self, urls: list[str]) -> dict[str, CrawlRecord]:
        """Return the rows for *urls* that exist, keyed by URL.

        Raises:
            StorageError: On database failure.
        """
        if not urls:
            return {}
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(WebsiteCrawl).where(WebsiteCrawl.url.in_(urls))
                )
                return {row.url: _to_record(row) for row in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read crawl records: {exc}", table="website_crawls"
            ) from exc

    async def list_records(
        self, urls: list[str], limit: int | None = None
    ) -> list[CrawlRecord]:
        """Return the rows for *urls*, newest first, at most *limit* of them.

        Raises:
            StorageError: On database failure.
        """
        if not urls:
            return []
        stmt = (
            select(WebsiteCrawl)
            .where(WebsiteCrawl.url.in_(urls))
            .order_by(WebsiteCrawl.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to list crawl records: {exc}", table="website_crawls"
            ) from exc

    async def cached_urls(self, urls: list[str]) -> list[str]:
        """Return the subset of *urls* whose rows hold crawled content, in input order."""
        records = await self.get_records(urls)
        return [url for url in urls if url in records and records[url].content]

    async def save(self, url: str, content: list[Any], word_count: int) -> CrawlRecord:
        """Store freshly crawled content for *url*.

        Clears ``is_loading``.  Summary and favicon are left as they are.
        """
        return await self.update(
            url, crawl_data=content, word_count=word_count, is_loading=False
        )

    async def update(self, url: str, **fields: Any) -> CrawlRecord:
        """Merge *fields* onto the row for *url*, creating it if needed.

        Args:
            url: Normalized URL.
            **fields: Subset of :data:`UPDATABLE_FIELDS`.

        Returns:
            The row as it stands after the write.

        Raises:
            ValueError: If an unknown field is passed.
            StorageError: On database failure.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown crawl record fields: {sorted(unknown)}")

        async with self._locks.hold(url):
            async with self._session_factory() as session:
                try:
                    await session.execute(
                        pg_insert(WebsiteCrawl)
                        .values(url=url)
                        .on_conflict_do_nothing(index_elements=["url"])
                    )
                    result = await session.execute(
                        select(WebsiteCrawl)
                        .where(WebsiteCrawl.url == url)
                        .with_for_update()
                    )
                    row = result.scalar_one()
                    for name, value in fields.items():
                        setattr(row, name, value)
                    await session.commit()
                    await session.refresh(row)
                except SQLAlchemyError as exc:
                    await session.rollback()
                    logger.error(
                        "content_cache: write failed: %s",
                        exc,
                        extra={"url": url, "fields": sorted(fields)},
                    )
                    raise StorageError(
                        f"Failed to write crawl record for {url}: {exc}",
                        table="website_crawls",
                    ) from exc

        logger.debug(
            "content_cache: saved", extra={"url": url, "fields": sorted(fields)}
        )
        return _to_record(row)
