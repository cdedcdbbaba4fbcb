"""Unit tests for ContentCache helpers and its error handling.

Database access is replaced by a MagicMock session factory; no PostgreSQL
is required.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from site_personalizer.core.exceptions import StorageError
from site_personalizer.core.models.crawls import WebsiteCrawl
from site_personalizer.crawler.content_cache import (
    ContentCache,
    CrawlRecord,
    calculate_word_count,
)


def _failing_session_factory() -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))
    session.rollback = AsyncMock()
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


def _rows_session_factory(rows: list[WebsiteCrawl]) -> MagicMock:
    result = MagicMock()
    result.scalars.return_value.all.return_value = rows
    session = MagicMock()
    session.execute = AsyncMock(return_value=result)
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


def _row(url: str, crawl_data: list | None) -> WebsiteCrawl:
    return WebsiteCrawl(
        url=url, crawl_data=crawl_data, word_count=1, summary=None, favicon=None, is_loading=False
    )


def _record(**overrides) -> CrawlRecord:
    values = dict(
        url="https://example.com",
        content=[{"markdown": "text"}],
        word_count=1,
        summary="A shop.",
        favicon=None,
        is_loading=False,
    )
    values.update(overrides)
    return CrawlRecord(**values)


class TestCalculateWordCount:
    def test_deterministic(self) -> None:
        content = [{"markdown": "We sell bikes and repair them"}]

        assert calculate_word_count(content) == calculate_word_count(list(content))

    def test_counts_whitespace_tokens(self) -> None:
        assert calculate_word_count(["one two three"]) == 3

    def test_empty(self) -> None:
        assert calculate_word_count([]) == 1  # "[]" is a single token


class TestNeedsSummary:
    def test_summary_present(self) -> None:
        assert _record().needs_summary is False

    def test_summary_missing(self) -> None:
        assert _record(summary=None).needs_summary is True

    def test_summary_in_flight(self) -> None:
        assert _record(is_loading=True).needs_summary is True

    def test_no_content(self) -> None:
        assert _record(content=[], summary=None).needs_summary is False


class TestContentCacheErrors:
    async def test_lookup_failure_is_a_miss(self) -> None:
        cache = ContentCache(_failing_session_factory())

        assert await cache.check_cache("https://example.com") is None

    async def test_get_record_failure_raises_storage_error(self) -> None:
        cache = ContentCache(_failing_session_factory())

        with pytest.raises(StorageError):
            await cache.get_record("https://example.com")

    async def test_write_failure_raises_storage_error(self) -> None:
        cache = ContentCache(_failing_session_factory())

        with pytest.raises(StorageError):
            await cache.update("https://example.com", summary="x")

    async def test_unknown_field_rejected(self) -> None:
        cache = ContentCache(MagicMock())

        with pytest.raises(ValueError):
            await cache.update("https://example.com", title="x")

    async def test_get_records_empty_skips_database(self) -> None:
        factory = MagicMock()

        assert await ContentCache(factory).get_records([]) == {}
        factory.assert_not_called()


class TestListing:
    async def test_cached_urls_keeps_rows_with_content_in_input_order(self) -> None:
        factory = _rows_session_factory(
            [
                _row("https://b.com", [{"markdown": "b"}]),
                _row("https://empty.com", []),
                _row("https://a.com", [{"markdown": "a"}]),
            ]
        )

        cached = await ContentCache(factory).cached_urls(
            ["https://a.com", "https://missing.com", "https://empty.com", "https://b.com"]
        )

        assert cached == ["https://a.com", "https://b.com"]

    async def test_list_records_returns_rows_in_query_order(self) -> None:
        factory = _rows_session_factory(
            [_row("https://new.com", [{"markdown": "n"}]), _row("https://old.com", None)]
        )

        records = await ContentCache(factory).list_records(
            ["https://old.com", "https://new.com"], limit=5
        )

        assert [r.url for r in records] == ["https://new.com", "https://old.com"]
        assert records[1].content == []

    async def test_list_records_empty_skips_database(self) -> None:
        factory = MagicMock()

        assert await ContentCache(factory).list_records([]) == []
        factory.assert_not_called()

    async def test_list_records_failure_raises_storage_error(self) -> None:
        with pytest.raises(StorageError):
            await ContentCache(_failing_session_factory()).list_records(["https://a.com"])
