"""Unit tests for the URL helpers in core/url_utils.py."""

from __future__ import annotations

import pytest

from site_personalizer.core.url_utils import (
    dedupe_urls,
    extract_host,
    extract_row_url,
    favicon_url,
    normalize_url,
    try_normalize_url,
)


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        "raw",
        [
            "example.com",
            "http://example.com",
            "https://www.example.com/",
            "  WWW.Example.com//  ",
            "HTTPS://EXAMPLE.COM",
        ],
    )
    def test_variants_share_one_form(self, raw: str) -> None:
        assert normalize_url(raw) == "https://example.com"

    def test_keeps_path(self) -> None:
        assert normalize_url("http://www.example.com/about/") == "https://example.com/about"

    def test_idempotent(self) -> None:
        once = normalize_url("www.Example.com/")
        assert normalize_url(once) == once

    def test_empty_raises(self) -> None:
        with pytest.raises(ValueError):
            normalize_url("   ")

    def test_scheme_only_raises(self) -> None:
        with pytest.raises(ValueError):
            normalize_url("https://")


class TestFavicon:
    def test_extract_host(self) -> None:
        assert extract_host("https://example.com/about") == "example.com"

    def test_favicon_url(self) -> None:
        assert (
            favicon_url("https://example.com")
            == "https://www.google.com/s2/favicons?domain=example.com&sz=128"
        )


class TestExtractRowUrl:
    def test_column_lookup_order(self) -> None:
        row = {"url": "c.com", "Website": "a.com", "website": "b.com"}
        assert extract_row_url(row) == "a.com"

    def test_skips_blank_cells(self) -> None:
        row = {"Website": "  ", "URL": "d.com"}
        assert extract_row_url(row) == "d.com"

    def test_non_string_cell_is_stringified(self) -> None:
        assert extract_row_url({"url": 123}) == "123"

    def test_row_without_url(self) -> None:
        assert extract_row_url({"Name": "Acme"}) is None


class TestDedupeUrls:
    def test_dedupes_after_normalization_in_first_seen_order(self) -> None:
        urls = ["b.com", "http://www.a.com", "https://b.com/", "a.com"]
        assert dedupe_urls(urls) == ["https://b.com", "https://a.com"]

    def test_skips_blanks(self) -> None:
        assert dedupe_urls(["", "  ", "a.com"]) == ["https://a.com"]

    def test_skips_cells_without_a_host(self) -> None:
        assert dedupe_urls(["www.", "http://", "a.com", "https://www./"]) == ["https://a.com"]


class TestTryNormalizeUrl:
    def test_normalizes_like_normalize_url(self) -> None:
        assert try_normalize_url("http://www.Example.com/") == "https://example.com"

    @pytest.mark.parametrize("raw", [None, "", "   ", "www.", "http://", "https://www./"])
    def test_returns_none_for_hostless_input(self, raw) -> None:
        assert try_normalize_url(raw) is None
