"""Unit tests for crawled-text cleaning."""

from __future__ import annotations

from site_personalizer.crawler.text_cleaning import clean_crawl_data, clean_text


class TestCleanText:
    def test_strips_html_and_keeps_sentences(self) -> None:
        raw = "<p>Welcome to our bakery. We bake fresh bread daily!</p>"

        assert clean_text(raw) == "Welcome to our bakery. We bake fresh bread daily"

    def test_drops_short_sentences(self) -> None:
        raw = "Home. About us. We build custom furniture in Austin."

        assert clean_text(raw) == "We build custom furniture in Austin"

    def test_drops_sentences_without_real_words(self) -> None:
        assert clean_text("12 34 56. 7 8 9 10.") == ""

    def test_removes_code(self) -> None:
        raw = "const total = items.length; We make great coffee here."

        assert clean_text(raw) == "We make great coffee here"

    def test_removes_fenced_code_and_comments(self) -> None:
        raw = "```js\nalert(1)\n```\nOur team repairs old bikes. // nav toggle\n/* styles */"

        assert clean_text(raw) == "Our team repairs old bikes"

    def test_removes_urls_without_eating_the_sentence(self) -> None:
        raw = "Visit https://example.com/shop for our great deals."

        assert clean_text(raw) == "Visit for our great deals"

    def test_removes_template_syntax(self) -> None:
        raw = "Hello {{ user.name }} and welcome to the shop floor."

        assert clean_text(raw) == "Hello and welcome to the shop floor"

    def test_empty_input(self) -> None:
        assert clean_text("") == ""


class TestCleanCrawlData:
    def test_preserves_shape(self) -> None:
        pages = [
            {"markdown": "<b>We sell handmade soap online.</b>", "metadata": {"title": "Soap"}},
            "We ship across the country.",
            None,
        ]

        cleaned = clean_crawl_data(pages)

        assert len(cleaned) == 3
        assert cleaned[0] == {
            "markdown": "We sell handmade soap online",
            "metadata": {"title": "Soap"},
        }
        assert cleaned[1] == "We ship across the country"
        assert cleaned[2] is None

    def test_does_not_mutate_input(self) -> None:
        pages = [{"markdown": "<i>Fresh flowers every single day.</i>"}]

        clean_crawl_data(pages)

        assert pages == [{"markdown": "<i>Fresh flowers every single day.</i>"}]
