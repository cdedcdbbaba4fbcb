"""Unit tests for prompt rendering."""

from __future__ import annotations

import pytest

from site_personalizer.personalization.prompts import (
    BUILTIN_TEMPLATES,
    is_custom_template,
    render_builtin,
    render_custom,
    serialize_content,
)

_CONTENT = [{"markdown": "We bake bread"}]


def test_builtin_templates() -> None:
    assert {"intro", "ps", "summary"} <= set(BUILTIN_TEMPLATES)


def test_serialize_content_is_compact_json() -> None:
    assert serialize_content(_CONTENT) == '[{"markdown":"We bake bread"}]'


def test_render_builtin_substitutes_placeholders() -> None:
    prompt = render_builtin("intro", _CONTENT, business_name="Acme Bakery")

    assert "Acme Bakery's website" in prompt
    assert prompt.endswith('Website Content: [{"markdown":"We bake bread"}]\n\nOutput:')
    assert "{content}" not in prompt
    assert "{business_name}" not in prompt


def test_placeholder_text_inside_content_stays_literal() -> None:
    prompt = render_builtin("summary", ["see {business_name} here"], business_name="Acme")

    assert "see {business_name} here" in prompt


def test_render_builtin_unknown_raises() -> None:
    with pytest.raises(KeyError):
        render_builtin("nope", _CONTENT)


def test_render_custom_appends_content() -> None:
    prompt = render_custom("Write a haiku about this company.", _CONTENT)

    assert prompt == (
        "Write a haiku about this company.\n\n"
        'Website content: [{"markdown":"We bake bread"}]'
    )


def test_is_custom_template() -> None:
    assert is_custom_template("custom_haiku") is True
    assert is_custom_template("intro") is False
