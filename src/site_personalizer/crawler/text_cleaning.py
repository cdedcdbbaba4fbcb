"""Clean crawled page text before it is cached and sent to the generation model.

Crawled markdown and HTML is full of markup, scripts and navigation noise.
:func:`clean_text` strips it down to the sentences that read like prose;
:func:`clean_crawl_data` applies that to every string field of every page
fragment returned by the crawl provider while keeping the fragment
structure intact.

All functions in this module are pure (no I/O).
"""

from __future__ import annotations

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

#: Code and markup constructs replaced with a space, applied in order.
CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"```[\s\S]*?```"),  # fenced code blocks
    re.compile(r"<[^>]*>"),  # HTML tags
    re.compile(r"\{\{.*?\}\}"),  # {{ template }} syntax
    re.compile(r"\$\{.*?\}"),  # ${expr} interpolation
    re.compile(r"function\s*\(.*?\)\s*\{[\s\S]*?\}"),  # anonymous functions
    re.compile(r"\b(?:const|let|var)\s+\w+\s*=.*?;"),  # variable declarations
    re.compile(r"\bimport\s+.*?from\s+['\"].*?['\"];?"),  # ES imports
    re.compile(r"\bexport\s+(?:default\s+)?(?:const|let|var|function|class)\b[^;\n]*;?"),
    re.compile(r"/\*[\s\S]*?\*/"),  # block comments
    re.compile(r"(?<![:/])//.*"),  # line comments, not the // of a URL scheme
)

_URL_RE = re.compile(r"https?://\S+")
_FILE_PATH_RE = re.compile(r"[/\\][\w\-. ]+[/\\]")
_SYMBOL_RE = re.compile(r"[^\w\s.,!?;:'\"()-]")
_WHITESPACE_RE = re.compile(r"\s+")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
_WORDISH_RE = re.compile(r"[a-zA-Z]{3,}")

#: Minimum words a sentence needs to survive filtering.
MIN_SENTENCE_WORDS: int = 3


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _is_meaningful(sentence: str) -> bool:
    words = sentence.split()
    return len(words) >= MIN_SENTENCE_WORDS and any(_WORDISH_RE.search(w) for w in words)


def clean_text(raw: str) -> str:
    """Reduce a crawled page to its prose sentences.

    Steps:

    1. Replace code blocks, markup, template syntax and comments with spaces.
    2. Remove URLs and file-path fragments.
    3. Replace symbols other than common punctuation with spaces and
       collapse whitespace.
    4. Split on sentence terminators and keep sentences with at least three
       words, one of which contains three or more ASCII letters.
    5. Rejoin the kept sentences with ``". "``.

    Args:
        raw: Markdown or HTML text of one page.

    Returns:
        The cleaned text, possibly empty.
    """
    text = raw
    for pattern in CODE_PATTERNS:
        text = pattern.sub(" ", text)

    text = _URL_RE.sub("", text)
    text = _FILE_PATH_RE.sub("", text)
    text = _SYMBOL_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()

    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(text)]
    return ". ".join(s for s in sentences if _is_meaningful(s)).strip()


def clean_crawl_data(pages: list[Any]) -> list[Any]:
    """Clean every string in a list of crawled page fragments.

    String items are cleaned directly.  Dict items have each string value
    cleaned; other values (metadata dicts, numbers, ``None``) pass through
    unchanged.  Anything else is returned as-is.

    Args:
        pages: The provider's ``data`` list.

    Returns:
        A new list of the same length and shape.
    """
    cleaned: list[Any] = []
    for item in pages:
        if isinstance(item, str):
            cleaned.append(clean_text(item))
        elif isinstance(item, dict):
            cleaned.append(
                {
                    key: clean_text(value) if isinstance(value, str) else value
                    for key, value in item.items()
                }
            )
        else:
            cleaned.append(item)

    logger.debug("text_cleaning: cleaned %d page fragments", len(cleaned))
    return cleaned
