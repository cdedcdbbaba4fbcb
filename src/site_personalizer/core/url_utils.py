"""URL helpers shared by the crawler, the stores and the export pipeline.

The normalized form produced by :func:`normalize_url` is the identity key of a
website everywhere in the system: the content cache, the personalization
store and the per-batch deduplication all key on it.

All functions in this module are pure (no I/O).
"""

from __future__ import annotations

import re
import urllib.parse
from typing import Any

#: Row columns that may carry a website URL, in lookup order.
URL_COLUMNS: tuple[str, ...] = ("Website", "website", "URL", "url")

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_url(raw: str) -> str:
    """Return the canonical ``https://`` form of a website URL.

    Performs the following transformations in order:

    1. Trim surrounding whitespace and lowercase.
    2. Strip any scheme (``http://``, ``https://``, ...).
    3. Strip a leading ``www.``.
    4. Strip trailing slashes.
    5. Prefix ``https://``.

    ``"example.com"``, ``"http://www.example.com"`` and ``"WWW.Example.com/"``
    all map to ``"https://example.com"``.

    Args:
        raw: URL as typed into a spreadsheet cell.

    Returns:
        Normalized URL.

    Raises:
        ValueError: If *raw* is empty after trimming.
    """
    value = raw.strip().lower()
    value = _SCHEME_RE.sub("", value)
    value = value.removeprefix("www.")
    value = value.rstrip("/")
    if not value:
        raise ValueError(f"Cannot normalize empty URL: {raw!r}")
    return f"https://{value}"


def try_normalize_url(raw: str | None) -> str | None:
    """Like :func:`normalize_url`, but ``None`` for blank or scheme-only input."""
    if not raw:
        return None
    try:
        return normalize_url(raw)
    except ValueError:
        return None


def extract_host(url: str) -> str:
    """Return the bare hostname of a normalized URL."""
    return urllib.parse.urlparse(url).netloc or url


def favicon_url(url: str) -> str:
    """Return the favicon lookup URL for *url*.

    Args:
        url: Normalized website URL.

    Returns:
        Google S2 favicon URL at 128px.
    """
    domain = urllib.parse.quote(extract_host(url), safe="")
    return f"https://www.google.com/s2/favicons?domain={domain}&sz=128"


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------


def extract_row_url(row: dict[str, Any]) -> str | None:
    """Return the first non-empty URL cell of a spreadsheet row.

    Looks at the :data:`URL_COLUMNS` in order.  Non-string cells are
    converted with ``str()``.

    Args:
        row: Mapping of column name to cell value.

    Returns:
        The raw (un-normalized) URL string, or ``None`` if the row has none.
    """
    for column in URL_COLUMNS:
        value = row.get(column)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def dedupe_urls(urls: list[str]) -> list[str]:
    """Normalize *urls* and drop duplicates, preserving first-occurrence order.

    Entries that do not normalize (blank, ``"www."``, ``"http://"``) are skipped.
    """
    seen: set[str] = set()
    result: list[str] = []
    for url in urls:
        key = try_normalize_url(url)
        if key is None:
            continue
        if key not in seen:
            seen.add(key)
            result.append(key)
    return result
