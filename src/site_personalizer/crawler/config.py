"""Constants for the crawl provider requests and the content cache."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Crawl scope
# ---------------------------------------------------------------------------

#: Maximum number of pages fetched per website.
CRAWL_PAGE_LIMIT: int = 3

#: Link depth followed from the start page.
CRAWL_MAX_DEPTH: int = 1

#: Path patterns the provider may follow.  ``^$`` keeps the start page.
CRAWL_INCLUDE_PATHS: tuple[str, ...] = ("^$", "/blog/*", "/posts/*", "/articles/*")

#: Listing and archive paths that never carry the site's own copy.
CRAWL_EXCLUDE_PATHS: tuple[str, ...] = (
    "/category/*",
    "/tag/*",
    "/author/*",
    "/page/*",
    "/archive/*",
)

#: Page formats requested from the provider.
CRAWL_FORMATS: tuple[str, ...] = ("markdown", "html")

# ---------------------------------------------------------------------------
# Rate-limit handling
# ---------------------------------------------------------------------------

#: Wait applied when the provider rate-limits us without saying for how long.
DEFAULT_RETRY_AFTER: float = 60.0

#: Provider status values that mean a submitted crawl will not finish.
CRAWL_TERMINAL_FAILURES: frozenset[str] = frozenset({"failed", "cancelled"})
