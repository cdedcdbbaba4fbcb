"""Async HTTP client for the Firecrawl crawl API.

A crawl is a two-step exchange: ``POST /v1/crawl`` submits the job and
returns its id, then ``GET /v1/crawl/{id}`` is polled until the provider
reports ``completed``.  The pages come back in the final status payload.

Error handling:
- HTTP 429 on either step -> :class:`~site_personalizer.core.exceptions.CrawlRateLimitError`
  carrying the ``Retry-After`` value (or the ``retry after Ns`` hint in the
  error body).
- Other non-2xx responses, network errors, unparseable bodies, provider
  ``failed`` status and poll timeouts -> a :class:`CrawlResponse` with
  ``success=False`` and the provider's error message.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from site_personalizer.core.exceptions import CrawlRateLimitError
from site_personalizer.crawler.config import (
    CRAWL_EXCLUDE_PATHS,
    CRAWL_FORMATS,
    CRAWL_INCLUDE_PATHS,
    CRAWL_MAX_DEPTH,
    CRAWL_PAGE_LIMIT,
    CRAWL_TERMINAL_FAILURES,
    DEFAULT_RETRY_AFTER,
)

logger = logging.getLogger(__name__)

_RETRY_AFTER_RE = re.compile(r"retry after (\d+)s", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class CrawlResponse:
    """Outcome of one provider crawl.

    Attributes:
        success: ``True`` when the provider returned page data.
        data: Page fragments, one dict per page keyed by format
            (``markdown``, ``html``, ``metadata``).
        error: Provider error message when ``success`` is ``False``.
    """

    success: bool
    data: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


def parse_retry_after(message: str | None) -> float | None:
    """Return the ``N`` of a ``retry after Ns`` hint in *message*, if any."""
    if not message:
        return None
    match = _RETRY_AFTER_RE.search(message)
    return float(match.group(1)) if match else None


def build_crawl_request(url: str) -> dict[str, Any]:
    """Return the ``POST /v1/crawl`` body for *url*."""
    return {
        "url": url,
        "limit": CRAWL_PAGE_LIMIT,
        "maxDepth": CRAWL_MAX_DEPTH,
        "includePaths": list(CRAWL_INCLUDE_PATHS),
        "excludePaths": list(CRAWL_EXCLUDE_PATHS),
        "scrapeOptions": {"formats": list(CRAWL_FORMATS)},
    }


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"


def _raise_if_rate_limited(response: httpx.Response, url: str) -> None:
    if response.status_code != 429:
        return
    message = _error_message(response)
    header = response.headers.get("Retry-After")
    if header is not None and header.strip().isdigit():
        retry_after = float(header)
    else:
        retry_after = parse_retry_after(message) or DEFAULT_RETRY_AFTER
    raise CrawlRateLimitError(message, retry_after=retry_after, url=url)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FirecrawlClient:
    """Submit crawls to Firecrawl and wait for their results.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        api_key: Firecrawl bearer token.
        api_url: API base URL without a trailing slash.
        poll_interval: Seconds between status polls.
        poll_timeout: Seconds after which a pending crawl is abandoned.
        sleep: Coroutine used between polls.  Injected by tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        api_url: str = "https://api.firecrawl.dev",
        poll_interval: float = 2.0,
        poll_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._sleep = sleep

    async def crawl(self, url: str) -> CrawlResponse:
        """Crawl *url* and return the provider's page data.

        Raises:
            CrawlRateLimitError: On HTTP 429.
        """
        try:
            response = await self._client.post(
                f"{self._api_url}/v1/crawl",
                json=build_crawl_request(url),
                headers=self._headers,
            )
        except httpx.RequestError as exc:
            logger.warning("firecrawl: network error submitting %s: %s", url, exc)
            return CrawlResponse(success=False, error=f"Failed to connect to Firecrawl API: {exc}")

        _raise_if_rate_limited(response, url)
        if response.is_error:
            return CrawlResponse(success=False, error=_error_message(response))

        try:
            body = response.json()
        except ValueError as exc:
            return CrawlResponse(success=False, error=f"Invalid JSON from Firecrawl: {exc}")

        if not body.get("success") or not body.get("id"):
            return CrawlResponse(
                success=False, error=body.get("error") or "Failed to crawl website"
            )

        logger.debug("firecrawl: submitted crawl %s for %s", body["id"], url)
        return await self._wait_for_completion(body["id"], url)

    async def _wait_for_completion(self, crawl_id: str, url: str) -> CrawlResponse:
        """Poll the crawl status endpoint until the crawl finishes."""
        deadline = time.monotonic() + self._poll_timeout
        status_url = f"{self._api_url}/v1/crawl/{crawl_id}"

        while True:
            try:
                response = await self._client.get(status_url, headers=self._headers)
            except httpx.RequestError as exc:
                logger.warning("firecrawl: network error polling %s: %s", crawl_id, exc)
                return CrawlResponse(success=False, error=f"Failed to poll crawl status: {exc}")

            _raise_if_rate_limited(response, url)
            if response.is_error:
                return CrawlResponse(success=False, error=_error_message(response))

            try:
                body = response.json()
            except ValueError as exc:
                return CrawlResponse(success=False, error=f"Invalid JSON from Firecrawl: {exc}")

            status = body.get("status")
            if status == "completed":
                data = body.get("data") or []
                logger.info(
                    "firecrawl: crawl complete",
                    extra={"url": url, "crawl_id": crawl_id, "pages": len(data)},
                )
                return CrawlResponse(success=True, data=data)
            if status in CRAWL_TERMINAL_FAILURES:
                return CrawlResponse(
                    success=False, error=body.get("error") or f"Crawl {status}"
                )

            if time.monotonic() >= deadline:
                return CrawlResponse(
                    success=False,
                    error=f"Crawl {crawl_id} did not finish within {self._poll_timeout:.0f}s",
                )
            await self._sleep(self._poll_interval)
