"""FastAPI router for on-demand website operations.

These run the same crawl, summary and personalization steps as an export,
but synchronously for a short list of websites and without touching credits
or export jobs.

Routes:
    GET    /sites/cache: which of the given websites have crawled content
    GET    /sites/data: stored crawl records, newest first
    POST   /sites/process: crawl and summarize websites
    POST   /sites/personalizations: generate one template for crawled websites
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from site_personalizer.core.schemas.sites import (
    CachedUrlsResponse,
    PersonalizationResultRead,
    PersonalizationResultsResponse,
    SiteRecordRead,
    SiteRecordsResponse,
    SiteResultRead,
    SiteResultsResponse,
    SitesPersonalize,
    SitesProcess,
)
from site_personalizer.core.url_utils import dedupe_urls
from site_personalizer.crawler.content_cache import ContentCache
from site_personalizer.personalization.prompts import is_custom_template
from site_personalizer.pipeline.batch import BatchPipeline

logger = structlog.get_logger(__name__)

router = APIRouter()

_NO_WEBSITES = "No websites provided"


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_content_cache() -> ContentCache:
    from site_personalizer.core.database import AsyncSessionLocal  # noqa: PLC0415

    return ContentCache(AsyncSessionLocal)


async def get_site_pipeline() -> AsyncIterator[BatchPipeline]:
    """Yield a pipeline for the duration of one request."""
    from site_personalizer.pipeline.factory import open_pipeline  # noqa: PLC0415

    async with open_pipeline() as pipeline:
        yield pipeline


def _require_websites(websites: List[str]) -> List[str]:
    urls = dedupe_urls(websites)
    if not urls:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_NO_WEBSITES)
    return urls


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/cache", response_model=CachedUrlsResponse)
async def get_cached_websites(
    cache: Annotated[ContentCache, Depends(get_content_cache)],
    websites: Annotated[List[str], Query()] = [],  # noqa: B006
) -> CachedUrlsResponse:
    """Return the normalized URLs among *websites* that have crawled content."""
    urls = _require_websites(websites)
    return CachedUrlsResponse(data=await cache.cached_urls(urls))


@router.get("/data", response_model=SiteRecordsResponse)
async def get_website_data(
    cache: Annotated[ContentCache, Depends(get_content_cache)],
    websites: Annotated[List[str], Query()] = [],  # noqa: B006
    limit: Annotated[int, Query(ge=1)] = 10,
) -> SiteRecordsResponse:
    """Return stored records for the first *limit* websites, newest first."""
    urls = _require_websites(websites)[:limit]
    records = await cache.list_records(urls)
    return SiteRecordsResponse(data=[SiteRecordRead.model_validate(r) for r in records])


@router.post("/process", response_model=SiteResultsResponse)
async def process_websites(
    payload: SitesProcess,
    pipeline: Annotated[BatchPipeline, Depends(get_site_pipeline)],
) -> SiteResultsResponse:
    """Crawl and summarize the first ``total_rows`` websites.

    Raises:
        HTTPException 400: No usable website in the payload.
    """
    queue = payload.websites[: payload.total_rows]
    _require_websites(queue)

    results = await pipeline.process_sites(queue, force_summary=payload.update_summary)

    logger.info(
        "sites_processed",
        websites=len(results),
        failed=sum(1 for r in results if not r.ok),
    )
    return SiteResultsResponse(
        data=[
            SiteResultRead(
                url=r.url, state=r.state.value, cached=r.cached, summary=r.summary, error=r.error
            )
            for r in results
        ]
    )


@router.post("/personalizations", response_model=PersonalizationResultsResponse)
async def personalize_websites(
    payload: SitesPersonalize,
    pipeline: Annotated[BatchPipeline, Depends(get_site_pipeline)],
) -> PersonalizationResultsResponse:
    """Generate ``template`` for every website that has crawled content.

    Raises:
        HTTPException 400: No usable website, or a custom template without
            a prompt.
    """
    _require_websites(payload.websites)
    if is_custom_template(payload.template) and not payload.prompt:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Custom templates need a prompt: {payload.template}",
        )

    prompts = {payload.template: payload.prompt} if payload.prompt else None
    sites = await pipeline.personalize_urls(
        payload.user_id, payload.websites, [payload.template], prompts
    )

    return PersonalizationResultsResponse(
        data=[
            PersonalizationResultRead(
                url=site.url,
                success=payload.template in site.personalizations,
                error=site.error or site.template_errors.get(payload.template),
            )
            for site in sites
        ]
    )
