"""Pydantic request/response schemas for the on-demand site routes."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SitesProcess(BaseModel):
    """Crawl and summarize a list of websites outside an export.

    Attributes:
        websites: Raw website URLs.
        total_rows: Only the first ``total_rows`` entries are processed.
        update_summary: Re-summarize websites that already have a summary.
    """

    websites: List[str] = Field(default_factory=list)
    total_rows: int = Field(default=10, ge=1)
    update_summary: bool = False


class SitesPersonalize(BaseModel):
    """Generate one template for already-crawled websites.

    ``prompt`` is required when ``template`` starts with ``custom_``.
    """

    user_id: str = Field(min_length=1)
    websites: List[str] = Field(default_factory=list)
    template: str = Field(min_length=1)
    prompt: Optional[str] = None


class SiteRecordRead(BaseModel):
    """One stored crawl record."""

    model_config = ConfigDict(from_attributes=True)

    url: str
    content: List[Any]
    word_count: int
    summary: Optional[str] = None
    favicon: Optional[str] = None
    is_loading: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SiteResultRead(BaseModel):
    """What happened to one website during an on-demand run."""

    url: str
    state: str
    cached: bool
    summary: Optional[str] = None
    error: Optional[str] = None


class PersonalizationResultRead(BaseModel):
    url: str
    success: bool
    error: Optional[str] = None


class CachedUrlsResponse(BaseModel):
    data: List[str]


class SiteRecordsResponse(BaseModel):
    data: List[SiteRecordRead]


class SiteResultsResponse(BaseModel):
    data: List[SiteResultRead]


class PersonalizationResultsResponse(BaseModel):
    data: List[PersonalizationResultRead]
