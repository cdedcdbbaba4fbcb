"""SQLAlchemy ORM model for cached website crawls.

One row per normalized website URL.  The row is created on the first
successful crawl and updated in place by re-crawls and re-summarization; the
pipeline never deletes it.
"""

from __future__ import annotations

from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from site_personalizer.core.models.base import Base, TimestampMixin


class WebsiteCrawl(TimestampMixin, Base):
    """Cleaned page content and derived summary for one website.

    Invariant: ``summary`` is non-null whenever ``crawl_data`` is non-empty
    and no summarization is in flight (``is_loading`` is false).

    Attributes:
        url: Normalized URL (primary key), e.g. ``https://example.com``.
        crawl_data: Ordered list of cleaned page fragments as returned by the
            crawl provider (one dict per page, keyed by format).
        word_count: Whitespace token count of the serialized ``crawl_data``.
        summary: Generated summary text, or ``None`` until summarized.
        favicon: Favicon URL for display.
        is_loading: ``True`` while a crawl/summarization is in flight.
    """

    __tablename__ = "website_crawls"

    url: Mapped[str] = mapped_column(sa.Text, primary_key=True)
    crawl_data: Mapped[Optional[list[Any]]] = mapped_column(JSONB, nullable=True)
    word_count: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    summary: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    favicon: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    is_loading: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("false"),
    )
