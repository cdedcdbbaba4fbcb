"""SQLAlchemy ORM models for export jobs and their source uploads.

The ``ExportJob`` model is the persisted progress record that the export
pipeline advances and that status-polling callers read.  ``FileUpload`` holds
the parsed spreadsheet rows an export draws from.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from site_personalizer.core.models.base import Base

#: Lifecycle states of an export job.  ``processing`` is the only
#: non-terminal state.
EXPORT_STATUSES: tuple[str, ...] = ("processing", "completed", "failed")


class FileUpload(Base):
    """A parsed spreadsheet upload.

    Attributes:
        id: UUID primary key.
        user_id: Identifier of the uploading user.
        filename: Original file name.
        data: List of row dicts (column name to cell value).
        created_at: Upload timestamp.
    """

    __tablename__ = "file_uploads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(sa.String(255), nullable=False, index=True)
    filename: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    data: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


class ExportJob(Base):
    """A batch export that augments a row window with summaries and personalizations.

    Attributes:
        id: UUID primary key.
        user_id: Owning user.
        file_id: Source :class:`FileUpload`.
        selected_templates: Template names requested for every row.
        custom_prompts: Prompt text for custom templates, keyed by name.
        start_row: First row of the requested window (0-based).
        max_rows: Window length, or ``None`` for all remaining rows.
        total_rows: Number of rows in the requested window.
        website_urls: URLs resolved from the window (rows without a URL are
            excluded, not represented by placeholders).
        processed_rows: Progress counter; never decreases.
        status: ``"processing"``, ``"completed"`` or ``"failed"``.
        row_data: Assembled export rows, ``None`` until completion.
        error_message: Failure description when ``status="failed"``.
        credits_used: Credits debited for this export.
        created_at: Submission timestamp.
        completed_at: Timestamp when the job reached a terminal state.
    """

    __tablename__ = "export_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    file_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("file_uploads.id", ondelete="CASCADE"),
        nullable=False,
    )
    selected_templates: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    custom_prompts: Mapped[Optional[dict[str, str]]] = mapped_column(
        JSONB, nullable=True
    )
    start_row: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    max_rows: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    total_rows: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    website_urls: Mapped[list[str]] = mapped_column(JSONB, nullable=False)
    processed_rows: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'processing'"),
    )
    row_data: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(
        JSONB, nullable=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    credits_used: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('processing', 'completed', 'failed')",
            name="ck_export_jobs_status",
        ),
        sa.Index("idx_export_jobs_user_id", "user_id"),
        sa.Index("idx_export_jobs_status", "status"),
    )
