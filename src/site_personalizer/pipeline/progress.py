"""Persistence for export jobs and the uploads they read from.

:class:`ExportJobStore` owns every write to ``export_jobs``.  The writes are
guarded in SQL so that the job record keeps its invariants no matter how
many writers race:

- ``processed_rows`` only grows (``GREATEST``).
- Progress, completion and failure apply only while ``status='processing'``;
  once a job is ``completed`` or ``failed`` it is frozen.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from site_personalizer.core.exceptions import StorageError
from site_personalizer.core.models.exports import ExportJob, FileUpload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportJobSnapshot:
    """Point-in-time view of an export job, as returned to pollers."""

    id: uuid.UUID
    user_id: str
    file_id: uuid.UUID
    status: str
    selected_templates: list[str]
    total_rows: int
    processed_rows: int
    website_urls: list[str] = field(default_factory=list)
    custom_prompts: dict[str, str] = field(default_factory=dict)
    start_row: int = 0
    max_rows: int | None = None
    row_data: list[dict[str, Any]] | None = None
    error_message: str | None = None
    credits_used: int = 0
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"

    @property
    def progress(self) -> float:
        """Fraction of rows processed, in ``[0, 1]``."""
        if self.total_rows <= 0:
            return 1.0 if self.is_terminal else 0.0
        return min(self.processed_rows / self.total_rows, 1.0)


def _to_snapshot(row: ExportJob) -> ExportJobSnapshot:
    return ExportJobSnapshot(
        id=row.id,
        user_id=row.user_id,
        file_id=row.file_id,
        status=row.status,
        selected_templates=list(row.selected_templates or []),
        total_rows=row.total_rows,
        processed_rows=row.processed_rows,
        website_urls=list(row.website_urls or []),
        custom_prompts=dict(row.custom_prompts or {}),
        start_row=row.start_row or 0,
        max_rows=row.max_rows,
        row_data=row.row_data,
        error_message=row.error_message,
        credits_used=row.credits_used,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


class ExportJobStore:
    """CRUD and guarded state transitions for ``export_jobs``.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        user_id: str,
        file_id: uuid.UUID,
        selected_templates: list[str],
        total_rows: int,
        website_urls: list[str],
        start_row: int = 0,
        max_rows: int | None = None,
        custom_prompts: dict[str, str] | None = None,
    ) -> uuid.UUID:
        """Insert a new ``processing`` job and return its id.

        Raises:
            StorageError: On database failure.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    insert(ExportJob)
                    .values(
                        user_id=user_id,
                        file_id=file_id,
                        selected_templates=selected_templates,
                        total_rows=total_rows,
                        website_urls=website_urls,
                        start_row=start_row,
                        max_rows=max_rows,
                        custom_prompts=custom_prompts or None,
                        processed_rows=0,
                        status="processing",
                    )
                    .returning(ExportJob.id)
                )
                job_id = result.scalar_one()
                await session.commit()
        except SQLAlchemyError as exc:
            raise StorageError("Failed To Initialize Export", table="export_jobs") from exc

        logger.info(
            "export_job: created",
            extra={"job_id": str(job_id), "user_id": user_id, "total_rows": total_rows},
        )
        return job_id

    async def get(self, job_id: uuid.UUID) -> ExportJobSnapshot | None:
        """Return a snapshot of the job, or ``None`` if it does not exist.

        Raises:
            StorageError: On database failure.
        """
        try:
            async with self._session_factory() as session:
                row = await session.get(ExportJob, job_id)
                return _to_snapshot(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read export job {job_id}: {exc}", table="export_jobs"
            ) from exc

    async def _transition(self, job_id: uuid.UUID, **values: Any) -> bool:
        """Apply *values* to the job if it is still processing.

        Returns:
            ``True`` if a row was updated.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ExportJob)
                    .where(ExportJob.id == job_id, ExportJob.status == "processing")
                    .values(**values)
                )
                await session.commit()
                return (result.rowcount or 0) > 0
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to update export job {job_id}: {exc}", table="export_jobs"
            ) from exc

    async def record_progress(self, job_id: uuid.UUID, processed: int) -> bool:
        """Raise ``processed_rows`` to *processed* if that is an increase."""
        updated = await self._transition(
            job_id, processed_rows=func.greatest(ExportJob.processed_rows, processed)
        )
        logger.debug(
            "export_job: progress",
            extra={"job_id": str(job_id), "processed": processed, "applied": updated},
        )
        return updated

    async def complete(
        self,
        job_id: uuid.UUID,
        row_data: list[dict[str, Any]],
        credits_used: int,
    ) -> bool:
        """Write the assembled rows and mark the job ``completed``."""
        updated = await self._transition(
            job_id,
            row_data=row_data,
            processed_rows=func.greatest(ExportJob.processed_rows, len(row_data)),
            status="completed",
            credits_used=credits_used,
            completed_at=func.now(),
        )
        if updated:
            logger.info(
                "export_job: completed",
                extra={"job_id": str(job_id), "rows": len(row_data)},
            )
        else:
            logger.warning(
                "export_job: completion ignored, job not processing",
                extra={"job_id": str(job_id)},
            )
        return updated

    async def fail(self, job_id: uuid.UUID, message: str) -> bool:
        """Mark the job ``failed`` with *message*."""
        updated = await self._transition(
            job_id,
            status="failed",
            error_message=message,
            completed_at=func.now(),
        )
        logger.info(
            "export_job: failed",
            extra={"job_id": str(job_id), "error": message, "applied": updated},
        )
        return updated


class FileUploadStore:
    """Read access to parsed uploads.

    Args:
        session_factory: Factory producing :class:`AsyncSession` objects.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load_rows(self, file_id: uuid.UUID) -> list[dict[str, Any]] | None:
        """Return the rows of upload *file_id*.

        Returns:
            The row list (empty when the upload holds no data), or ``None``
            if the upload does not exist.

        Raises:
            StorageError: On database failure.
        """
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(FileUpload).where(FileUpload.id == file_id)
                )
                upload = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"Failed to read upload {file_id}: {exc}", table="file_uploads"
            ) from exc
        if upload is None:
            return None
        return list(upload.data or [])
