"""FastAPI router for export jobs.

Routes:
    POST   /exports: validate, create and enqueue an export
    GET    /exports/{job_id}/status: progress, and rows once completed
"""

from __future__ import annotations

import uuid
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from site_personalizer.core.exceptions import (
    ExportValidationError,
    InsufficientCreditError,
    NoDataError,
)
from site_personalizer.core.schemas.exports import (
    ExportCreate,
    ExportCreated,
    ExportJobRead,
)
from site_personalizer.pipeline.export_service import ExportService

logger = structlog.get_logger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependency
# ---------------------------------------------------------------------------


def get_export_service() -> ExportService:
    """Build an :class:`ExportService` that dispatches to the Celery worker.

    The service holds session factories, not sessions: every store call
    opens and closes its own session.
    """
    from site_personalizer.core.credit_service import (  # noqa: PLC0415
        SessionScopedCreditLedger,
    )
    from site_personalizer.core.database import AsyncSessionLocal  # noqa: PLC0415
    from site_personalizer.crawler.content_cache import ContentCache  # noqa: PLC0415
    from site_personalizer.personalization.store import (  # noqa: PLC0415
        PersonalizationStore,
    )
    from site_personalizer.pipeline.progress import (  # noqa: PLC0415
        ExportJobStore,
        FileUploadStore,
    )
    from site_personalizer.workers.export_tasks import dispatch_export  # noqa: PLC0415

    return ExportService(
        jobs=ExportJobStore(AsyncSessionLocal),
        uploads=FileUploadStore(AsyncSessionLocal),
        cache=ContentCache(AsyncSessionLocal),
        store=PersonalizationStore(AsyncSessionLocal),
        credits=SessionScopedCreditLedger(AsyncSessionLocal),
        dispatch=dispatch_export,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("", response_model=ExportCreated, status_code=status.HTTP_202_ACCEPTED)
async def create_export(
    payload: ExportCreate,
    service: Annotated[ExportService, Depends(get_export_service)],
) -> ExportCreated:
    """Create an export job and start it in the background.

    Raises:
        HTTPException 400: Invalid input, empty upload or no URLs in range.
        HTTPException 402: The user does not hold enough credits.
        HTTPException 404: The upload does not exist.
    """
    try:
        job_id = await service.submit_export(
            user_id=payload.user_id,
            file_id=payload.file_id,
            templates=payload.selected_templates,
            start_row=payload.start_row,
            max_rows=payload.max_rows,
            custom_prompts=payload.custom_prompts,
        )
    except (ExportValidationError, NoDataError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except InsufficientCreditError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Insufficient credits",
                "required": exc.required,
                "available": exc.available,
            },
        ) from exc
    except LookupError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    logger.info("export_submitted", job_id=str(job_id), user_id=payload.user_id)
    return ExportCreated(job_id=job_id)


@router.get("/{job_id}/status", response_model=ExportJobRead)
async def get_export_status(
    job_id: uuid.UUID,
    service: Annotated[ExportService, Depends(get_export_service)],
) -> ExportJobRead:
    """Return the current status of an export job.

    Raises:
        HTTPException 404: If the job does not exist.
    """
    try:
        snapshot = await service.get_job_status(job_id)
    except LookupError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Export job '{job_id}' not found.",
        ) from exc
    return ExportJobRead.model_validate(snapshot)
