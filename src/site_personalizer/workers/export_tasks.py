"""Celery task that runs an export job in the background.

Task naming convention::

    site_personalizer.workers.export_tasks.<action>

Retry policy:
    An export mutates the database as it goes (cache rows, personalizations,
    job progress) so ``max_retries=0``.  Per-website crawl and generation
    failures are handled inside the pipeline; anything that escapes it marks
    the job ``failed`` and is re-raised so Celery records the failure.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from site_personalizer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_export(job_id: uuid.UUID) -> str:
    """Build the export service from settings and run one job.

    Returns:
        The job's final status.
    """
    from site_personalizer.core.credit_service import (  # noqa: PLC0415
        SessionScopedCreditLedger,
    )
    from site_personalizer.core.database import AsyncSessionLocal  # noqa: PLC0415
    from site_personalizer.pipeline.export_service import (  # noqa: PLC0415
        ExportService,
    )
    from site_personalizer.pipeline.factory import open_pipeline  # noqa: PLC0415
    from site_personalizer.pipeline.progress import (  # noqa: PLC0415
        ExportJobStore,
        FileUploadStore,
    )

    async with open_pipeline(AsyncSessionLocal) as pipeline:
        service = ExportService(
            jobs=ExportJobStore(AsyncSessionLocal),
            uploads=FileUploadStore(AsyncSessionLocal),
            cache=pipeline.cache,
            store=pipeline.store,
            credits=SessionScopedCreditLedger(AsyncSessionLocal),
            pipeline=pipeline,
        )
        snapshot = await service.process_export(job_id)
    return snapshot.status


@celery_app.task(
    name="site_personalizer.workers.export_tasks.process_export_task",
    bind=True,
    acks_late=True,
    max_retries=0,
)
def process_export_task(self: Any, job_id: str) -> dict[str, Any]:
    """Crawl, summarize and personalize every row of an export job.

    Runs the async pipeline via ``asyncio.run()``.  The job is marked
    ``failed`` by the pipeline itself before any exception reaches here.

    Args:
        job_id: UUID string of the ExportJob to execute.

    Returns:
        Dict with ``job_id`` and final ``status``.
    """
    logger.info(
        "export: process_export_task started for job=%s (task=%s)", job_id, self.request.id
    )
    try:
        status = asyncio.run(_run_export(uuid.UUID(job_id)))
    except Exception as exc:
        logger.error("export: process_export_task failed for job=%s: %s", job_id, exc)
        raise

    return {"job_id": job_id, "status": status}


def dispatch_export(job_id: uuid.UUID) -> None:
    """Queue *job_id* for background processing."""
    process_export_task.delay(str(job_id))
