"""Submit, run and report on export jobs.

``submit_export()`` does everything that can fail fast (input validation,
row loading, URL extraction, the credit check), records the job, hands it to
the background dispatcher and returns the job id.  ``process_export()`` is
what the background worker runs: it crawls and summarizes every website,
generates the selected personalizations, assembles the export rows and
completes the job.  Any exception there marks the job ``failed``.

Credit policy: availability is checked at submission for one credit per row
in the window.  The debit happens once, after the completion write, for the
number of rows in ``row_data``.  A job that fails is not debited and nothing
is refunded.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any, Mapping

from site_personalizer.core.credit_service import CreditLedger
from site_personalizer.core.exceptions import (
    ExportValidationError,
    InsufficientCreditError,
    NoDataError,
)
from site_personalizer.core.logging_config import job_id_var
from site_personalizer.core.url_utils import dedupe_urls, extract_row_url, try_normalize_url
from site_personalizer.crawler.content_cache import ContentCache
from site_personalizer.personalization.prompts import is_custom_template
from site_personalizer.personalization.store import PersonalizationStore
from site_personalizer.pipeline.batch import BatchPipeline
from site_personalizer.pipeline.progress import (
    ExportJobSnapshot,
    ExportJobStore,
    FileUploadStore,
)

logger = logging.getLogger(__name__)

#: Summary written for rows whose website never produced a crawl record.
NO_SUMMARY: str = "No Summary Found"

#: Template value written when no personalization exists for a row.
NO_PERSONALIZATION: str = "No Personalization Found"

Dispatcher = Callable[[uuid.UUID], Any]


def select_window(
    rows: list[dict[str, Any]], start_row: int, max_rows: int | None
) -> list[dict[str, Any]]:
    """Return rows ``[start_row, start_row + max_rows)`` (or to the end)."""
    if max_rows is None:
        return rows[start_row:]
    return rows[start_row : start_row + max_rows]


#: Processing phases reported on the row scale: crawl+summarize, personalize.
PROGRESS_PHASES: int = 2


def progress_rows(total_rows: int, phase: int, done: int, total: int) -> int:
    """Map progress inside *phase* onto ``0..total_rows``.

    Each phase covers an equal share of the row scale, so the reported
    count only reaches *total_rows* when the last phase finishes.
    """
    fraction = 1.0 if total <= 0 else min(done / total, 1.0)
    overall = (phase + fraction) / PROGRESS_PHASES
    return min(int(total_rows * overall), total_rows)


def _placeholder_templates(templates: list[str]) -> dict[str, str]:
    return {template: NO_PERSONALIZATION for template in templates}


def assemble_row(
    row: dict[str, Any],
    templates: list[str],
    summary: str | None,
    has_record: bool,
    personalizations: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Build one export row from the source row and what is stored for its site.

    Args:
        row: The source spreadsheet row.
        templates: Selected template names.
        summary: Stored summary for the row's website.
        has_record: Whether the website has a crawl record at all.
        personalizations: Stored personalizations for ``(user, url)``, or
            ``None`` when there is no entry.

    Returns:
        The source row plus ``summary`` and one column per selected template.
    """
    if not has_record:
        return {**row, "summary": NO_SUMMARY, **_placeholder_templates(templates)}

    values = _placeholder_templates(templates)
    if personalizations is not None:
        values.update(
            {key: value for key, value in personalizations.items() if key in templates}
        )
    return {**row, "summary": summary or NO_SUMMARY, **values}


class ExportService:
    """Front door and background runner for exports.

    Args:
        jobs: Export job persistence.
        uploads: Source row access.
        cache: Content cache, read during row assembly.
        store: Personalization store, read during row assembly.
        credits: Credit ledger.
        pipeline: Batch pipeline; required by :meth:`process_export` only.
        dispatch: Called with the new job id to start background
            processing; required by :meth:`submit_export` only.
    """

    def __init__(
        self,
        jobs: ExportJobStore,
        uploads: FileUploadStore,
        cache: ContentCache,
        store: PersonalizationStore,
        credits: CreditLedger,
        pipeline: BatchPipeline | None = None,
        dispatch: Dispatcher | None = None,
    ) -> None:
        self._jobs = jobs
        self._uploads = uploads
        self._cache = cache
        self._store = store
        self._credits = credits
        self._pipeline = pipeline
        self._dispatch = dispatch

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @staticmethod
    def validate_request(
        user_id: str,
        file_id: uuid.UUID | None,
        templates: list[str],
        start_row: int,
        max_rows: int | None,
        custom_prompts: Mapping[str, str] | None,
    ) -> None:
        """Reject malformed submissions.

        Raises:
            ExportValidationError: Naming the offending field.
        """
        if not user_id:
            raise ExportValidationError("User ID is required", field="user_id")
        if file_id is None:
            raise ExportValidationError("File ID is required", field="file_id")
        if not templates or any(not t for t in templates):
            raise ExportValidationError(
                "Selected templates are required", field="selected_templates"
            )
        if start_row < 0:
            raise ExportValidationError("start_row must be >= 0", field="start_row")
        if max_rows is not None and max_rows < 1:
            raise ExportValidationError("max_rows must be >= 1", field="max_rows")
        prompts = custom_prompts or {}
        missing = [t for t in templates if is_custom_template(t) and not prompts.get(t)]
        if missing:
            raise ExportValidationError(
                f"Custom templates need a prompt: {', '.join(missing)}",
                field="custom_prompts",
            )

    async def submit_export(
        self,
        user_id: str,
        file_id: uuid.UUID,
        templates: list[str],
        start_row: int = 0,
        max_rows: int | None = None,
        custom_prompts: Mapping[str, str] | None = None,
    ) -> uuid.UUID:
        """Create an export job and start it in the background.

        Returns:
            The new job's id.

        Raises:
            ExportValidationError: Malformed input.
            LookupError: The upload does not exist.
            NoDataError: The upload is empty or no row in the window has a
                usable URL.
            InsufficientCreditError: The user cannot pay for the window.
            StorageError: The job could not be recorded.
            Exception: Whatever the dispatcher raised, after the job has been
                marked ``failed``.
        """
        self.validate_request(user_id, file_id, templates, start_row, max_rows, custom_prompts)

        rows = await self._uploads.load_rows(file_id)
        if rows is None:
            raise LookupError(f"Upload {file_id} not found")
        if not rows:
            raise NoDataError("No file data found")

        window = select_window(rows, start_row, max_rows)
        website_urls = [
            raw
            for raw in (extract_row_url(row) for row in window)
            if try_normalize_url(raw) is not None
        ]
        if not website_urls:
            raise NoDataError("Nothing To Export!")

        required = len(window)
        if not await self._credits.check_available(user_id, required):
            available = await self._credits.get_balance(user_id)
            raise InsufficientCreditError(
                required=required, available=available, user_id=user_id
            )

        job_id = await self._jobs.create(
            user_id=user_id,
            file_id=file_id,
            selected_templates=list(templates),
            total_rows=len(window),
            website_urls=website_urls,
            start_row=start_row,
            max_rows=max_rows,
            custom_prompts=dict(custom_prompts or {}),
        )

        if self._dispatch is None:
            raise RuntimeError("ExportService was built without a dispatcher")
        try:
            self._dispatch(job_id)
        except Exception as exc:
            logger.exception("export: dispatch failed", extra={"job_id": str(job_id)})
            await self._jobs.fail(job_id, f"Failed to queue export: {exc}")
            raise

        logger.info(
            "export: submitted",
            extra={
                "job_id": str(job_id),
                "user_id": user_id,
                "rows": len(window),
                "urls": len(website_urls),
            },
        )
        return job_id

    async def get_job_status(self, job_id: uuid.UUID) -> ExportJobSnapshot:
        """Return the current snapshot of *job_id*.

        Raises:
            LookupError: If the job does not exist.
        """
        snapshot = await self._jobs.get(job_id)
        if snapshot is None:
            raise LookupError(f"Export job {job_id} not found")
        return snapshot

    # ------------------------------------------------------------------
    # Background processing
    # ------------------------------------------------------------------

    async def assemble_rows(
        self,
        user_id: str,
        window: list[dict[str, Any]],
        templates: list[str],
    ) -> list[dict[str, Any]]:
        """Build the export rows for *window* from what is stored now."""
        row_urls: list[str | None] = []
        for row in window:
            raw = extract_row_url(row)
            row_urls.append(try_normalize_url(raw))

        distinct = sorted({url for url in row_urls if url})
        records = await self._cache.get_records(distinct)
        personalizations = await self._store.get_many(user_id, distinct)

        assembled: list[dict[str, Any]] = []
        for row, url in zip(window, row_urls):
            record = records.get(url) if url else None
            stored = personalizations.get(url) if url else None
            assembled.append(
                assemble_row(
                    row,
                    templates,
                    summary=record.summary if record else None,
                    has_record=record is not None,
                    personalizations=stored.personalizations if stored else None,
                )
            )
        return assembled

    async def process_export(self, job_id: uuid.UUID) -> ExportJobSnapshot:
        """Run an export job to completion.

        Returns:
            The job snapshot after completion.

        Raises:
            LookupError: If the job does not exist.
            Exception: Whatever stopped the job, after it has been marked
                ``failed``.
        """
        pipeline = self._pipeline
        if pipeline is None:
            raise RuntimeError("ExportService was built without a pipeline")

        token = job_id_var.set(str(job_id))
        try:
            job = await self.get_job_status(job_id)
            if job.is_terminal:
                logger.info("export: job already %s, skipping", job.status)
                return job

            try:
                await self._run(job, pipeline)
            except Exception as exc:
                logger.exception("export: job failed")
                await self._jobs.fail(job_id, str(exc) or exc.__class__.__name__)
                raise

            return await self.get_job_status(job_id)
        finally:
            job_id_var.reset(token)

    async def _run(self, job: ExportJobSnapshot, pipeline: BatchPipeline) -> None:
        rows = await self._uploads.load_rows(job.file_id)
        if not rows:
            raise NoDataError("No file data found")
        window = select_window(rows, job.start_row, job.max_rows)

        async def report(phase: int, done: int, total: int) -> None:
            processed = progress_rows(job.total_rows, phase, done, total)
            await self._jobs.record_progress(job.id, processed)

        site_total = len(dedupe_urls(job.website_urls))

        async def on_sites(done: int) -> None:
            await report(0, done, site_total)

        sites = await pipeline.process_sites(job.website_urls, on_sites)

        eligible_total = sum(1 for site in sites if site.has_content)

        async def on_personalized(done: int) -> None:
            await report(1, done, eligible_total)

        await pipeline.process_personalizations(
            job.user_id,
            sites,
            job.selected_templates,
            job.custom_prompts,
            on_progress=on_personalized,
        )

        row_data = await self.assemble_rows(job.user_id, window, job.selected_templates)
        row_count = len(row_data)
        if not await self._jobs.complete(job.id, row_data, credits_used=row_count):
            return

        reason = f"Export job {job.id}: {row_count} rows processed"
        if not await self._credits.debit(job.user_id, row_count, reason):
            logger.warning(
                "export: debit failed after completion",
                extra={"user_id": job.user_id, "amount": row_count},
            )

        failed = sum(1 for site in sites if not site.ok)
        logger.info(
            "export: completed",
            extra={"rows": row_count, "sites": len(sites), "failed_sites": failed},
        )
