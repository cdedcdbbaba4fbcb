"""Unit tests for ExportService submission, processing and row assembly."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import (
    CountingLimiter,
    FakeContentCache,
    FakeCrawler,
    FakeEngine,
    FakeJobStore,
    FakeLedger,
    FakePersonalizationStore,
    FakeUploads,
)
from site_personalizer.core.exceptions import (
    ExportValidationError,
    InsufficientCreditError,
    NoDataError,
    StorageError,
)
from site_personalizer.pipeline.batch import BatchPipeline
from site_personalizer.pipeline.export_service import (
    NO_PERSONALIZATION,
    NO_SUMMARY,
    ExportService,
    progress_rows,
)

FILE_ID = uuid.UUID("6a1d0f5e-4a0c-4a55-9d3e-2b1f0c7e9a11")

ROWS = [
    {"Name": "Acme", "Website": "acme.com"},
    {"Name": "Acme again", "website": "http://www.acme.com"},
    {"Name": "Bolt", "URL": "bolt.io"},
    {"Name": "No site"},
    {"Name": "Down", "url": "down.net"},
]


@pytest.fixture
def jobs() -> FakeJobStore:
    return FakeJobStore()


@pytest.fixture
def uploads() -> FakeUploads:
    return FakeUploads({FILE_ID: list(ROWS)})


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(balance=100)


@pytest.fixture
def dispatched() -> list[uuid.UUID]:
    return []


@pytest.fixture
def service(jobs, uploads, cache, store, ledger, dispatched) -> ExportService:
    crawler = FakeCrawler(cache, failing={"https://down.net"})
    pipeline = BatchPipeline(
        crawler,
        cache,
        FakeEngine(),
        store,
        CountingLimiter(max_requests=10),
        sleep=AsyncMock(),
    )
    return ExportService(
        jobs, uploads, cache, store, ledger, pipeline=pipeline, dispatch=dispatched.append
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateRequest:
    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"user_id": ""}, "user_id"),
            ({"file_id": None}, "file_id"),
            ({"templates": []}, "selected_templates"),
            ({"templates": ["intro", ""]}, "selected_templates"),
            ({"start_row": -1}, "start_row"),
            ({"max_rows": 0}, "max_rows"),
            ({"templates": ["custom_haiku"]}, "custom_prompts"),
        ],
    )
    def test_rejects_bad_input(self, kwargs, field) -> None:
        args = {
            "user_id": "user-1",
            "file_id": FILE_ID,
            "templates": ["intro"],
            "start_row": 0,
            "max_rows": None,
            "custom_prompts": None,
        }
        args.update(kwargs)

        with pytest.raises(ExportValidationError) as exc_info:
            ExportService.validate_request(**args)

        assert exc_info.value.field == field

    def test_custom_template_with_prompt_is_accepted(self) -> None:
        ExportService.validate_request(
            "user-1", FILE_ID, ["custom_haiku"], 0, None, {"custom_haiku": "Write a haiku."}
        )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmitExport:
    async def test_creates_job_and_dispatches(self, service, jobs, dispatched) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        assert dispatched == [job_id]
        job = jobs.jobs[job_id]
        assert job.status == "processing"
        assert job.total_rows == 5
        assert job.processed_rows == 0
        assert job.website_urls == ["acme.com", "http://www.acme.com", "bolt.io", "down.net"]

    async def test_rows_without_urls_are_not_targets(self, service, uploads, jobs) -> None:
        uploads.uploads[FILE_ID] = [
            {"Website": "one.com"},
            {"Name": "blank", "Website": "  "},
            {"url": "two.com"},
            {"Name": "none"},
            {"URL": "three.com"},
        ]

        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        job = jobs.jobs[job_id]
        assert job.total_rows == 5
        assert job.website_urls == ["one.com", "two.com", "three.com"]

    async def test_window_limits_total_rows(self, service, jobs) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"], start_row=1, max_rows=2)

        job = jobs.jobs[job_id]
        assert job.total_rows == 2
        assert job.website_urls == ["http://www.acme.com", "bolt.io"]

    async def test_cells_without_a_host_are_not_targets(self, service, uploads, jobs) -> None:
        uploads.uploads[FILE_ID] = [
            {"Website": "www."},
            {"Website": "one.com"},
            {"URL": "http://"},
            {"url": "https://www./"},
        ]

        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        job = jobs.jobs[job_id]
        assert job.total_rows == 4
        assert job.website_urls == ["one.com"]

    async def test_window_with_only_hostless_cells(self, service, uploads, jobs) -> None:
        uploads.uploads[FILE_ID] = [{"Website": "www."}, {"url": "http://"}]

        with pytest.raises(NoDataError, match="Nothing To Export!"):
            await service.submit_export("user-1", FILE_ID, ["intro"])
        assert jobs.jobs == {}

    async def test_custom_prompts_are_recorded(self, service, jobs) -> None:
        job_id = await service.submit_export(
            "user-1", FILE_ID, ["custom_haiku"], custom_prompts={"custom_haiku": "Write a haiku."}
        )

        assert jobs.jobs[job_id].custom_prompts == {"custom_haiku": "Write a haiku."}

    async def test_missing_upload(self, service, jobs) -> None:
        with pytest.raises(LookupError):
            await service.submit_export("user-1", uuid.uuid4(), ["intro"])
        assert jobs.jobs == {}

    async def test_empty_upload(self, service, uploads) -> None:
        uploads.uploads[FILE_ID] = []

        with pytest.raises(NoDataError, match="No file data found"):
            await service.submit_export("user-1", FILE_ID, ["intro"])

    async def test_window_without_urls(self, service, jobs) -> None:
        with pytest.raises(NoDataError, match="Nothing To Export!"):
            await service.submit_export("user-1", FILE_ID, ["intro"], start_row=3, max_rows=1)
        assert jobs.jobs == {}

    async def test_insufficient_credits(self, service, ledger, jobs, dispatched) -> None:
        ledger.balance = 3

        with pytest.raises(InsufficientCreditError) as exc_info:
            await service.submit_export("user-1", FILE_ID, ["intro"])

        assert exc_info.value.required == 5
        assert exc_info.value.available == 3
        assert jobs.jobs == {}
        assert dispatched == []

    async def test_without_dispatcher_raises(self, jobs, uploads, cache, store, ledger) -> None:
        service = ExportService(jobs, uploads, cache, store, ledger)

        with pytest.raises(RuntimeError):
            await service.submit_export("user-1", FILE_ID, ["intro"])

    async def test_dispatch_failure_marks_job_failed(
        self, jobs, uploads, cache, store, ledger
    ) -> None:
        dispatch = MagicMock(side_effect=ConnectionError("broker down"))
        service = ExportService(jobs, uploads, cache, store, ledger, dispatch=dispatch)

        with pytest.raises(ConnectionError):
            await service.submit_export("user-1", FILE_ID, ["intro"])

        (job,) = jobs.jobs.values()
        assert job.status == "failed"
        assert job.error_message == "Failed to queue export: broker down"
        assert ledger.debits == []

    async def test_status_of_unknown_job(self, service) -> None:
        with pytest.raises(LookupError):
            await service.get_job_status(uuid.uuid4())


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class TestProcessExport:
    async def test_completes_with_one_row_per_source_row(self, service, jobs, ledger) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        snapshot = await service.process_export(job_id)

        assert snapshot.status == "completed"
        assert snapshot.processed_rows == 5
        assert snapshot.progress == 1.0
        assert snapshot.credits_used == 5
        rows = snapshot.row_data
        assert [r["Name"] for r in rows] == [r["Name"] for r in ROWS]

        acme, acme_again, bolt, no_site, down = rows
        assert acme["summary"].startswith("summary for Welcome to https://acme.com")
        assert acme["intro"].startswith("intro for Welcome to https://acme.com")
        assert acme_again["summary"] == acme["summary"]
        assert bolt["intro"].startswith("intro for")
        assert no_site["summary"] == NO_SUMMARY
        assert no_site["intro"] == NO_PERSONALIZATION
        assert down["summary"] == NO_SUMMARY
        assert down["intro"] == NO_PERSONALIZATION

    async def test_progress_covers_sites_then_personalizations(self, service, jobs) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"], max_rows=2)

        await service.process_export(job_id)

        assert jobs.progress == [1, 2]
        assert jobs.jobs[job_id].processed_rows == 2

    async def test_progress_skips_failed_sites_in_second_phase(self, service, jobs) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        await service.process_export(job_id)

        # 3 distinct sites on 5 rows; only acme and bolt reach personalization.
        assert jobs.progress == [2, 5]

    async def test_progress_advances_per_batch(
        self, jobs, uploads, cache, store, ledger, dispatched
    ) -> None:
        uploads.uploads[FILE_ID] = [{"Website": f"shop{i}.com"} for i in range(4)]
        pipeline = BatchPipeline(
            FakeCrawler(cache), cache, FakeEngine(), store, CountingLimiter(max_requests=2)
        )
        service = ExportService(
            jobs, uploads, cache, store, ledger, pipeline=pipeline, dispatch=dispatched.append
        )
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        await service.process_export(job_id)

        assert jobs.progress == [1, 2, 3, 4]

    async def test_debits_once_for_assembled_rows(self, service, ledger) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        await service.process_export(job_id)

        assert ledger.debits == [("user-1", 5, f"Export job {job_id}: 5 rows processed")]
        assert ledger.balance == 95

    async def test_only_selected_templates_are_exported(self, service, store) -> None:
        store.rows[("user-1", "https://acme.com")] = {"ps": "PS, nice lamps."}
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        snapshot = await service.process_export(job_id)

        acme = snapshot.row_data[0]
        assert "ps" not in acme
        assert store.rows[("user-1", "https://acme.com")]["ps"] == "PS, nice lamps."

    async def test_storage_failure_marks_job_failed(self, service, jobs, cache, ledger) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])
        cache.fail_writes = True

        with pytest.raises(StorageError):
            await service.process_export(job_id)

        job = jobs.jobs[job_id]
        assert job.status == "failed"
        assert job.error_message == "write failed"
        assert ledger.debits == []

    async def test_terminal_job_is_not_reprocessed(self, service, jobs, ledger) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])
        await jobs.fail(job_id, "stopped")

        snapshot = await service.process_export(job_id)

        assert snapshot.status == "failed"
        assert ledger.debits == []

    async def test_debit_failure_keeps_job_completed(self, service, ledger) -> None:
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])
        ledger.balance = 1

        snapshot = await service.process_export(job_id)

        assert snapshot.status == "completed"
        assert ledger.debits == []

    async def test_requires_pipeline(self, jobs, uploads, cache, store, ledger) -> None:
        service = ExportService(jobs, uploads, cache, store, ledger, dispatch=MagicMock())
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        with pytest.raises(RuntimeError):
            await service.process_export(job_id)

    async def test_hostless_cell_gets_placeholders(self, service, uploads) -> None:
        uploads.uploads[FILE_ID] = [
            {"Name": "Acme", "Website": "acme.com"},
            {"Name": "Junk", "Website": "www."},
        ]
        job_id = await service.submit_export("user-1", FILE_ID, ["intro"])

        snapshot = await service.process_export(job_id)

        assert snapshot.status == "completed"
        acme, junk = snapshot.row_data
        assert acme["intro"].startswith("intro for")
        assert junk["summary"] == NO_SUMMARY
        assert junk["intro"] == NO_PERSONALIZATION


class TestProgressRows:
    @pytest.mark.parametrize(
        "phase, done, total, expected",
        [
            (0, 0, 4, 0),
            (0, 2, 4, 2),
            (0, 4, 4, 5),
            (1, 2, 4, 7),
            (1, 4, 4, 10),
            (1, 0, 0, 10),
            (1, 9, 4, 10),
        ],
    )
    def test_maps_phase_progress_onto_rows(self, phase, done, total, expected) -> None:
        assert progress_rows(10, phase, done, total) == expected
