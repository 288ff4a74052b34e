"""Unit tests for PipelineService.

Ingestion runs for real over a mocked loader and extractor; scoping and
batch execution run over the in-memory job store and a mocked client.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from takeoff.core.exceptions import DocumentDownloadError
from takeoff.models.job_models import JobStatus
from takeoff.models.takeoff_models import PipelineRequest
from takeoff.services.ingestion.chunker import PlanChunker
from takeoff.services.ingestion.extractor import ExtractionResult, PlanExtractor
from takeoff.services.ingestion.ingestion_engine import IngestionEngine
from takeoff.services.ingestion.pdf_loader import PdfLoader
from takeoff.services.ingestion.sheet_indexer import SheetIndexer
from takeoff.services.takeoff.batch_orchestrator import BatchOrchestrator
from takeoff.services.takeoff.job_store import InMemoryJobStore
from takeoff.services.takeoff.pipeline_service import PipelineService
from takeoff.services.takeoff.scoping_planner import ScopingPlanner

HOUSE_URL = "https://plans.example.com/house.pdf"
GARAGE_URL = "https://plans.example.com/garage.pdf"

BATCH_REPLY = json.dumps({
    "items": [{"name": "2x4 stud", "quantity": 48, "unit": "ea", "page_refs": [{"page": 1}], "cost_code": "06 11 00"}],
    "analysis": [{"type": "code_issue", "description": "Guardrail height not dimensioned", "pages": [2], "severity": "high"}],
})


@pytest.fixture
def loader():
    loader = MagicMock(spec=PdfLoader)

    async def _load(source):
        if source == GARAGE_URL:
            raise DocumentDownloadError("Failed to download PDF: 404", url=source)
        return b"%PDF-1.7"

    loader.load = AsyncMock(side_effect=_load)
    return loader


@pytest.fixture
def extractor(page_factory):
    extractor = MagicMock(spec=PlanExtractor)
    extractor.extract = AsyncMock(return_value=ExtractionResult(pages=[page_factory(n) for n in range(1, 8)]))
    return extractor


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def client(llm_client_factory):
    return llm_client_factory(replies=BATCH_REPLY)


@pytest.fixture
def service(loader, extractor, store, client):
    engine = IngestionEngine(
        loader=loader,
        extractor=extractor,
        indexer=SheetIndexer(),
        chunker=PlanChunker(),
        timeout_seconds=5,
    )
    orchestrator = BatchOrchestrator(job_store=store, clients=[client], retry_base_delay=0)
    return PipelineService(
        ingestion_engine=engine,
        planner=ScopingPlanner(),
        orchestrator=orchestrator,
        job_store=store,
    )


class TestStartPipeline:

    @pytest.mark.asyncio
    async def test_unreachable_pdf_returns_error_shape(self, service, store):
        job = await store.create_job()
        request = PipelineRequest(pdf_urls=[GARAGE_URL])

        result = await service.start_pipeline(request, job_id=job.id)

        takeoff, analysis, segments, run_log = result.as_arrays()
        assert takeoff == analysis == segments == []
        assert len(run_log) == 1
        assert run_log[0]["type"] == "error"
        assert run_log[0]["pdf"] == GARAGE_URL
        assert "Failed to download PDF" in run_log[0]["message"]
        assert (await store.get_job(job.id)).status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_duplicate_urls_are_rejected(self, service, loader):
        result = await service.start_pipeline(PipelineRequest(pdf_urls=[HOUSE_URL, HOUSE_URL]))

        assert result.takeoff == []
        assert [e.message for e in result.run_log] == ["PDF URLs must be unique"]
        loader.load.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_to_end_run(self, service, store, client):
        job = await store.create_job()
        request = PipelineRequest(pdf_urls=[HOUSE_URL], page_batch_size=5, ask_scoping_questions=False)

        result = await service.start_pipeline(request, job_id=job.id)

        assert (await store.get_job(job.id)).status == JobStatus.COMPLETE
        assert client.generate_content.await_count == 2
        assert [s.industry for s in result.segments] == ["general"]
        assert result.takeoff[0].name == "2x4 stud"
        assert result.takeoff[0].page_refs[0].pdf == HOUSE_URL
        assert len(result.analysis) == 1
        messages = [e.message for e in result.run_log]
        assert messages[0] == "Ingested 7 pages into 2 chunks"
        assert messages[1].startswith("Scoping (default): general [2 chunks]")
        assert messages[-1] == "Analysis complete. Found 1 risks and 0 missing information items."

    @pytest.mark.asyncio
    async def test_one_failed_pdf_does_not_stop_the_run(self, service, store):
        job = await store.create_job()
        request = PipelineRequest(pdf_urls=[HOUSE_URL, GARAGE_URL], ask_scoping_questions=False)

        result = await service.start_pipeline(request, job_id=job.id)

        assert result.takeoff
        errors = [e for e in result.run_log if e.type == "error"]
        assert len(errors) == 1
        assert errors[0].pdf == GARAGE_URL
        assert errors[0].message.startswith("Ingestion failed during 'downloading'")

    @pytest.mark.asyncio
    async def test_creates_a_job_when_none_given(self, service, store):
        request = PipelineRequest(pdf_urls=[HOUSE_URL], ask_scoping_questions=False, owner_ref="estimator-7")

        result = await service.start_pipeline(request)

        assert result.takeoff
        assert [j.owner_ref for j in store._jobs.values()] == ["estimator-7"]


class TestJobQueries:

    @pytest.mark.asyncio
    async def test_status_and_cancel(self, service):
        job = await service.create_job()

        cancelled = await service.cancel_job(job.id)

        assert cancelled.cancelled is True
        assert cancelled.status == JobStatus.PENDING
        assert (await service.get_job_result(job.id)).ready is False
