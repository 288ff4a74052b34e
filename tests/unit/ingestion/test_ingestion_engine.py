"""Unit tests for IngestionEngine stage handling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from takeoff.core.exceptions import (
    DocumentDownloadError,
    ExtractionTimeoutError,
    IngestionError,
    IngestionTimeoutError,
    PipelineTimeoutError,
)
from takeoff.models.job_models import ProcessingStage
from takeoff.models.takeoff_models import JobContext
from takeoff.services.ingestion.chunker import PlanChunker
from takeoff.services.ingestion.extractor import ExtractionResult, PlanExtractor
from takeoff.services.ingestion.ingestion_engine import IngestionEngine
from takeoff.services.ingestion.pdf_loader import PdfLoader
from takeoff.services.ingestion.sheet_indexer import SheetIndexer

PDF_URL = "https://plans.example.com/house.pdf"


@pytest.fixture
def loader():
    loader = MagicMock(spec=PdfLoader)
    loader.load = AsyncMock(return_value=b"%PDF-1.7")
    return loader


@pytest.fixture
def extractor():
    extractor = MagicMock(spec=PlanExtractor)
    extractor.extract = AsyncMock()
    return extractor


@pytest.fixture
def engine(loader, extractor):
    return IngestionEngine(
        loader=loader,
        extractor=extractor,
        indexer=SheetIndexer(),
        chunker=PlanChunker(),
        timeout_seconds=5,
    )


class TestIngest:
    """Successful ingestion."""

    @pytest.mark.asyncio
    async def test_ingest_produces_sheets_and_chunks(self, engine, extractor, page_factory):
        pages = [page_factory(n) for n in range(1, 8)]
        extractor.extract.return_value = ExtractionResult(pages=pages, warnings=["OCR failed for page 9"])

        document = await engine.ingest(
            "plan-1",
            PDF_URL,
            page_batch_size=5,
            start_index=3,
            job_context=JobContext(project_name="Maple Duplex"),
        )

        assert len(document.sheets) == 7
        assert [c.chunk_index for c in document.chunks] == [3, 4]
        assert all(c.source_url == PDF_URL for c in document.chunks)
        assert document.project_meta.project_name == "Maple Duplex"
        assert document.warnings == ["OCR failed for page 9"]

        status = engine.get_status("plan-1")
        assert status.stage == ProcessingStage.COMPLETED
        assert status.progress == 100
        assert status.chunks_created == 2

    @pytest.mark.asyncio
    async def test_finished_statuses_are_bounded(self, loader, extractor, page_factory):
        engine = IngestionEngine(
            loader=loader,
            extractor=extractor,
            indexer=SheetIndexer(),
            chunker=PlanChunker(),
            timeout_seconds=5,
            max_tracked_statuses=1,
        )
        extractor.extract.return_value = ExtractionResult(pages=[page_factory(1)])

        await engine.ingest("plan-1", PDF_URL)
        await engine.ingest("plan-2", PDF_URL)

        assert engine.get_status("plan-1") is None
        assert engine.get_status("plan-2").stage == ProcessingStage.COMPLETED

    @pytest.mark.asyncio
    async def test_ingest_plan_returns_summary(self, engine, extractor, page_factory):
        extractor.extract.return_value = ExtractionResult(pages=[page_factory(n) for n in range(1, 4)])

        summary = await engine.ingest_plan("plan-2", PDF_URL)

        assert summary.plan_id == "plan-2"
        assert summary.page_count == 3
        assert summary.chunk_count == 1


class TestIngestFailures:
    """Each stage failure names its stage."""

    @pytest.mark.asyncio
    async def test_download_failure(self, engine, loader):
        loader.load.side_effect = DocumentDownloadError("Failed to download PDF", url=PDF_URL)

        with pytest.raises(IngestionError) as exc_info:
            await engine.ingest("plan-1", PDF_URL)

        assert exc_info.value.stage == "downloading"
        assert engine.get_status("plan-1").stage == ProcessingStage.FAILED

    @pytest.mark.asyncio
    async def test_no_text_anywhere(self, engine, extractor, page_factory):
        extractor.extract.return_value = ExtractionResult(pages=[page_factory(1, text=""), page_factory(2, text="")])

        with pytest.raises(IngestionError) as exc_info:
            await engine.ingest("plan-1", PDF_URL)

        assert exc_info.value.stage == "extracting"
        assert "No text could be extracted" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_extraction_timeout_is_a_pipeline_timeout(self, engine, extractor):
        extractor.extract.side_effect = ExtractionTimeoutError("Text extraction timed out")

        with pytest.raises(IngestionTimeoutError) as exc_info:
            await engine.ingest("plan-1", PDF_URL)

        assert isinstance(exc_info.value, PipelineTimeoutError)
        assert exc_info.value.stage == "extracting"

    @pytest.mark.asyncio
    async def test_hard_timeout(self, loader, extractor):
        async def slow_load(source):
            await asyncio.sleep(1)
            return b"%PDF-1.7"

        loader.load.side_effect = slow_load
        engine = IngestionEngine(
            loader=loader,
            extractor=extractor,
            indexer=SheetIndexer(),
            chunker=PlanChunker(),
            timeout_seconds=0.05,
        )

        with pytest.raises(IngestionTimeoutError) as exc_info:
            await engine.ingest("plan-1", PDF_URL)

        assert exc_info.value.stage == "downloading"
        assert exc_info.value.plan_id == "plan-1"
        extractor.extract.assert_not_awaited()
