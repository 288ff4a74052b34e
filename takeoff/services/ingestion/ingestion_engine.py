"""Ingestion engine: download, extract, index and chunk one plan PDF.

Each stage advances a ProcessingStatus record so an in-flight ingestion can
be observed. The whole run is bounded by a hard wall-clock timeout; a stage
failure surfaces as an IngestionError naming that stage.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from takeoff.core.exceptions import (
    AppError,
    DocumentDownloadError,
    ExtractionError,
    ExtractionTimeoutError,
    IngestionError,
    IngestionTimeoutError,
)
from takeoff.models.chunk_models import Chunk, ExtractedPage
from takeoff.models.job_models import IngestionSummary, ProcessingStage, ProcessingStatus
from takeoff.models.sheet_models import PlanSetGroup, ProjectMeta, SheetIndex
from takeoff.models.takeoff_models import JobContext
from takeoff.repositories.chunk_repository import ChunkRepository, SheetRepository
from takeoff.services.ingestion.chunker import PlanChunker
from takeoff.services.ingestion.extractor import PlanExtractor
from takeoff.services.ingestion.pdf_loader import PdfLoader
from takeoff.services.ingestion.sheet_indexer import SheetIndexer
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

STAGE_PROGRESS: Dict[ProcessingStage, int] = {
    ProcessingStage.QUEUED: 0,
    ProcessingStage.DOWNLOADING: 10,
    ProcessingStage.EXTRACTING: 40,
    ProcessingStage.INDEXING: 60,
    ProcessingStage.CHUNKING: 90,
    ProcessingStage.COMPLETED: 100,
}


class IngestedDocument(BaseModel):
    """Everything ingestion produced for one PDF."""

    plan_id: str
    source_url: str
    pages: List[ExtractedPage] = Field(default_factory=list)
    sheets: List[SheetIndex] = Field(default_factory=list)
    plan_sets: List[PlanSetGroup] = Field(default_factory=list)
    project_meta: ProjectMeta
    chunks: List[Chunk] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class IngestionEngine:
    """Drives a PDF through the ingestion stages."""

    def __init__(
        self,
        loader: PdfLoader,
        extractor: PlanExtractor,
        indexer: SheetIndexer,
        chunker: PlanChunker,
        timeout_seconds: int = 1200,
        include_images: bool = False,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        max_tracked_statuses: int = 100,
    ):
        """Initialize the engine.

        Args:
            loader: PDF loader
            extractor: Text/OCR/image extractor
            indexer: Sheet indexer
            chunker: Chunker
            timeout_seconds: Hard limit for one ingestion
            include_images: Whether page images are rendered and chunked
            session_maker: Optional session factory used to persist chunks
                and sheets from ``ingest_plan``
            max_tracked_statuses: How many finished status records are kept
                for ``get_status``; older ones are dropped
        """
        self.loader = loader
        self.extractor = extractor
        self.indexer = indexer
        self.chunker = chunker
        self.timeout_seconds = timeout_seconds
        self.include_images = include_images
        self.session_maker = session_maker
        self.max_tracked_statuses = max_tracked_statuses
        self._statuses: Dict[str, ProcessingStatus] = {}

    def get_status(self, plan_id: str) -> Optional[ProcessingStatus]:
        return self._statuses.get(plan_id)

    def _advance(self, status: ProcessingStatus, stage: ProcessingStage, step: str) -> None:
        status.stage = stage
        status.current_step = step
        LOGGER.info(
            f"Ingestion stage: {stage.value} - {step}",
            extra={"plan_id": status.plan_id, "stage": stage.value, "progress": status.progress}
        )

    async def ingest(
        self,
        plan_id: str,
        source: str,
        page_batch_size: int = 5,
        start_index: int = 0,
        job_context: Optional[JobContext] = None,
        force_ocr: bool = False,
    ) -> IngestedDocument:
        """Ingest one PDF under the hard timeout.

        Raises:
            IngestionTimeoutError: If the timeout expires
            IngestionError: If any stage fails
        """
        status = ProcessingStatus(plan_id=plan_id, started_at=datetime.now(timezone.utc))
        self._statuses.pop(plan_id, None)
        self._statuses[plan_id] = status

        try:
            return await asyncio.wait_for(
                self._run_stages(status, source, page_batch_size, start_index, job_context, force_ocr),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            stage = status.stage.value
            self._fail(status, f"Ingestion timed out after {self.timeout_seconds}s during '{stage}'")
            raise IngestionTimeoutError(
                f"Ingestion of plan {plan_id} timed out after {self.timeout_seconds}s during stage '{stage}'",
                stage=stage,
                plan_id=plan_id,
                original_error=e,
            ) from e
        except IngestionError as e:
            self._fail(status, e.message)
            raise
        finally:
            if status.completed_at is None and self._statuses.get(plan_id) is status:
                self._statuses.pop(plan_id)
            self._prune_statuses()

    def _prune_statuses(self) -> None:
        finished = [pid for pid, s in self._statuses.items() if s.completed_at is not None]
        for plan_id in finished[:max(0, len(self._statuses) - self.max_tracked_statuses)]:
            del self._statuses[plan_id]

    async def _run_stages(
        self,
        status: ProcessingStatus,
        source: str,
        page_batch_size: int,
        start_index: int,
        job_context: Optional[JobContext],
        force_ocr: bool,
    ) -> IngestedDocument:
        plan_id = status.plan_id

        self._advance(status, ProcessingStage.DOWNLOADING, f"Downloading {source}")
        try:
            pdf_bytes = await self.loader.load(source)
        except DocumentDownloadError as e:
            raise IngestionError(e.message, stage="downloading", plan_id=plan_id, original_error=e) from e
        status.progress = STAGE_PROGRESS[ProcessingStage.DOWNLOADING]

        self._advance(status, ProcessingStage.EXTRACTING, "Extracting text")
        try:
            extraction = await self.extractor.extract(
                pdf_bytes,
                plan_id=plan_id,
                source_url=source,
                include_images=self.include_images,
                force_ocr=force_ocr,
            )
        except ExtractionTimeoutError as e:
            raise IngestionTimeoutError(e.message, stage="extracting", plan_id=plan_id, original_error=e) from e
        except ExtractionError as e:
            raise IngestionError(e.message, stage="extracting", plan_id=plan_id, original_error=e) from e

        if not extraction.pages or not extraction.has_any_text:
            raise IngestionError(
                f"No text could be extracted from {source} (text layer and OCR both empty)",
                stage="extracting",
                plan_id=plan_id,
            )
        status.pages_processed = len(extraction.pages)
        status.errors += len(extraction.warnings)
        status.progress = STAGE_PROGRESS[ProcessingStage.EXTRACTING]

        self._advance(status, ProcessingStage.INDEXING, "Building sheet index")
        try:
            sheets = self.indexer.build_index(extraction.pages)
            plan_sets = self.indexer.group_plan_sets(sheets)
            project_meta = self.indexer.build_project_meta(
                plan_id,
                extraction.pages,
                sheets,
                project_name=job_context.project_name if job_context else None,
                location=job_context.location if job_context else None,
            )
        except (ValueError, AppError) as e:
            raise IngestionError(f"Sheet indexing failed: {e}", stage="indexing", plan_id=plan_id, original_error=e) from e
        status.sheets_indexed = len(sheets)
        status.progress = STAGE_PROGRESS[ProcessingStage.INDEXING]

        self._advance(status, ProcessingStage.CHUNKING, "Generating chunks")
        try:
            chunking = self.chunker.chunk(
                plan_id=plan_id,
                pages=extraction.pages,
                sheets=sheets,
                project_meta=project_meta,
                source_url=source,
                page_batch_size=page_batch_size,
                start_index=start_index,
                include_images=self.include_images,
            )
        except (ValueError, AppError) as e:
            raise IngestionError(f"Chunking failed: {e}", stage="chunking", plan_id=plan_id, original_error=e) from e

        if not chunking.chunks:
            raise IngestionError(f"No chunks produced for {source}", stage="chunking", plan_id=plan_id)
        status.chunks_created = len(chunking.chunks)
        status.progress = STAGE_PROGRESS[ProcessingStage.CHUNKING]

        self._advance(status, ProcessingStage.COMPLETED, "Ingestion complete")
        status.progress = STAGE_PROGRESS[ProcessingStage.COMPLETED]
        status.completed_at = datetime.now(timezone.utc)

        return IngestedDocument(
            plan_id=plan_id,
            source_url=source,
            pages=extraction.pages,
            sheets=sheets,
            plan_sets=plan_sets,
            project_meta=project_meta,
            chunks=chunking.chunks,
            warnings=extraction.warnings + chunking.warnings,
        )

    def _fail(self, status: ProcessingStatus, message: str) -> None:
        status.stage = ProcessingStage.FAILED
        status.error = message
        status.errors += 1
        status.completed_at = datetime.now(timezone.utc)
        LOGGER.error(
            f"Ingestion failed: {message}",
            extra={"plan_id": status.plan_id, "progress": status.progress}
        )

    async def ingest_plan(
        self,
        plan_id: str,
        source: str,
        page_batch_size: int = 5,
    ) -> IngestionSummary:
        """Ingestion-only operation: ingest and persist one plan.

        Raises:
            IngestionTimeoutError: If the timeout expires
            IngestionError: If any stage fails
        """
        document = await self.ingest(plan_id, source, page_batch_size=page_batch_size)

        if self.session_maker is not None:
            async with self.session_maker() as session:
                async with session.begin():
                    await SheetRepository(session).save_sheets(plan_id, document.sheets)
                    await ChunkRepository(session).save_chunks(plan_id, document.chunks)

        return IngestionSummary(
            plan_id=plan_id,
            chunk_count=len(document.chunks),
            page_count=len(document.pages),
            warnings=document.warnings,
        )
