"""Pipeline entry point: ingestion, scoping, batch execution and merge.

``start_pipeline`` always answers with the four-array result. When the run
cannot produce anything (unreachable PDFs, no chunks, persistence down) the
result is the error shape: three empty arrays and a single error entry.
"""

from typing import Dict, List, Optional, Tuple

from takeoff.core.exceptions import AppError, IngestionError, ValidationError
from takeoff.models.chunk_models import Chunk, ExtractedPage
from takeoff.models.job_models import JobRecord, JobResultView, JobStatus, JobStatusView
from takeoff.models.takeoff_models import PipelineRequest, PipelineResult, RunLogEntry
from takeoff.services.base_service import BaseService
from takeoff.services.ingestion.ingestion_engine import IngestionEngine
from takeoff.services.takeoff.batch_orchestrator import BatchOrchestrator
from takeoff.services.takeoff.job_store import JobStore
from takeoff.services.takeoff.scoping_planner import ScopingPlanner
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class RunLog:
    """Caller-facing run log, mirrored to the module logger."""

    def __init__(self):
        self.entries: List[RunLogEntry] = []

    def _add(self, kind: str, message: str, pdf: Optional[str], page_batch: Optional[List[int]]) -> None:
        self.entries.append(RunLogEntry(type=kind, message=message, pdf=pdf, page_batch=page_batch))

    def info(self, message: str, pdf: Optional[str] = None, page_batch: Optional[List[int]] = None) -> None:
        self._add("info", message, pdf, page_batch)
        LOGGER.info(message, extra={"pdf": pdf})

    def warn(self, message: str, pdf: Optional[str] = None, page_batch: Optional[List[int]] = None) -> None:
        self._add("warn", message, pdf, page_batch)
        LOGGER.warning(message, extra={"pdf": pdf})

    def error(self, message: str, pdf: Optional[str] = None, page_batch: Optional[List[int]] = None) -> None:
        self._add("error", message, pdf, page_batch)
        LOGGER.error(message, extra={"pdf": pdf})


class PipelineService(BaseService):
    """Runs a takeoff job end to end.

    Collaborators are injected so the same service runs inside the Temporal
    activity (SQL job store) and in tests (in-memory job store).
    """

    def __init__(
        self,
        ingestion_engine: IngestionEngine,
        planner: ScopingPlanner,
        orchestrator: BatchOrchestrator,
        job_store: JobStore,
    ):
        super().__init__()
        self.ingestion_engine = ingestion_engine
        self.planner = planner
        self.orchestrator = orchestrator
        self.job_store = job_store

    def validate(self, request: PipelineRequest, job_id: Optional[str] = None):
        if not request.pdf_urls:
            raise ValidationError("At least one PDF URL is required")
        blank = [url for url in request.pdf_urls if not url or not url.strip()]
        if blank:
            raise ValidationError("PDF URLs must not be empty")
        if len(set(request.pdf_urls)) != len(request.pdf_urls):
            raise ValidationError("PDF URLs must be unique")

    async def start_pipeline(self, request: PipelineRequest, job_id: Optional[str] = None) -> PipelineResult:
        """Run the pipeline and return the four-array result.

        Args:
            request: Pipeline request
            job_id: Existing job to run under; a new job is created otherwise

        Returns:
            PipelineResult, or the error shape when the run failed outright
        """
        try:
            return await self.execute(request, job_id=job_id)
        except AppError as e:
            LOGGER.error(
                f"Pipeline failed: {e.message}",
                extra={"job_id": job_id, "error_type": type(e).__name__}
            )
            pdf = request.pdf_urls[0] if len(request.pdf_urls) == 1 else None
            return PipelineResult.failure(e.message, pdf=pdf)

    async def run(self, request: PipelineRequest, job_id: Optional[str] = None) -> PipelineResult:
        run_log = RunLog()
        if job_id is None:
            job_id = (await self.job_store.create_job(owner_ref=request.owner_ref)).id

        chunks, pages_by_pdf, failures = await self._ingest_all(job_id, request, run_log)
        if not chunks:
            if failures:
                message = "No chunks produced from any PDF: " + "; ".join(failures)
            else:
                message = "No chunks produced"
            await self.job_store.mark_failed(job_id, message)
            raise IngestionError(message, stage="chunking")

        plan = await self.planner.plan(request, chunks, pages_by_pdf)
        for warning in plan.warnings:
            run_log.warn(warning)
        run_log.info(
            f"Scoping ({plan.source}): "
            + ", ".join(f"{s.industry} [{len(s.chunk_ids)} chunks]" for s in plan.segments)
        )

        record = await self.orchestrator.run_job(job_id, request, plan, chunks, run_log=run_log.entries)
        return self._result_of(record)

    async def _ingest_all(
        self,
        job_id: str,
        request: PipelineRequest,
        run_log: RunLog,
    ) -> Tuple[List[Chunk], Dict[str, List[ExtractedPage]], List[str]]:
        chunks: List[Chunk] = []
        pages_by_pdf: Dict[str, List[ExtractedPage]] = {}
        failures: List[str] = []

        for position, url in enumerate(request.pdf_urls):
            plan_id = f"{job_id}-p{position + 1}"
            try:
                document = await self.ingestion_engine.ingest(
                    plan_id,
                    url,
                    page_batch_size=request.page_batch_size,
                    start_index=len(chunks),
                    job_context=request.job_context,
                )
            except IngestionError as e:
                failures.append(e.message)
                run_log.error(f"Ingestion failed during '{e.stage}': {e.message}", pdf=url)
                continue

            chunks.extend(document.chunks)
            pages_by_pdf[url] = document.pages
            for warning in document.warnings:
                run_log.warn(warning, pdf=url)
            run_log.info(
                f"Ingested {len(document.pages)} pages into {len(document.chunks)} chunks",
                pdf=url,
                page_batch=[page.page_number for page in document.pages],
            )

        return chunks, pages_by_pdf, failures

    @staticmethod
    def _result_of(record: JobRecord) -> PipelineResult:
        if record.status == JobStatus.COMPLETE and record.final_result is not None:
            return record.final_result
        if record.partial_result is not None:
            return record.partial_result
        return PipelineResult.failure(record.error or f"Job {record.id} finished without a result")

    async def create_job(self, owner_ref: Optional[str] = None) -> JobRecord:
        return await self.job_store.create_job(owner_ref=owner_ref)

    async def get_job_status(self, job_id: str) -> JobStatusView:
        return await self.orchestrator.get_job_status(job_id)

    async def get_job_result(self, job_id: str) -> JobResultView:
        return await self.orchestrator.get_job_result(job_id)

    async def cancel_job(self, job_id: str) -> JobStatusView:
        await self.orchestrator.cancel_job(job_id)
        return await self.orchestrator.get_job_status(job_id)
