"""Takeoff pipeline API endpoints."""

from fastapi import APIRouter, HTTPException, status
from temporalio.service import RPCError

from takeoff.core.config import settings
from takeoff.core.exceptions import AppError, JobNotFoundError, ValidationError
from takeoff.dependencies import IngestionEngineDep, PipelineServiceDep
from takeoff.models.job_models import JobStatus, JobStatusView
from takeoff.models.takeoff_models import PipelineRequest
from takeoff.schemas.pipeline import (
    CancelJobResponse,
    ErrorResponse,
    IngestPlanRequest,
    IngestPlanResponse,
    JobResultResponse,
    StartJobResponse,
)
from takeoff.temporal.client import get_temporal_client
from takeoff.temporal.workflows.takeoff_pipeline import TakeoffPipelineWorkflow
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    400: {"description": "Invalid request", "model": ErrorResponse},
    404: {"description": "Job not found", "model": ErrorResponse},
    500: {"description": "Internal server error", "model": ErrorResponse},
}


def workflow_id_for(job_id: str) -> str:
    return f"takeoff-job-{job_id}"


def to_http_error(error: AppError) -> HTTPException:
    """Map an application error to an HTTP error with the standard body."""
    if isinstance(error, ValidationError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, JobNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(
        status_code=status_code,
        detail={
            "error": type(error).__name__,
            "message": error.message,
            "detail": str(error.original_error) if error.original_error else None,
        },
    )


@router.post(
    "/jobs",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=StartJobResponse,
    responses={400: ERROR_RESPONSES[400], 500: ERROR_RESPONSES[500]},
    summary="Start takeoff job",
    description="Create a takeoff job record and start the Temporal workflow that runs the pipeline.",
    operation_id="start_takeoff_job",
)
async def start_job(request: PipelineRequest, service: PipelineServiceDep) -> StartJobResponse:
    LOGGER.info("Received takeoff job request", extra={"pdf_count": len(request.pdf_urls)})

    try:
        service.validate(request)
        job = await service.create_job(owner_ref=request.owner_ref)
    except AppError as e:
        raise to_http_error(e) from e

    try:
        temporal_client = await get_temporal_client()
        handle = await temporal_client.start_workflow(
            TakeoffPipelineWorkflow.run,
            args=[job.id, request.model_dump(mode="json")],
            id=workflow_id_for(job.id),
            task_queue=settings.temporal_task_queue,
        )
    except (RPCError, RuntimeError, OSError) as e:
        LOGGER.error(
            "Failed to start takeoff workflow",
            exc_info=True,
            extra={"job_id": job.id, "error": str(e)}
        )
        await service.job_store.mark_failed(job.id, f"Failed to start workflow: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "WorkflowStartError",
                "message": "Failed to start takeoff workflow",
                "detail": str(e),
            },
        ) from e

    LOGGER.info(
        "Takeoff workflow started",
        extra={"job_id": job.id, "workflow_id": handle.id}
    )
    return StartJobResponse(
        job_id=job.id,
        workflow_id=handle.id,
        status=job.status,
        message="Takeoff job started. Use job_id to check status.",
    )


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusView,
    responses={404: ERROR_RESPONSES[404], 500: ERROR_RESPONSES[500]},
    summary="Get takeoff job status",
    operation_id="get_takeoff_job_status",
)
async def get_job_status(job_id: str, service: PipelineServiceDep) -> JobStatusView:
    try:
        return await service.get_job_status(job_id)
    except AppError as e:
        raise to_http_error(e) from e


@router.get(
    "/jobs/{job_id}/result",
    response_model=JobResultResponse,
    responses={404: ERROR_RESPONSES[404], 500: ERROR_RESPONSES[500]},
    summary="Get takeoff job result",
    description="Return the four result arrays once the job is complete or partial.",
    operation_id="get_takeoff_job_result",
)
async def get_job_result(job_id: str, service: PipelineServiceDep) -> JobResultResponse:
    try:
        view = await service.get_job_result(job_id)
    except AppError as e:
        raise to_http_error(e) from e
    return JobResultResponse(**view.model_dump())


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=CancelJobResponse,
    responses={404: ERROR_RESPONSES[404], 500: ERROR_RESPONSES[500]},
    summary="Cancel takeoff job",
    description="Stop dispatching batches; batches already running finish but their results are discarded.",
    operation_id="cancel_takeoff_job",
)
async def cancel_job(job_id: str, service: PipelineServiceDep) -> CancelJobResponse:
    try:
        view = await service.cancel_job(job_id)
    except AppError as e:
        raise to_http_error(e) from e

    if view.status not in (JobStatus.COMPLETE, JobStatus.PARTIAL, JobStatus.FAILED):
        try:
            temporal_client = await get_temporal_client()
            await temporal_client.get_workflow_handle(workflow_id_for(job_id)).signal(TakeoffPipelineWorkflow.cancel)
        except (RPCError, RuntimeError, OSError) as e:
            # The job record is already flagged; the running activity observes it.
            LOGGER.warning(
                f"Could not signal workflow for job {job_id}: {e}",
                extra={"job_id": job_id}
            )

    return CancelJobResponse(
        job_id=view.job_id,
        status=view.status,
        cancelled=view.cancelled,
        completed_batches=view.completed_batches,
        total_batches=view.total_batches,
    )


@router.post(
    "/plans/{plan_id}/ingest",
    response_model=IngestPlanResponse,
    responses={500: ERROR_RESPONSES[500]},
    summary="Ingest a plan",
    description="Download, extract, index and chunk one PDF and persist the chunks without running inference.",
    operation_id="ingest_plan",
)
async def ingest_plan(plan_id: str, request: IngestPlanRequest, engine: IngestionEngineDep) -> IngestPlanResponse:
    try:
        summary = await engine.ingest_plan(plan_id, request.source, page_batch_size=request.page_batch_size)
    except AppError as e:
        LOGGER.error(f"Plan ingestion failed: {e.message}", extra={"plan_id": plan_id})
        raise to_http_error(e) from e

    return IngestPlanResponse(**summary.model_dump(include={"plan_id", "chunk_count", "page_count", "warnings"}))
