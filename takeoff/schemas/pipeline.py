from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from takeoff.models.job_models import JobStatus


class StartJobResponse(BaseModel):
    """Response model for a started takeoff job."""

    job_id: str = Field(..., description="Takeoff job identifier")
    workflow_id: str = Field(..., description="Temporal workflow execution ID")
    status: JobStatus = Field(..., description="Current job status")
    message: str = Field(..., description="Human-readable status message")


class CancelJobResponse(BaseModel):
    """Response model for a cancellation request."""

    job_id: str = Field(..., description="Takeoff job identifier")
    status: JobStatus = Field(..., description="Job status after cancellation")
    cancelled: bool = Field(..., description="Whether the job is flagged cancelled")
    completed_batches: int = Field(..., description="Batches finished before cancellation")
    total_batches: int = Field(..., description="Batches scheduled for the job")


class IngestPlanRequest(BaseModel):
    """Request model for ingesting a single plan PDF."""

    source: str = Field(..., min_length=1, description="PDF URL or local path")
    page_batch_size: int = Field(default=5, ge=1, description="Maximum pages per chunk")


class IngestPlanResponse(BaseModel):
    """Response model for a finished ingestion."""

    plan_id: str = Field(..., description="Plan identifier")
    chunk_count: int = Field(..., description="Number of chunks produced")
    page_count: int = Field(..., description="Number of pages extracted")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal ingestion warnings")


class JobResultResponse(BaseModel):
    """Four-array job result, or a still-processing marker."""

    job_id: str
    status: JobStatus
    ready: bool
    progress_percent: int
    result: Optional[List[List[Dict[str, Any]]]] = Field(
        None, description="[TAKEOFF, ANALYSIS, SEGMENTS, RUN_LOG] once the job has finished"
    )
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Error type/code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details")
