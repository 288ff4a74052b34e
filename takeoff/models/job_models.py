"""Job, batch and ingestion-progress models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from takeoff.models.takeoff_models import AnalysisItem, PipelineResult, TakeoffItem


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PARTIAL = "partial"
    COMPLETE = "complete"
    FAILED = "failed"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_BATCH_STATUSES = frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED})


class JobMetrics(BaseModel):
    """Cost and token usage, summed over completed batches."""

    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "JobMetrics") -> "JobMetrics":
        return JobMetrics(
            cost=round(self.cost + other.cost, 6),
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ProviderOutput(BaseModel):
    """Decoded output of one provider for one batch."""

    provider: str
    items: List[TakeoffItem] = Field(default_factory=list)
    analysis: List[AnalysisItem] = Field(default_factory=list)


class BatchError(BaseModel):
    error_type: str
    message: str


class BatchRecord(BaseModel):
    id: str
    job_id: str
    segment_industry: str
    segment_priority: int = 1
    chunk_ids: List[str] = Field(default_factory=list)
    status: BatchStatus = BatchStatus.PENDING
    metrics: JobMetrics = Field(default_factory=JobMetrics)
    error: Optional[BatchError] = None
    outputs: List[ProviderOutput] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BatchOutcome(BaseModel):
    """What a finished batch reports back to the job store."""

    batch_id: str
    status: BatchStatus
    metrics: JobMetrics = Field(default_factory=JobMetrics)
    outputs: List[ProviderOutput] = Field(default_factory=list)
    error: Optional[BatchError] = None


class JobRecord(BaseModel):
    id: str
    owner_ref: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    cancelled: bool = False
    total_batches: int = 0
    completed_batches: int = 0
    progress_percent: int = 0
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    metrics: JobMetrics = Field(default_factory=JobMetrics)
    final_result: Optional[PipelineResult] = None
    partial_result: Optional[PipelineResult] = None
    error: Optional[str] = None


class JobStatusView(BaseModel):
    """Read-only job status returned to callers."""

    job_id: str
    status: JobStatus
    cancelled: bool = False
    total_batches: int
    completed_batches: int
    failed_batches: int = 0
    progress_percent: int
    metrics: JobMetrics
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class JobResultView(BaseModel):
    """Merged result once available, otherwise the current progress."""

    job_id: str
    status: JobStatus
    ready: bool
    progress_percent: int
    result: Optional[List[List[Dict[str, Any]]]] = None
    message: Optional[str] = None


def compute_progress(completed_batches: int, total_batches: int) -> int:
    """Percentage of terminal batches, rounded half up.

    Integer arithmetic so the SQL store computes the identical value.
    """
    if total_batches <= 0:
        return 0
    return (200 * completed_batches + total_batches) // (2 * total_batches)


class ProcessingStage(str, Enum):
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    INDEXING = "indexing"
    CHUNKING = "chunking"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStatus(BaseModel):
    """Transient progress record for an in-flight ingestion."""

    plan_id: str
    stage: ProcessingStage = ProcessingStage.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = "Queued"
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    pages_processed: int = 0
    sheets_indexed: int = 0
    chunks_created: int = 0
    errors: int = 0


class IngestionSummary(BaseModel):
    """Result of the ingestion-only operation."""

    plan_id: str
    chunk_count: int
    page_count: int
    warnings: List[str] = Field(default_factory=list)
