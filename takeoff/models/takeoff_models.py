"""Request and result models for the takeoff pipeline.

The pipeline's external contract is a fixed four-array result:
``[TAKEOFF, ANALYSIS, SEGMENTS, RUN_LOG]``. ``PipelineResult`` carries the
four arrays as named fields so none of them can be omitted, and
``as_arrays()`` produces the positional form callers pattern-match on.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from takeoff.models.chunk_models import BoundingBox


class UnitCostPolicy(str, Enum):
    ESTIMATE = "estimate"
    LOOKUP = "lookup"
    MIXED = "mixed"


class JobContext(BaseModel):
    """Caller-supplied project context."""

    project_name: str = ""
    location: str = ""
    building_type: str = ""
    notes: Optional[str] = None


class PriorSegment(BaseModel):
    industry: str
    categories: List[str] = Field(default_factory=list)


class PipelineRequest(BaseModel):
    """Input to a pipeline run."""

    pdf_urls: List[str] = Field(..., min_length=1)
    job_context: JobContext = Field(default_factory=JobContext)
    ask_scoping_questions: bool = True
    page_batch_size: int = Field(default=5, ge=1)
    max_parallel_batches: int = Field(default=2, ge=1)
    currency: str = "USD"
    unit_cost_policy: UnitCostPolicy = UnitCostPolicy.ESTIMATE
    prior_segments: Optional[List[PriorSegment]] = None
    owner_ref: Optional[str] = Field(default=None, description="Owning entity reference for the job record")


class PageRef(BaseModel):
    pdf: str = ""
    page: int = Field(default=1, ge=1)


class TakeoffItem(BaseModel):
    """One quantity line of the takeoff."""

    name: str
    description: str = ""
    quantity: float = 0.0
    unit: str = "EA"
    unit_cost: float = 0.0
    unit_cost_source: str = "model_estimate"
    unit_cost_notes: Optional[str] = None
    location: str = ""
    location_key: Optional[str] = None
    industry: str = "other"
    category: str = ""
    subcategory: str = ""
    cost_code: str = ""
    cost_code_description: str = ""
    dimensions: str = ""
    bounding_box: Optional[BoundingBox] = None
    page_refs: List[PageRef] = Field(default_factory=list)
    confidence: float = 0.5
    notes: Optional[str] = None

    # Provenance, filled in by the orchestrator
    source_chunk_id: Optional[str] = None
    source_chunk_index: Optional[int] = None
    batch_id: Optional[str] = None
    provider: Optional[str] = None
    segment_industry: Optional[str] = None
    signature_hash: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, value: float) -> float:
        return max(0.0, min(1.0, value))

    @field_validator("name")
    @classmethod
    def require_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("takeoff item name must not be empty")
        return value


class AnalysisItem(BaseModel):
    """A code issue, drawing conflict or RFI raised against the plans."""

    type: Literal["code_issue", "conflict", "rfi"] = "conflict"
    title: Optional[str] = None
    question: Optional[str] = None
    description: str = ""
    sheet: Optional[str] = None
    pages: List[int] = Field(default_factory=list)
    bounding_box: Optional[BoundingBox] = None
    severity: Optional[Literal["low", "medium", "high", "critical"]] = None
    priority: Optional[Literal["low", "medium", "high"]] = None
    recommendation: Optional[str] = None
    confidence: float = 0.5

    source_chunk_index: Optional[int] = None
    segment_industry: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, value: float) -> float:
        return max(0.0, min(1.0, value))


class CostCodeTotal(BaseModel):
    cost_code: str
    description: str = ""
    quantity: float = 0.0
    unit: str = ""
    est_cost: float = 0.0


class SegmentSummary(BaseModel):
    totals_by_cost_code: List[CostCodeTotal] = Field(default_factory=list)
    top_risks: List[str] = Field(default_factory=list)
    pages_processed: int = 0
    pages_failed: int = 0


class SegmentResult(BaseModel):
    industry: str
    categories: List[str] = Field(default_factory=list)
    summary: SegmentSummary = Field(default_factory=SegmentSummary)
    items_count: int = 0
    analysis_count: int = 0


class RunLogEntry(BaseModel):
    type: Literal["info", "warn", "error"]
    message: str
    pdf: Optional[str] = None
    page_batch: Optional[List[int]] = None


class PipelineResult(BaseModel):
    """The four-array pipeline output."""

    takeoff: List[TakeoffItem] = Field(default_factory=list)
    analysis: List[AnalysisItem] = Field(default_factory=list)
    segments: List[SegmentResult] = Field(default_factory=list)
    run_log: List[RunLogEntry] = Field(default_factory=list)

    @classmethod
    def failure(cls, message: str, pdf: Optional[str] = None) -> "PipelineResult":
        """Error shape: three empty arrays and a single error entry."""
        return cls(run_log=[RunLogEntry(type="error", message=message, pdf=pdf)])

    def as_arrays(self) -> List[List[Dict[str, Any]]]:
        return [
            [item.model_dump(mode="json") for item in self.takeoff],
            [item.model_dump(mode="json") for item in self.analysis],
            [segment.model_dump(mode="json") for segment in self.segments],
            [entry.model_dump(mode="json", exclude_none=True) for entry in self.run_log],
        ]


class SegmentPlan(BaseModel):
    """A scoped group of chunks to analyse for one industry."""

    industry: str
    categories: List[str] = Field(default_factory=list)
    priority: int = 1
    chunk_ids: List[str] = Field(default_factory=list)


class ScopingPlan(BaseModel):
    segments: List[SegmentPlan] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
    source: Literal["prior_segments", "model", "default"] = "default"
    warnings: List[str] = Field(default_factory=list)


class BatchPayload(BaseModel):
    """Decoded model output for one batch."""

    items: List[TakeoffItem] = Field(default_factory=list)
    analysis: List[AnalysisItem] = Field(default_factory=list)


class ScopingPayload(BaseModel):
    """Decoded model output for the scoping call."""

    suggested_segments: List[PriorSegment] = Field(default_factory=list)
    questions: List[str] = Field(default_factory=list)
