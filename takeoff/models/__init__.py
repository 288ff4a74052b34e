"""Pydantic models shared across the pipeline."""

from takeoff.models.chunk_models import (
    Anchor,
    AnchorType,
    BoundingBox,
    Chunk,
    ChunkContent,
    ChunkMetadata,
    ChunkSafeguards,
    ExtractedPage,
    NoMultiplyHint,
    OverlapInfo,
    PageRange,
    QuantityRow,
    TextItem,
)
from takeoff.models.job_models import (
    BatchError,
    BatchOutcome,
    BatchRecord,
    BatchStatus,
    IngestionSummary,
    JobMetrics,
    JobRecord,
    JobResultView,
    JobStatus,
    JobStatusView,
    ProcessingStage,
    ProcessingStatus,
    ProviderOutput,
)
from takeoff.models.sheet_models import (
    PlanSetGroup,
    ProjectMeta,
    ScaleUnits,
    SheetDiscipline,
    SheetIndex,
    SheetType,
)
from takeoff.models.takeoff_models import (
    AnalysisItem,
    BatchPayload,
    JobContext,
    PageRef,
    PipelineRequest,
    PipelineResult,
    PriorSegment,
    RunLogEntry,
    ScopingPlan,
    SegmentPlan,
    SegmentResult,
    TakeoffItem,
    UnitCostPolicy,
)

__all__ = [
    "Anchor",
    "AnchorType",
    "AnalysisItem",
    "BatchError",
    "BatchOutcome",
    "BatchPayload",
    "BatchRecord",
    "BatchStatus",
    "BoundingBox",
    "Chunk",
    "ChunkContent",
    "ChunkMetadata",
    "ChunkSafeguards",
    "ExtractedPage",
    "IngestionSummary",
    "JobContext",
    "JobMetrics",
    "JobRecord",
    "JobResultView",
    "JobStatus",
    "JobStatusView",
    "NoMultiplyHint",
    "OverlapInfo",
    "PageRange",
    "PageRef",
    "PipelineRequest",
    "PipelineResult",
    "PlanSetGroup",
    "PriorSegment",
    "ProcessingStage",
    "ProcessingStatus",
    "ProjectMeta",
    "ProviderOutput",
    "QuantityRow",
    "RunLogEntry",
    "ScaleUnits",
    "ScopingPlan",
    "SegmentPlan",
    "SegmentResult",
    "SheetDiscipline",
    "SheetIndex",
    "SheetType",
    "TakeoffItem",
    "TextItem",
    "UnitCostPolicy",
]
