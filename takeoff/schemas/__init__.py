from .health import HealthCheckResponse
from .pipeline import (
    CancelJobResponse,
    ErrorResponse,
    IngestPlanRequest,
    IngestPlanResponse,
    JobResultResponse,
    StartJobResponse,
)

__all__ = [
    "CancelJobResponse",
    "ErrorResponse",
    "HealthCheckResponse",
    "IngestPlanRequest",
    "IngestPlanResponse",
    "JobResultResponse",
    "StartJobResponse",
]
