"""Exception hierarchy for the takeoff pipeline.

Stage-local failures (a single OCR page, a single batch) are caught and
recorded by the component that owns them. Everything below is what crosses
component boundaries.
"""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class PipelineTimeoutError(AppError):
    """Marker base for every timeout raised by the pipeline.

    Callers catch this to decide whether to retry with smaller batches.
    """
    pass


class APIClientError(AppError):
    """Raised when an external API call fails.

    Attributes:
        status_code: HTTP status of a final client error, if any
    """

    def __init__(self, message: str, original_error: Exception = None, status_code: Optional[int] = None):
        super().__init__(message, original_error)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.status_code is None or self.status_code == 429 or self.status_code >= 500


class APITimeoutError(APIClientError, PipelineTimeoutError):
    """Raised when an external API call times out."""
    pass


class DatabaseError(AppError):
    """Raised when a database operation fails."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class DocumentDownloadError(AppError):
    """Raised when a source PDF cannot be fetched or read."""

    def __init__(self, message: str, url: Optional[str] = None, original_error: Exception = None):
        super().__init__(message, original_error)
        self.url = url


class ExtractionError(AppError):
    """Raised when no text can be extracted from a document."""
    pass


class ExtractionTimeoutError(ExtractionError, PipelineTimeoutError):
    """Raised when text-layer extraction exceeds its time budget."""
    pass


class IngestionError(AppError):
    """Raised when a plan cannot be ingested.

    Attributes:
        stage: Ingestion stage that failed (downloading, extracting, ...)
        plan_id: Plan identifier for correlation
    """

    def __init__(
        self,
        message: str,
        stage: str,
        plan_id: Optional[str] = None,
        original_error: Exception = None,
    ):
        super().__init__(message, original_error)
        self.stage = stage
        self.plan_id = plan_id


class IngestionTimeoutError(IngestionError, PipelineTimeoutError):
    """Raised when ingestion of a plan exceeds the hard wall-clock limit."""
    pass


class BatchExecutionError(AppError):
    """Raised when a single inference batch fails."""

    error_type = "batch_error"


class BatchTimeoutError(BatchExecutionError, PipelineTimeoutError):
    """Raised when a single inference batch exceeds its timeout."""

    error_type = "timeout"


class JobNotFoundError(AppError):
    """Raised when a job id does not resolve to a job record."""
    pass
