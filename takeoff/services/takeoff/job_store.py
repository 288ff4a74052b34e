"""Durable job and batch state.

``JobStore`` is the interface the orchestrator writes through. Each batch
outcome is applied as one serialized step that records the batch and
increments the job's terminal-batch counter together:

- ``InMemoryJobStore`` serializes with an ``asyncio.Lock`` per job
- ``SqlJobStore`` relies on guarded UPDATEs: the batch row only accepts its
  first terminal outcome, and only that write bumps the job counter
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from takeoff.core.exceptions import JobNotFoundError, ValidationError
from takeoff.database.models import TakeoffBatch, TakeoffJob
from takeoff.models.job_models import (
    BatchError,
    BatchOutcome,
    BatchRecord,
    BatchStatus,
    JobMetrics,
    JobRecord,
    JobStatus,
    ProviderOutput,
    TERMINAL_BATCH_STATUSES,
    compute_progress,
)
from takeoff.models.takeoff_models import PipelineResult
from takeoff.repositories.job_repository import BatchRepository, JobRepository
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BatchSpec(BaseModel):
    """A batch to schedule: one segment over a set of chunks."""

    segment_industry: str
    segment_priority: int = 1
    chunk_ids: List[str] = Field(default_factory=list)


class JobStore(ABC):
    """Persistence interface for jobs and their batches."""

    @abstractmethod
    async def create_job(self, owner_ref: Optional[str] = None) -> JobRecord:
        pass

    @abstractmethod
    async def start_job(self, job_id: str, batches: List[BatchSpec]) -> List[BatchRecord]:
        """Create the job's batches and move it to running."""
        pass

    @abstractmethod
    async def mark_batch_processing(self, job_id: str, batch_id: str) -> None:
        pass

    @abstractmethod
    async def record_batch_outcome(self, job_id: str, outcome: BatchOutcome) -> JobRecord:
        """Persist a terminal batch outcome and count it against the job."""
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> JobRecord:
        """Raises JobNotFoundError if the job does not exist."""
        pass

    @abstractmethod
    async def get_batches(self, job_id: str) -> List[BatchRecord]:
        pass

    @abstractmethod
    async def finalize_job(
        self,
        job_id: str,
        status: JobStatus,
        metrics: JobMetrics,
        final_result: Optional[PipelineResult] = None,
        partial_result: Optional[PipelineResult] = None,
    ) -> JobRecord:
        pass

    @abstractmethod
    async def mark_failed(self, job_id: str, error: str) -> JobRecord:
        pass

    @abstractmethod
    async def cancel_job(self, job_id: str) -> JobRecord:
        pass


class InMemoryJobStore(JobStore):
    """Process-local store for tests and single-process runs."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._batches: Dict[str, Dict[str, BatchRecord]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _job(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def _lock(self, job_id: str) -> asyncio.Lock:
        self._job(job_id)
        return self._locks[job_id]

    def _batch(self, job_id: str, batch_id: str) -> BatchRecord:
        batch = self._batches.get(job_id, {}).get(batch_id)
        if batch is None:
            raise JobNotFoundError(f"Batch {batch_id} not found for job {job_id}")
        return batch

    async def create_job(self, owner_ref: Optional[str] = None) -> JobRecord:
        job_id = str(uuid.uuid4())
        job = JobRecord(id=job_id, owner_ref=owner_ref, created_at=datetime.now(timezone.utc))
        self._jobs[job_id] = job
        self._batches[job_id] = {}
        self._locks[job_id] = asyncio.Lock()
        return job.model_copy(deep=True)

    async def start_job(self, job_id: str, batches: List[BatchSpec]) -> List[BatchRecord]:
        async with self._lock(job_id):
            job = self._job(job_id)
            records = {}
            for position, spec in enumerate(batches, start=1):
                batch_id = f"{job_id}-b{position:04d}"
                records[batch_id] = BatchRecord(
                    id=batch_id,
                    job_id=job_id,
                    segment_industry=spec.segment_industry,
                    segment_priority=spec.segment_priority,
                    chunk_ids=list(spec.chunk_ids),
                )
            self._batches[job_id] = records

            job.status = JobStatus.RUNNING
            job.total_batches = len(records)
            job.completed_batches = 0
            job.progress_percent = 0
            job.started_at = datetime.now(timezone.utc)
            return [record.model_copy(deep=True) for record in records.values()]

    async def mark_batch_processing(self, job_id: str, batch_id: str) -> None:
        async with self._lock(job_id):
            batch = self._batch(job_id, batch_id)
            batch.status = BatchStatus.PROCESSING
            batch.started_at = datetime.now(timezone.utc)

    async def record_batch_outcome(self, job_id: str, outcome: BatchOutcome) -> JobRecord:
        if outcome.status not in TERMINAL_BATCH_STATUSES:
            raise ValidationError(f"Batch outcome must be terminal, got {outcome.status.value}")

        async with self._lock(job_id):
            job = self._job(job_id)
            batch = self._batch(job_id, outcome.batch_id)
            if batch.status in TERMINAL_BATCH_STATUSES:
                LOGGER.warning(
                    f"Ignoring repeated outcome for batch {outcome.batch_id}",
                    extra={"job_id": job_id, "batch_id": outcome.batch_id}
                )
                return job.model_copy(deep=True)

            batch.status = outcome.status
            batch.metrics = outcome.metrics
            batch.outputs = outcome.outputs
            batch.error = outcome.error
            batch.completed_at = datetime.now(timezone.utc)

            if job.completed_batches < job.total_batches:
                job.completed_batches += 1
                job.progress_percent = compute_progress(job.completed_batches, job.total_batches)
                if job.completed_batches >= job.total_batches:
                    job.status = JobStatus.PARTIAL
                else:
                    job.status = JobStatus.RUNNING
            return job.model_copy(deep=True)

    async def get_job(self, job_id: str) -> JobRecord:
        return self._job(job_id).model_copy(deep=True)

    async def get_batches(self, job_id: str) -> List[BatchRecord]:
        self._job(job_id)
        return [batch.model_copy(deep=True) for batch in self._batches[job_id].values()]

    async def finalize_job(
        self,
        job_id: str,
        status: JobStatus,
        metrics: JobMetrics,
        final_result: Optional[PipelineResult] = None,
        partial_result: Optional[PipelineResult] = None,
    ) -> JobRecord:
        async with self._lock(job_id):
            job = self._job(job_id)
            job.status = status
            job.metrics = metrics
            job.final_result = final_result if status == JobStatus.COMPLETE else None
            job.partial_result = partial_result
            job.completed_at = datetime.now(timezone.utc)
            return job.model_copy(deep=True)

    async def mark_failed(self, job_id: str, error: str) -> JobRecord:
        async with self._lock(job_id):
            job = self._job(job_id)
            job.status = JobStatus.FAILED
            job.error = error
            job.final_result = None
            job.completed_at = datetime.now(timezone.utc)
            return job.model_copy(deep=True)

    async def cancel_job(self, job_id: str) -> JobRecord:
        async with self._lock(job_id):
            job = self._job(job_id)
            job.cancelled = True
            job.cancelled_at = datetime.now(timezone.utc)
            return job.model_copy(deep=True)


class SqlJobStore(JobStore):
    """Job store backed by the takeoff_jobs and takeoff_batches tables.

    Every operation runs in its own short transaction, so progress is
    visible to status readers as soon as a batch outcome is recorded and
    concurrent batches never share a session.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    @staticmethod
    def _uuid(value: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(value))
        except ValueError as e:
            raise JobNotFoundError(f"Job not found: {value}", original_error=e) from e

    @staticmethod
    def _to_record(job: TakeoffJob) -> JobRecord:
        return JobRecord(
            id=str(job.id),
            owner_ref=job.owner_ref,
            status=JobStatus(job.status),
            cancelled=job.cancelled,
            total_batches=job.total_batches,
            completed_batches=job.completed_batches,
            progress_percent=job.progress_percent,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            cancelled_at=job.cancelled_at,
            metrics=JobMetrics.model_validate(job.metrics or {}),
            final_result=PipelineResult.model_validate(job.final_result) if job.final_result else None,
            partial_result=PipelineResult.model_validate(job.partial_result) if job.partial_result else None,
            error=job.error,
        )

    @staticmethod
    def _to_batch_record(batch: TakeoffBatch) -> BatchRecord:
        return BatchRecord(
            id=str(batch.id),
            job_id=str(batch.job_id),
            segment_industry=batch.segment_industry,
            segment_priority=batch.segment_priority,
            chunk_ids=list(batch.chunk_ids or []),
            status=BatchStatus(batch.status),
            metrics=JobMetrics.model_validate(batch.metrics or {}),
            error=BatchError.model_validate(batch.error) if batch.error else None,
            outputs=[ProviderOutput.model_validate(o) for o in batch.outputs or []],
            started_at=batch.started_at,
            completed_at=batch.completed_at,
        )

    async def _load(self, session: AsyncSession, job_id: str) -> TakeoffJob:
        job = await JobRepository(session).get_by_id(self._uuid(job_id))
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    async def create_job(self, owner_ref: Optional[str] = None) -> JobRecord:
        async with self.session_maker() as session, session.begin():
            job = await JobRepository(session).create_job(owner_ref=owner_ref)
            return self._to_record(job)

    async def start_job(self, job_id: str, batches: List[BatchSpec]) -> List[BatchRecord]:
        job_uuid = self._uuid(job_id)
        async with self.session_maker() as session, session.begin():
            created = await BatchRepository(session).create_batches(
                job_uuid, [spec.model_dump() for spec in batches]
            )
            if await JobRepository(session).start_job(job_uuid, total_batches=len(created)) is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return [self._to_batch_record(batch) for batch in created]

    async def mark_batch_processing(self, job_id: str, batch_id: str) -> None:
        async with self.session_maker() as session, session.begin():
            await BatchRepository(session).mark_processing(self._uuid(batch_id))

    async def record_batch_outcome(self, job_id: str, outcome: BatchOutcome) -> JobRecord:
        if outcome.status not in TERMINAL_BATCH_STATUSES:
            raise ValidationError(f"Batch outcome must be terminal, got {outcome.status.value}")

        async with self.session_maker() as session, session.begin():
            batches = BatchRepository(session)
            if await batches.get_by_id(self._uuid(outcome.batch_id)) is None:
                raise JobNotFoundError(f"Batch {outcome.batch_id} not found for job {job_id}")

            recorded = await batches.record_outcome(
                self._uuid(outcome.batch_id),
                status=outcome.status.value,
                metrics=outcome.metrics.model_dump(),
                outputs=[o.model_dump(mode="json") for o in outcome.outputs],
                error=outcome.error.model_dump() if outcome.error else None,
            )
            if recorded:
                await JobRepository(session).increment_completed(self._uuid(job_id))
            else:
                LOGGER.warning(
                    f"Ignoring repeated outcome for batch {outcome.batch_id}",
                    extra={"job_id": job_id, "batch_id": outcome.batch_id}
                )

            job = await self._load(session, job_id)
            await session.refresh(job)
            return self._to_record(job)

    async def get_job(self, job_id: str) -> JobRecord:
        async with self.session_maker() as session:
            job = await self._load(session, job_id)
            return self._to_record(job)

    async def get_batches(self, job_id: str) -> List[BatchRecord]:
        async with self.session_maker() as session:
            await self._load(session, job_id)
            rows = await BatchRepository(session).get_by_job(self._uuid(job_id))
            return [self._to_batch_record(batch) for batch in rows]

    async def finalize_job(
        self,
        job_id: str,
        status: JobStatus,
        metrics: JobMetrics,
        final_result: Optional[PipelineResult] = None,
        partial_result: Optional[PipelineResult] = None,
    ) -> JobRecord:
        complete = status == JobStatus.COMPLETE
        async with self.session_maker() as session, session.begin():
            job = await JobRepository(session).finalize(
                self._uuid(job_id),
                status=status.value,
                metrics=metrics.model_dump(),
                final_result=final_result.model_dump(mode="json") if final_result and complete else None,
                partial_result=partial_result.model_dump(mode="json") if partial_result else None,
            )
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return self._to_record(job)

    async def mark_failed(self, job_id: str, error: str) -> JobRecord:
        async with self.session_maker() as session, session.begin():
            job = await JobRepository(session).mark_failed(self._uuid(job_id), error)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return self._to_record(job)

    async def cancel_job(self, job_id: str) -> JobRecord:
        async with self.session_maker() as session, session.begin():
            job = await JobRepository(session).mark_cancelled(self._uuid(job_id))
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return self._to_record(job)
