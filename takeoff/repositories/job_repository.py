"""Repositories for takeoff jobs and their batches."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from takeoff.database.models import TakeoffBatch, TakeoffJob
from takeoff.repositories.base_repository import BaseRepository

TERMINAL_STATUSES = ("completed", "failed")


class JobRepository(BaseRepository[TakeoffJob]):
    """Repository for TakeoffJob records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TakeoffJob)

    async def create_job(self, owner_ref: Optional[str] = None) -> TakeoffJob:
        now = datetime.now(timezone.utc)
        return await self.create(
            owner_ref=owner_ref,
            status="pending",
            created_at=now,
            updated_at=now,
        )

    async def start_job(self, job_id: uuid.UUID, total_batches: int) -> Optional[TakeoffJob]:
        """Move a job to running with its final batch count."""
        now = datetime.now(timezone.utc)
        return await self.update(
            job_id,
            status="running",
            total_batches=total_batches,
            completed_batches=0,
            progress_percent=0,
            started_at=now,
            updated_at=now,
        )

    async def increment_completed(self, job_id: uuid.UUID) -> Optional[Tuple[int, int]]:
        """Count one more terminal batch in a single guarded UPDATE.

        Progress and status are derived in the same statement so concurrent
        outcomes can never interleave a stale progress value. Progress uses
        integer round-half-up, matching ``compute_progress``.

        Returns:
            (completed_batches, total_batches) after the update, or None when
            the guard rejected it (job missing or already fully counted)
        """
        completed = TakeoffJob.completed_batches + 1
        stmt = (
            update(TakeoffJob)
            .where(
                TakeoffJob.id == job_id,
                TakeoffJob.completed_batches < TakeoffJob.total_batches,
            )
            .values(
                completed_batches=completed,
                progress_percent=(200 * completed + TakeoffJob.total_batches)
                // (2 * TakeoffJob.total_batches),
                status=case(
                    (completed >= TakeoffJob.total_batches, "partial"),
                    else_="running",
                ),
                updated_at=datetime.now(timezone.utc),
            )
            .returning(TakeoffJob.completed_batches, TakeoffJob.total_batches)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            row = result.first()
        except SQLAlchemyError as e:
            raise self._fail(f"incrementing completed batches for {job_id}", e) from e

        if row is None:
            self.logger.warning(
                f"Completed-batch increment rejected for job {job_id}",
                extra={"job_id": str(job_id)}
            )
            return None
        return row[0], row[1]

    async def finalize(
        self,
        job_id: uuid.UUID,
        status: str,
        metrics: Dict[str, Any],
        final_result: Optional[Dict[str, Any]] = None,
        partial_result: Optional[Dict[str, Any]] = None,
    ) -> Optional[TakeoffJob]:
        now = datetime.now(timezone.utc)
        return await self.update(
            job_id,
            status=status,
            metrics=metrics,
            final_result=final_result,
            partial_result=partial_result,
            completed_at=now,
            updated_at=now,
        )

    async def mark_failed(self, job_id: uuid.UUID, error: str) -> Optional[TakeoffJob]:
        now = datetime.now(timezone.utc)
        return await self.update(
            job_id,
            status="failed",
            error=error,
            final_result=None,
            completed_at=now,
            updated_at=now,
        )

    async def mark_cancelled(self, job_id: uuid.UUID) -> Optional[TakeoffJob]:
        now = datetime.now(timezone.utc)
        return await self.update(
            job_id,
            cancelled=True,
            cancelled_at=now,
            updated_at=now,
        )


class BatchRepository(BaseRepository[TakeoffBatch]):
    """Repository for TakeoffBatch records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, TakeoffBatch)

    async def create_batches(
        self,
        job_id: uuid.UUID,
        batches: List[Dict[str, Any]],
    ) -> List[TakeoffBatch]:
        """Insert pending batches for a job.

        Args:
            job_id: Owning job
            batches: Dicts with segment_industry, segment_priority and chunk_ids
        """
        try:
            instances = [
                TakeoffBatch(
                    job_id=job_id,
                    segment_industry=batch["segment_industry"],
                    segment_priority=batch.get("segment_priority", 1),
                    chunk_ids=list(batch["chunk_ids"]),
                    status="pending",
                    created_at=datetime.now(timezone.utc),
                )
                for batch in batches
            ]
            self.session.add_all(instances)
            await self.session.flush()
            return instances
        except SQLAlchemyError as e:
            raise self._fail(f"creating batches for job {job_id}", e) from e

    async def mark_processing(self, batch_id: uuid.UUID) -> Optional[TakeoffBatch]:
        return await self.update(
            batch_id,
            status="processing",
            started_at=datetime.now(timezone.utc),
        )

    async def record_outcome(
        self,
        batch_id: uuid.UUID,
        status: str,
        metrics: Dict[str, Any],
        outputs: List[Dict[str, Any]],
        error: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Write a terminal outcome unless the batch already has one.

        The terminal check lives in the UPDATE itself, so of two racing
        outcomes for the same batch only one row update succeeds.

        Returns:
            True if this call recorded the outcome
        """
        stmt = (
            update(TakeoffBatch)
            .where(
                TakeoffBatch.id == batch_id,
                TakeoffBatch.status.notin_(TERMINAL_STATUSES),
            )
            .values(
                status=status,
                metrics=metrics,
                outputs=outputs,
                error=error,
                completed_at=datetime.now(timezone.utc),
            )
            .returning(TakeoffBatch.id)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            return result.first() is not None
        except SQLAlchemyError as e:
            raise self._fail(f"recording outcome for batch {batch_id}", e) from e

    async def get_by_job(self, job_id: uuid.UUID) -> Sequence[TakeoffBatch]:
        try:
            query = (
                select(TakeoffBatch)
                .where(TakeoffBatch.job_id == job_id)
                .order_by(TakeoffBatch.created_at, TakeoffBatch.id)
            )
            result = await self.session.execute(query)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise self._fail(f"retrieving batches for job {job_id}", e) from e
