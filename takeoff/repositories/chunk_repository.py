"""Repositories for persisted plan chunks and sheet index entries."""

from typing import List, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from takeoff.database.models import PlanChunk, PlanSheet
from takeoff.models.chunk_models import Chunk
from takeoff.models.sheet_models import SheetIndex
from takeoff.repositories.base_repository import BaseRepository


class ChunkRepository(BaseRepository[PlanChunk]):
    """Repository for PlanChunk records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PlanChunk)

    async def save_chunks(self, plan_id: str, chunks: List[Chunk]) -> List[PlanChunk]:
        """Replace the stored chunks of a plan.

        Re-ingesting a plan overwrites its previous chunk set, keeping
        (plan_id, chunk_index) unique.
        """
        try:
            await self.session.execute(delete(PlanChunk).where(PlanChunk.plan_id == plan_id))

            rows = [
                PlanChunk(
                    chunk_id=chunk.chunk_id,
                    plan_id=plan_id,
                    source_url=chunk.source_url,
                    chunk_index=chunk.chunk_index,
                    page_start=chunk.page_range.start,
                    page_end=chunk.page_range.end,
                    token_count=chunk.content.token_count,
                    content_text=chunk.content.text,
                    discipline=chunk.metadata.discipline.value,
                    dedupe_hash=chunk.safeguards.dedupe_hash,
                    payload=chunk.model_dump(mode="json"),
                )
                for chunk in chunks
            ]
            self.session.add_all(rows)
            await self.session.flush()

            self.logger.info(
                f"Saved {len(rows)} chunks for plan {plan_id}",
                extra={"plan_id": plan_id, "chunk_count": len(rows)}
            )
            return rows
        except SQLAlchemyError as e:
            raise self._fail(f"saving chunks for plan {plan_id}", e) from e

    async def get_chunks_by_plan(self, plan_id: str) -> List[Chunk]:
        """Load the chunks of a plan in chunk_index order."""
        try:
            query = (
                select(PlanChunk)
                .where(PlanChunk.plan_id == plan_id)
                .order_by(PlanChunk.chunk_index)
            )
            result = await self.session.execute(query)
            return [Chunk.model_validate(row.payload) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._fail(f"retrieving chunks for plan {plan_id}", e) from e


class SheetRepository(BaseRepository[PlanSheet]):
    """Repository for PlanSheet records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PlanSheet)

    async def save_sheets(self, plan_id: str, sheets: List[SheetIndex]) -> List[PlanSheet]:
        try:
            await self.session.execute(delete(PlanSheet).where(PlanSheet.plan_id == plan_id))

            rows = [
                PlanSheet(
                    plan_id=plan_id,
                    page_no=sheet.page_no,
                    sheet_id=sheet.sheet_id,
                    title=sheet.title or None,
                    discipline=sheet.discipline.value,
                    sheet_type=sheet.sheet_type.value,
                    scale=sheet.scale,
                    scale_ratio=sheet.scale_ratio,
                    units=sheet.units.value,
                    detected_keywords=list(sheet.detected_keywords),
                )
                for sheet in sheets
            ]
            self.session.add_all(rows)
            await self.session.flush()
            return rows
        except SQLAlchemyError as e:
            raise self._fail(f"saving sheets for plan {plan_id}", e) from e

    async def get_sheets_by_plan(self, plan_id: str) -> Sequence[PlanSheet]:
        try:
            query = select(PlanSheet).where(PlanSheet.plan_id == plan_id).order_by(PlanSheet.page_no)
            result = await self.session.execute(query)
            return result.scalars().all()
        except SQLAlchemyError as e:
            raise self._fail(f"retrieving sheets for plan {plan_id}", e) from e
