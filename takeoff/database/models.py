"""SQLAlchemy models for pipeline jobs, batches, chunks and sheets."""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from takeoff.database.base import Base


class TakeoffJob(Base):
    """One ingestion and analysis run."""

    __tablename__ = "takeoff_jobs"
    __table_args__ = (
        CheckConstraint("completed_batches <= total_batches", name="ck_jobs_completed_le_total"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | running | partial | complete | failed
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    metrics: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    final_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    partial_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", nullable=False
    )

    batches: Mapped[list["TakeoffBatch"]] = relationship(
        "TakeoffBatch", back_populates="job", cascade="all, delete-orphan"
    )


class TakeoffBatch(Base):
    """One scheduled unit of inference work."""

    __tablename__ = "takeoff_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("takeoff_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    segment_industry: Mapped[str] = mapped_column(String, nullable=False)
    segment_priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    chunk_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | processing | completed | failed
    metrics: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    outputs: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    error: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", nullable=False
    )

    job: Mapped["TakeoffJob"] = relationship("TakeoffJob", back_populates="batches")


class PlanChunk(Base):
    """Persisted inference chunk of a plan."""

    __tablename__ = "plan_chunks"
    __table_args__ = (
        UniqueConstraint("plan_id", "chunk_index", name="uq_plan_chunks_plan_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    chunk_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    plan_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    source_url: Mapped[str | None] = mapped_column(String, nullable=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    page_start: Mapped[int] = mapped_column(Integer, nullable=False)
    page_end: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    discipline: Mapped[str] = mapped_column(String, nullable=False, default="unknown")
    dedupe_hash: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", nullable=False
    )


class PlanSheet(Base):
    """Persisted sheet index entry for one page of a plan."""

    __tablename__ = "plan_sheets"
    __table_args__ = (
        UniqueConstraint("plan_id", "page_no", name="uq_plan_sheets_plan_page"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    plan_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    page_no: Mapped[int] = mapped_column(Integer, nullable=False)
    sheet_id: Mapped[str] = mapped_column(String, nullable=False)
    title: Mapped[str | None] = mapped_column(String, nullable=True)
    discipline: Mapped[str] = mapped_column(String, nullable=False)
    sheet_type: Mapped[str] = mapped_column(String, nullable=False)
    scale: Mapped[str | None] = mapped_column(String, nullable=True)
    scale_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    units: Mapped[str] = mapped_column(String, nullable=False, default="unset")
    detected_keywords: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", nullable=False
    )
