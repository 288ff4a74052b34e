"""Pytest configuration and shared fixtures."""

from typing import Callable, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from takeoff.core.unified_llm import UnifiedLLMClient
from takeoff.models.chunk_models import (
    Chunk,
    ChunkContent,
    ChunkMetadata,
    ChunkSafeguards,
    ExtractedPage,
    PageRange,
)
from takeoff.models.sheet_models import ProjectMeta, SheetDiscipline, SheetIndex, SheetType
from takeoff.models.takeoff_models import PageRef, TakeoffItem
from takeoff.services.ingestion.chunker import no_multiply_hints

PLAN_URL = "https://plans.example.com/house.pdf"


@pytest.fixture
def page_factory() -> Callable[..., ExtractedPage]:
    """Build ExtractedPage records with a text layer."""

    def _make(page_number: int, text: Optional[str] = None, **overrides) -> ExtractedPage:
        if text is None:
            text = f"A-{100 + page_number}\nFLOOR PLAN LEVEL {page_number}\n" + "WALL TYPE W1 " * 20
        fields = {
            "page_number": page_number,
            "text": text,
            "has_text_layer": bool(text.strip()),
        }
        fields.update(overrides)
        return ExtractedPage(**fields)

    return _make


@pytest.fixture
def chunk_factory() -> Callable[..., Chunk]:
    """Build chunks directly, bypassing the chunker.

    ``sheet_types`` maps page numbers to sheet types; unlisted pages are
    floor plans.
    """

    def _make(
        chunk_index: int,
        pages: List[int],
        plan_id: str = "plan-1",
        source_url: str = PLAN_URL,
        discipline: SheetDiscipline = SheetDiscipline.ARCHITECTURAL,
        sheet_types: Optional[dict] = None,
        text: str = "",
    ) -> Chunk:
        sheet_types = sheet_types or {}
        sheets = [
            SheetIndex(
                sheet_id=f"A-{100 + page}",
                page_no=page,
                discipline=discipline,
                sheet_type=sheet_types.get(page, SheetType.FLOOR_PLAN),
            )
            for page in pages
        ]
        body = text or "\n".join(f"=== PAGE {page} ===" for page in pages)
        return Chunk(
            chunk_id=f"chunk_{plan_id}_{chunk_index:04d}",
            plan_id=plan_id,
            source_url=source_url,
            chunk_index=chunk_index,
            page_range=PageRange(start=min(pages), end=max(pages), pages=list(pages)),
            sheet_index_subset=sheets,
            content=ChunkContent(text=body, token_count=len(body) // 4),
            metadata=ChunkMetadata(project_meta=ProjectMeta(plan_id=plan_id), discipline=discipline),
            safeguards=ChunkSafeguards(dedupe_hash=f"hash-{chunk_index}", no_multiply_hints=no_multiply_hints(sheets)),
        )

    return _make


@pytest.fixture
def item_factory() -> Callable[..., TakeoffItem]:
    """Build takeoff items referencing pages of PLAN_URL."""

    def _make(name: str = "2x4 stud", quantity: float = 48, unit: str = "ea", pages=(1,), **overrides) -> TakeoffItem:
        fields = {
            "name": name,
            "quantity": quantity,
            "unit": unit,
            "page_refs": [PageRef(pdf=PLAN_URL, page=page) for page in pages],
            "confidence": 0.8,
        }
        fields.update(overrides)
        return TakeoffItem(**fields)

    return _make


@pytest.fixture
def llm_client_factory() -> Callable[..., MagicMock]:
    """Create mock inference clients.

    ``replies`` may be a single reply, a list consumed in order, or an
    exception instance; it is passed to ``generate_content.side_effect``.
    """

    def _make(name: str = "openrouter:openai/gpt-4o-mini", replies=None, model_family: str = "openai") -> MagicMock:
        client = MagicMock(spec=UnifiedLLMClient)
        client.name = name
        client.model_family = model_family
        client.generate_content = AsyncMock()
        if isinstance(replies, list):
            client.generate_content.side_effect = replies
        elif isinstance(replies, Exception):
            client.generate_content.side_effect = replies
        elif replies is not None:
            client.generate_content.return_value = replies
        return client

    return _make
