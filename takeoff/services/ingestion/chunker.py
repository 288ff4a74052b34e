"""Token-budgeted chunking of plan pages with overlap and safeguards.

Pages are packed in order into chunks that each fit one inference call.
Every page has exactly one primary chunk. Context across a boundary is
shared by prefixing the next chunk with the tail of the previous one; the
shared token count is recorded on both neighbours so the merge stage knows
which chunks may report the same physical item.
"""

import hashlib
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from takeoff.models.chunk_models import (
    Anchor,
    AnchorType,
    Chunk,
    ChunkContent,
    ChunkMetadata,
    ChunkSafeguards,
    ExtractedPage,
    NoMultiplyHint,
    OverlapInfo,
    PageRange,
)
from takeoff.models.sheet_models import (
    NO_MULTIPLY_SHEET_TYPES,
    ProjectMeta,
    SheetDiscipline,
    SheetIndex,
    SheetType,
)
from takeoff.services.ingestion.token_counter import TokenCounter
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

QUANTITY_PATTERN = re.compile(r"(?:QTY|QUANTITY|COUNT)[\s:]+(\d+)", re.IGNORECASE)
GRID_PATTERN = re.compile(r"\bGRID(?:\s+LINE)?S?\s+([A-Z]{1,2}(?:\s*[-/]\s*\d{1,2})?|\d{1,2})\b", re.IGNORECASE)
ROOM_PATTERN = re.compile(r"\bROOM\s+(\d{2,4}[A-Z]?)\b", re.IGNORECASE)

NO_MULTIPLY_REASONS: Dict[SheetType, str] = {
    SheetType.SCHEDULE: "SCHEDULE_SHEET: Quantities here may be summaries - verify against placed items",
    SheetType.LEGEND: "LEGEND_SHEET: Symbols and counts here are references, not placed items",
    SheetType.DETAIL: "DETAIL_SHEET: Quantities here may reference parent sheets - verify for double-counting",
}


class ChunkingResult(BaseModel):
    chunks: List[Chunk] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


@dataclass
class _PageBlock:
    page: ExtractedPage
    sheet: SheetIndex
    text: str
    tokens: int


@dataclass
class _OpenChunk:
    prefix: str = ""
    prefix_tokens: int = 0
    blocks: List[_PageBlock] = field(default_factory=list)

    @property
    def tokens(self) -> int:
        return self.prefix_tokens + sum(block.tokens for block in self.blocks)


class PlanChunker:
    """Packs ordered pages into overlapping chunks.

    A chunk is closed when it is non-empty and the next page would push it
    past ``max_tokens`` or it already holds ``page_batch_size`` pages, and
    also as soon as it reaches ``target_tokens``. A single page larger than
    ``max_tokens`` becomes its own chunk flagged ``oversized``.
    """

    def __init__(
        self,
        target_tokens: int = 3000,
        min_tokens: int = 2000,
        max_tokens: int = 4000,
        overlap_percentage: float = 17.5,
        token_counter: Optional[TokenCounter] = None,
    ):
        if not min_tokens <= target_tokens <= max_tokens:
            raise ValueError("chunk token bounds must satisfy min <= target <= max")

        self.target_tokens = target_tokens
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        self.overlap_percentage = overlap_percentage
        self.overlap_cap = math.floor(target_tokens * overlap_percentage / 100)
        self.token_counter = token_counter or TokenCounter()

    def chunk(
        self,
        plan_id: str,
        pages: List[ExtractedPage],
        sheets: List[SheetIndex],
        project_meta: ProjectMeta,
        source_url: str = "",
        page_batch_size: int = 5,
        start_index: int = 0,
        include_images: bool = False,
    ) -> ChunkingResult:
        """Chunk one document.

        Args:
            plan_id: Plan the pages belong to
            pages: Extracted pages in page order
            sheets: Sheet index entries for the same pages
            project_meta: Project facts attached to every chunk
            source_url: PDF the pages came from
            page_batch_size: Maximum primary pages per chunk
            start_index: chunk_index of the first chunk, so indices stay
                contiguous across the PDFs of one request
            include_images: Whether page images travel with the chunk

        Returns:
            ChunkingResult with the linked chunks and any warnings
        """
        sheets_by_page = {sheet.page_no: sheet for sheet in sheets}
        page_batch_size = max(1, page_batch_size)

        groups: List[_OpenChunk] = []
        oversized: set = set()
        warnings: List[str] = []

        current = _OpenChunk()
        pending_tail = ""

        def close() -> None:
            nonlocal current, pending_tail
            if not current.blocks:
                return
            groups.append(current)
            pending_tail = self._overlap_tail(self._render(current), current.tokens)
            current = _OpenChunk()

        for page in pages:
            sheet = sheets_by_page.get(page.page_number) or SheetIndex(
                sheet_id=f"PAGE-{page.page_number}", page_no=page.page_number
            )
            block_text = self._page_block(page, sheet)
            block_tokens = self.token_counter.count_page_tokens(
                block_text, has_image=include_images and page.image_ref is not None
            )
            block = _PageBlock(page=page, sheet=sheet, text=block_text, tokens=block_tokens)

            if current.blocks and (
                current.tokens + block_tokens > self.max_tokens
                or len(current.blocks) >= page_batch_size
            ):
                close()

            if not current.blocks:
                self._apply_prefix(current, pending_tail, block_tokens)

            if block_tokens > self.max_tokens:
                current.blocks.append(block)
                oversized.add(len(groups))
                message = (
                    f"Page {page.page_number} of {source_url or plan_id} is oversized "
                    f"({block_tokens} tokens > {self.max_tokens}); kept as its own chunk"
                )
                warnings.append(message)
                LOGGER.warning(message, extra={"plan_id": plan_id, "page": page.page_number})
                close()
                continue

            current.blocks.append(block)
            if current.tokens >= self.target_tokens:
                close()

        close()

        chunks = [
            self._build_chunk(
                plan_id=plan_id,
                chunk_index=start_index + position,
                group=group,
                project_meta=project_meta,
                source_url=source_url,
                include_images=include_images,
                oversized=position in oversized,
            )
            for position, group in enumerate(groups)
        ]
        self._link(chunks, groups)

        LOGGER.info(
            f"Created {len(chunks)} chunks from {len(pages)} pages",
            extra={
                "plan_id": plan_id,
                "chunk_count": len(chunks),
                "start_index": start_index,
                "oversized": len(oversized),
            }
        )
        return ChunkingResult(chunks=chunks, warnings=warnings)

    def _overlap_tail(self, text: str, chunk_tokens: int) -> str:
        budget = min(int(chunk_tokens * self.overlap_percentage / 100), self.overlap_cap)
        return self.token_counter.tail_text(text.rstrip(), budget)

    def _apply_prefix(self, chunk: _OpenChunk, tail: str, first_block_tokens: int) -> None:
        """Seed a new chunk with the previous tail, trimmed to leave room for its first page."""
        if not tail:
            return
        room = max(0, self.max_tokens - first_block_tokens)
        tail_tokens = self.token_counter.count_tokens(tail)
        if tail_tokens > room:
            tail = self.token_counter.tail_text(tail, room)
            tail_tokens = self.token_counter.count_tokens(tail)
        chunk.prefix = tail
        chunk.prefix_tokens = tail_tokens

    @staticmethod
    def _page_block(page: ExtractedPage, sheet: SheetIndex) -> str:
        header = f"=== PAGE {page.page_number} ({sheet.sheet_id}: {sheet.title}) ==="
        return f"{header}\n{page.text.strip()}\n\n"

    @staticmethod
    def _render(group: _OpenChunk) -> str:
        body = "".join(block.text for block in group.blocks)
        if group.prefix:
            return f"{group.prefix}\n\n{body}"
        return body

    def _build_chunk(
        self,
        plan_id: str,
        chunk_index: int,
        group: _OpenChunk,
        project_meta: ProjectMeta,
        source_url: str,
        include_images: bool,
        oversized: bool,
    ) -> Chunk:
        text = self._render(group)
        page_numbers = [block.page.page_number for block in group.blocks]
        sheets = [block.sheet for block in group.blocks]

        image_urls: List[str] = []
        if include_images:
            image_urls = [block.page.image_ref for block in group.blocks if block.page.image_ref]

        return Chunk(
            chunk_id=f"chunk_{plan_id}_{chunk_index:04d}",
            plan_id=plan_id,
            source_url=source_url,
            chunk_index=chunk_index,
            page_range=PageRange(start=min(page_numbers), end=max(page_numbers), pages=page_numbers),
            sheet_index_subset=sheets,
            content=ChunkContent(text=text, token_count=group.tokens, image_urls=image_urls),
            metadata=ChunkMetadata(
                project_meta=project_meta,
                discipline=dominant_discipline(sheets),
                sheet_scale_units=summarize_scales(sheets),
                anchors=build_anchors(sheets, text),
                oversized=oversized,
            ),
            safeguards=ChunkSafeguards(
                dedupe_hash=dedupe_hash(page_numbers, text),
                location_keys=location_keys(sheets, text),
                no_multiply_hints=no_multiply_hints(sheets),
                quantity_signatures=quantity_signatures(text),
            ),
        )

    @staticmethod
    def _link(chunks: List[Chunk], groups: List[_OpenChunk]) -> None:
        for position in range(1, len(chunks)):
            shared = groups[position].prefix_tokens
            prev_info: OverlapInfo = chunks[position - 1].metadata.overlap_info
            info: OverlapInfo = chunks[position].metadata.overlap_info

            prev_info.next_chunk_id = chunks[position].chunk_id
            prev_info.next_overlap_tokens = shared
            info.prev_chunk_id = chunks[position - 1].chunk_id
            info.prev_overlap_tokens = shared


def dedupe_hash(page_numbers: List[int], text: str) -> str:
    signature = f"{','.join(str(p) for p in page_numbers)}:{text[:500]}"
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:16]


def dominant_discipline(sheets: List[SheetIndex]) -> SheetDiscipline:
    """Most frequent known discipline; the earliest wins a tie."""
    known = [s.discipline for s in sheets if s.discipline != SheetDiscipline.UNKNOWN]
    if not known:
        return SheetDiscipline.UNKNOWN
    counts = Counter(known)
    best = max(counts.values())
    return next(d for d in known if counts[d] == best)


def summarize_scales(sheets: List[SheetIndex]) -> str:
    scales = list(dict.fromkeys(s.scale for s in sheets if s.scale))
    return ", ".join(scales) if scales else "Scale not detected"


def _grid_refs(text: str) -> List[str]:
    return list(dict.fromkeys(re.sub(r"\s+", "", m.upper()) for m in GRID_PATTERN.findall(text)))


def _room_refs(text: str) -> List[str]:
    return list(dict.fromkeys(m.upper() for m in ROOM_PATTERN.findall(text)))


def location_keys(sheets: List[SheetIndex], text: str) -> List[str]:
    keys = [s.sheet_id for s in sheets]
    keys += [f"grid-{ref}" for ref in _grid_refs(text)]
    keys += [f"room-{ref}" for ref in _room_refs(text)]
    return list(dict.fromkeys(keys))


def quantity_signatures(text: str) -> List[str]:
    return [f"qty_{match}" for match in QUANTITY_PATTERN.findall(text)]


def no_multiply_hints(sheets: List[SheetIndex]) -> List[NoMultiplyHint]:
    return [
        NoMultiplyHint(
            page_no=sheet.page_no,
            sheet_id=sheet.sheet_id,
            sheet_type=sheet.sheet_type,
            reason=NO_MULTIPLY_REASONS[sheet.sheet_type],
        )
        for sheet in sheets
        if sheet.sheet_type in NO_MULTIPLY_SHEET_TYPES
    ]


def build_anchors(sheets: List[SheetIndex], text: str) -> List[Anchor]:
    anchors: Dict[str, Anchor] = {}
    for sheet in sheets:
        anchor_id = f"anchor_{sheet.sheet_id}"
        anchors.setdefault(anchor_id, Anchor(
            anchor_id=anchor_id,
            anchor_type=AnchorType.SHEET_ID,
            value=sheet.sheet_id,
            description=f"Sheet {sheet.sheet_id}: {sheet.title}".rstrip(": "),
            page_number=sheet.page_no,
        ))
    for sheet in sheets:
        anchor_id = f"anchor_page_{sheet.page_no}"
        anchors.setdefault(anchor_id, Anchor(
            anchor_id=anchor_id,
            anchor_type=AnchorType.PAGE,
            value=str(sheet.page_no),
            description=f"Page {sheet.page_no}",
            page_number=sheet.page_no,
        ))
    for ref in _grid_refs(text):
        anchor_id = f"anchor_grid_{ref}"
        anchors.setdefault(anchor_id, Anchor(
            anchor_id=anchor_id,
            anchor_type=AnchorType.GRID,
            value=ref,
            description=f"Grid {ref}",
        ))
    return list(anchors.values())
