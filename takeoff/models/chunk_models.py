"""Data models for extracted pages and inference chunks."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from takeoff.models.sheet_models import ProjectMeta, SheetDiscipline, SheetIndex, SheetType


class TextItem(BaseModel):
    """A positioned run of text on a page."""

    text: str
    x: float
    y: float
    font_size: Optional[float] = None


class ExtractedPage(BaseModel):
    """Text and optional raster reference for one PDF page."""

    page_number: int = Field(..., ge=1)
    text: str = ""
    text_items: List[TextItem] = Field(default_factory=list)
    width: Optional[float] = None
    height: Optional[float] = None
    rotation: int = 0
    has_text_layer: bool = False
    has_image: bool = False
    image_ref: Optional[str] = None
    text_source: str = Field(default="text_layer", description="text_layer | mistral_ocr | vision_ocr | none")


class BoundingBox(BaseModel):
    """Normalized (0-1) rectangle on a page."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    page: int = 1


class AnchorType(str, Enum):
    """Kind of citable location."""

    PAGE = "page"
    SHEET_ID = "sheet_id"
    GRID = "grid"
    REFERENCE = "reference"


class Anchor(BaseModel):
    """Citable source location inside a chunk."""

    anchor_id: str
    anchor_type: AnchorType
    value: str
    description: str = ""
    page_number: Optional[int] = None
    bbox: Optional[BoundingBox] = None


class QuantityRow(BaseModel):
    """Candidate quantity with a stable duplicate-detection signature."""

    item_name: str
    quantity: float
    unit: str
    location_key: str = ""
    sheet_ids: List[str] = Field(default_factory=list)
    pages: List[int] = Field(default_factory=list)
    bboxes: List[BoundingBox] = Field(default_factory=list)
    signature_hash: str = ""


class PageRange(BaseModel):
    start: int
    end: int
    pages: List[int]


class ChunkContent(BaseModel):
    text: str
    token_count: int
    image_urls: List[str] = Field(default_factory=list)


class OverlapInfo(BaseModel):
    """Neighbour links and the token counts shared with each neighbour."""

    prev_chunk_id: Optional[str] = None
    next_chunk_id: Optional[str] = None
    prev_overlap_tokens: int = 0
    next_overlap_tokens: int = 0


class ChunkMetadata(BaseModel):
    project_meta: ProjectMeta
    discipline: SheetDiscipline = SheetDiscipline.UNKNOWN
    sheet_scale_units: str = "Scale not detected"
    anchors: List[Anchor] = Field(default_factory=list)
    overlap_info: OverlapInfo = Field(default_factory=OverlapInfo)
    oversized: bool = False


class NoMultiplyHint(BaseModel):
    """Page whose quantities must not be added to placed-item counts."""

    page_no: int
    sheet_id: str
    sheet_type: SheetType
    reason: str


class ChunkSafeguards(BaseModel):
    dedupe_hash: str
    location_keys: List[str] = Field(default_factory=list)
    no_multiply_hints: List[NoMultiplyHint] = Field(default_factory=list)
    quantity_signatures: List[str] = Field(default_factory=list)


class Chunk(BaseModel):
    """Unit of work sent to a single inference call."""

    chunk_id: str
    plan_id: str
    source_url: str = ""
    chunk_index: int = Field(..., ge=0)
    page_range: PageRange
    sheet_index_subset: List[SheetIndex] = Field(default_factory=list)
    content: ChunkContent
    metadata: ChunkMetadata
    safeguards: ChunkSafeguards

    @property
    def primary_pages(self) -> List[int]:
        return self.page_range.pages
