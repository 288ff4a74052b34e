"""Data models for sheet indexing.

A ``SheetIndex`` is produced once per page by the sheet indexer and is never
modified afterwards. Plan-set groups and project metadata are derived from
the full list of sheet entries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SheetDiscipline(str, Enum):
    """Drawing discipline of a sheet."""

    ARCHITECTURAL = "architectural"
    STRUCTURAL = "structural"
    MEP = "mep"
    ELECTRICAL = "electrical"
    PLUMBING = "plumbing"
    HVAC = "hvac"
    CIVIL = "civil"
    LANDSCAPE = "landscape"
    UNKNOWN = "unknown"


class SheetType(str, Enum):
    """Kind of drawing on a sheet."""

    TITLE = "title"
    FLOOR_PLAN = "floor_plan"
    ELEVATION = "elevation"
    SECTION = "section"
    DETAIL = "detail"
    SCHEDULE = "schedule"
    LEGEND = "legend"
    SITE_PLAN = "site_plan"
    ROOF_PLAN = "roof_plan"
    OTHER = "other"


class ScaleUnits(str, Enum):
    """Measurement system implied by the sheet scale."""

    IMPERIAL = "imperial"
    METRIC = "metric"
    UNSET = "unset"


# Sheet types whose quantities summarise or reference placed items
NO_MULTIPLY_SHEET_TYPES = frozenset({SheetType.SCHEDULE, SheetType.LEGEND, SheetType.DETAIL})


class SheetIndex(BaseModel):
    """Classification of a single page of a plan set."""

    model_config = ConfigDict(frozen=True)

    sheet_id: str = Field(..., description="Sheet number, e.g. A-101 or PAGE-3")
    title: str = Field(default="", description="First meaningful line of the title block")
    discipline: SheetDiscipline = Field(default=SheetDiscipline.UNKNOWN)
    sheet_type: SheetType = Field(default=SheetType.OTHER)
    scale: Optional[str] = Field(default=None, description="Raw scale notation")
    scale_ratio: Optional[float] = Field(default=None, description="Normalized scale ratio")
    units: ScaleUnits = Field(default=ScaleUnits.UNSET)
    page_no: int = Field(..., ge=1, description="1-indexed page number")
    rotation: int = Field(default=0)
    has_text_layer: bool = Field(default=False)
    has_image: bool = Field(default=False)
    text_length: int = Field(default=0, ge=0)
    detected_keywords: List[str] = Field(default_factory=list)


class PlanSetGroup(BaseModel):
    """Cluster of sheets sharing sheet type and discipline."""

    group_id: str = Field(..., description="Grouping key: {sheet_type}_{discipline}")
    name: str
    discipline: SheetDiscipline
    sheet_type: SheetType
    scale: Optional[str] = None
    page_numbers: List[int] = Field(default_factory=list)
    sheet_ids: List[str] = Field(default_factory=list)


class ProjectMeta(BaseModel):
    """Project-level facts attached to every chunk."""

    plan_id: str
    project_name: Optional[str] = None
    location: Optional[str] = None
    title: Optional[str] = None
    total_pages: int = 0
    upload_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    detected_project_names: List[str] = Field(default_factory=list)
    detected_addresses: List[str] = Field(default_factory=list)
