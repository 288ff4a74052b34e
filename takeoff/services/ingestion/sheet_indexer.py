"""Rule-based sheet indexer for construction drawing sets.

Each page is classified from its text with keyword patterns and scale
notations, without ML models, so every decision can be traced back to the
pattern that produced it. Pages that match nothing are indexed as
``discipline=unknown`` / ``sheet_type=other`` and still flow into chunking.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from takeoff.models.chunk_models import ExtractedPage
from takeoff.models.sheet_models import (
    PlanSetGroup,
    ProjectMeta,
    ScaleUnits,
    SheetDiscipline,
    SheetIndex,
    SheetType,
)
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

HEADER_LINES = 5

SHEET_ID_PATTERN = re.compile(r"\b([A-Z]{1,3})\s*[-.]?\s*(\d{1,4})\b")

IMPERIAL_FRACTION_SCALE = re.compile(
    r"(\d+)\s*/\s*(\d+)\s*\"?\s*=\s*(\d+)\s*'\s*(?:-\s*(\d+)\s*\"?)?"
)
IMPERIAL_WHOLE_SCALE = re.compile(r"\b(\d+)\s*\"\s*=\s*(\d+)\s*'\s*(?:-\s*(\d+)\s*\"?)?")
METRIC_SCALE = re.compile(r"\b1\s*:\s*(\d+)\b")

PROJECT_NAME_PATTERN = re.compile(r"PROJECT[ \t:]+([A-Z][^\n]+)", re.IGNORECASE)
ADDRESS_PATTERN = re.compile(
    r"\d+\s+[A-Z][A-Za-z\s]+(?:ST|STREET|AVE|AVENUE|RD|ROAD|BLVD|BOULEVARD|DR|DRIVE|LN|LANE)"
    r"[\s,]*[A-Z]{2}\s+\d{5}",
    re.IGNORECASE,
)

HVAC_VOCABULARY = re.compile(r"\b(HVAC|DUCT(WORK)?|DIFFUSERS?|AHU|RTU|AIR\s+HANDL\w*|HEATING|VENTILATION)\b")

META_PAGES = 3


class SheetIndexer:
    """Classifies pages into SheetIndex entries and plan-set groups."""

    # Checked in order; the first matching type wins
    SHEET_TYPE_PATTERNS: List[Tuple[SheetType, List[str]]] = [
        (SheetType.TITLE, [
            r"\bTITLE\s+SHEET\b",
            r"\bCOVER(\s+SHEET)?\b",
            r"\b(SHEET|DRAWING)\s+INDEX\b",
        ]),
        (SheetType.FLOOR_PLAN, [r"\bFLOOR\s*PLANS?\b"]),
        (SheetType.ELEVATION, [r"\bELEVATIONS?\b", r"\bELEV\b"]),
        (SheetType.SECTION, [r"\bSECTIONS?\b"]),
        (SheetType.DETAIL, [r"\bDETAILS?\b", r"\bDTLS?\b", r"\bDET\b"]),
        (SheetType.SCHEDULE, [r"\bSCHEDULES?\b", r"\bSCH\b"]),
        (SheetType.LEGEND, [r"\bLEGENDS?\b"]),
        (SheetType.SITE_PLAN, [r"\bSITE\s+PLAN\b", r"\bSITE\b"]),
        (SheetType.ROOF_PLAN, [r"\bROOF\s+PLAN\b", r"\bROOF\b"]),
    ]

    SHEET_PREFIX_DISCIPLINES: Dict[str, SheetDiscipline] = {
        "A": SheetDiscipline.ARCHITECTURAL,
        "S": SheetDiscipline.STRUCTURAL,
        "E": SheetDiscipline.ELECTRICAL,
        "P": SheetDiscipline.PLUMBING,
        "C": SheetDiscipline.CIVIL,
        "L": SheetDiscipline.LANDSCAPE,
    }

    DISCIPLINE_PATTERNS: List[Tuple[SheetDiscipline, str]] = [
        (SheetDiscipline.ARCHITECTURAL, r"\bARCH(ITECTURAL)?\b"),
        (SheetDiscipline.STRUCTURAL, r"\bSTRUCT(URAL)?\b"),
        (SheetDiscipline.ELECTRICAL, r"\bELECT(RICAL)?\b"),
        (SheetDiscipline.PLUMBING, r"\bPLUMB(ING)?\b"),
        (SheetDiscipline.HVAC, r"\b(MECHANICAL|HVAC|HEATING)\b"),
        (SheetDiscipline.CIVIL, r"\bCIVIL\b"),
        (SheetDiscipline.LANDSCAPE, r"\bLANDSCAPE\b"),
        (SheetDiscipline.MEP, r"\bMEP\b"),
    ]

    KEYWORDS: Sequence[str] = (
        "FOUNDATION", "WALLS", "ROOF", "FLOOR", "CEILING",
        "DOOR", "WINDOW",
        "ELECTRICAL", "PLUMBING", "HVAC", "MEP",
        "SCHEDULE", "LEGEND", "NOTES", "SPECIFICATIONS",
        "BEAM", "COLUMN", "FOOTING", "SLAB",
    )

    def __init__(self):
        self._type_patterns = [
            (sheet_type, [re.compile(p) for p in patterns])
            for sheet_type, patterns in self.SHEET_TYPE_PATTERNS
        ]
        self._discipline_patterns = [
            (discipline, re.compile(pattern))
            for discipline, pattern in self.DISCIPLINE_PATTERNS
        ]

    def build_index(self, pages: List[ExtractedPage]) -> List[SheetIndex]:
        """Build one SheetIndex entry per page, in page order."""
        sheets = [self.index_page(page) for page in pages]

        classified = sum(
            1 for s in sheets
            if s.discipline != SheetDiscipline.UNKNOWN or s.sheet_type != SheetType.OTHER
        )
        LOGGER.info(
            f"Indexed {len(sheets)} sheets ({classified} classified)",
            extra={"total_sheets": len(sheets), "classified": classified}
        )
        return sheets

    def index_page(self, page: ExtractedPage) -> SheetIndex:
        text = page.text or ""
        upper = text.upper()
        lines = [line.strip() for line in text.splitlines() if line.strip()]

        sheet_id, prefix = self._detect_sheet_id(lines, page.page_number)
        scale, scale_ratio, scale_units = self._detect_scale(upper)

        return SheetIndex(
            sheet_id=sheet_id,
            title=self._detect_title(lines, sheet_id),
            discipline=self._detect_discipline(upper, prefix),
            sheet_type=self._detect_sheet_type(upper, page.page_number),
            scale=scale,
            scale_ratio=scale_ratio,
            units=self._detect_units(upper, scale_units),
            page_no=page.page_number,
            rotation=page.rotation,
            has_text_layer=page.has_text_layer,
            has_image=page.has_image or page.image_ref is not None,
            text_length=len(text),
            detected_keywords=[kw for kw in self.KEYWORDS if kw in upper],
        )

    @staticmethod
    def _detect_sheet_id(lines: List[str], page_number: int) -> Tuple[str, Optional[str]]:
        # Title blocks sit at the top or bottom of the text flow
        candidates = lines[:HEADER_LINES] + lines[-HEADER_LINES:]
        for line in candidates:
            match = SHEET_ID_PATTERN.search(line.upper())
            if match:
                return f"{match.group(1)}-{match.group(2)}", match.group(1)
        return f"PAGE-{page_number}", None

    @staticmethod
    def _detect_title(lines: List[str], sheet_id: str) -> str:
        compact_id = sheet_id.replace("-", "")
        for line in lines:
            normalized = re.sub(r"[\s\-.]", "", line.upper())
            if normalized == compact_id:
                continue
            if sum(ch.isalpha() for ch in line) >= 3:
                return line[:120]
        return ""

    def _detect_sheet_type(self, upper: str, page_number: int) -> SheetType:
        if page_number == 1:
            return SheetType.TITLE
        for sheet_type, patterns in self._type_patterns:
            if any(p.search(upper) for p in patterns):
                return sheet_type
        return SheetType.OTHER

    def _detect_discipline(self, upper: str, prefix: Optional[str]) -> SheetDiscipline:
        if prefix:
            if prefix[0] == "M":
                return SheetDiscipline.HVAC if HVAC_VOCABULARY.search(upper) else SheetDiscipline.MEP
            if len(prefix) <= 2 and prefix[0] in self.SHEET_PREFIX_DISCIPLINES:
                return self.SHEET_PREFIX_DISCIPLINES[prefix[0]]

        for discipline, pattern in self._discipline_patterns:
            if pattern.search(upper):
                return discipline
        return SheetDiscipline.UNKNOWN

    @staticmethod
    def _detect_scale(upper: str) -> Tuple[Optional[str], Optional[float], ScaleUnits]:
        """Find the first scale notation and normalize it to a ratio.

        ``1/8" = 1'-0"`` is 96 (inches of reality per inch of paper) and
        ``1:100`` is 100.
        """
        match = IMPERIAL_FRACTION_SCALE.search(upper)
        if match:
            num, den, feet = int(match.group(1)), int(match.group(2)), int(match.group(3))
            inches = int(match.group(4) or 0)
            if num and den:
                ratio = (feet * 12 + inches) / (num / den)
                return match.group(0).strip(), round(ratio, 4), ScaleUnits.IMPERIAL

        match = IMPERIAL_WHOLE_SCALE.search(upper)
        if match:
            paper_inches, feet = int(match.group(1)), int(match.group(2))
            inches = int(match.group(3) or 0)
            if paper_inches:
                ratio = (feet * 12 + inches) / paper_inches
                return match.group(0).strip(), round(ratio, 4), ScaleUnits.IMPERIAL

        match = METRIC_SCALE.search(upper)
        if match:
            return match.group(0).strip(), float(match.group(1)), ScaleUnits.METRIC

        return None, None, ScaleUnits.UNSET

    @staticmethod
    def _detect_units(upper: str, scale_units: ScaleUnits) -> ScaleUnits:
        if scale_units != ScaleUnits.UNSET:
            return scale_units
        if re.search(r"\b(FEET|INCHES)\b|\d+'\s*-\s*\d+\"", upper):
            return ScaleUnits.IMPERIAL
        if re.search(r"\b(MM|CM|METERS?|METRES?)\b", upper):
            return ScaleUnits.METRIC
        return ScaleUnits.UNSET

    @staticmethod
    def group_plan_sets(sheets: List[SheetIndex]) -> List[PlanSetGroup]:
        """Cluster sheets by ``{sheet_type}_{discipline}`` in first-seen order."""
        groups: Dict[str, PlanSetGroup] = {}
        for sheet in sheets:
            key = f"{sheet.sheet_type.value}_{sheet.discipline.value}"
            group = groups.get(key)
            if group is None:
                group = PlanSetGroup(
                    group_id=key,
                    name=f"{sheet.sheet_type.value} - {sheet.discipline.value}",
                    discipline=sheet.discipline,
                    sheet_type=sheet.sheet_type,
                    scale=sheet.scale,
                )
                groups[key] = group
            group.page_numbers.append(sheet.page_no)
            group.sheet_ids.append(sheet.sheet_id)
        return list(groups.values())

    @staticmethod
    def build_project_meta(
        plan_id: str,
        pages: List[ExtractedPage],
        sheets: List[SheetIndex],
        project_name: Optional[str] = None,
        location: Optional[str] = None,
    ) -> ProjectMeta:
        """Collect project names and addresses from the leading pages.

        Caller-supplied name and location take precedence over detected ones.
        """
        names: List[str] = []
        addresses: List[str] = []
        for page in pages[:META_PAGES]:
            match = PROJECT_NAME_PATTERN.search(page.text)
            if match and match.group(1).strip() not in names:
                names.append(match.group(1).strip())
            for address in ADDRESS_PATTERN.findall(page.text):
                address = " ".join(address.split())
                if address not in addresses:
                    addresses.append(address)

        return ProjectMeta(
            plan_id=plan_id,
            project_name=project_name or (names[0] if names else None),
            location=location or (addresses[0] if addresses else None),
            title=sheets[0].title if sheets and sheets[0].title else None,
            total_pages=len(pages),
            detected_project_names=names,
            detected_addresses=addresses,
        )
