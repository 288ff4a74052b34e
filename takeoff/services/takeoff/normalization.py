"""Canonical forms for takeoff item names, units and locations.

The duplicate signature of an item is::

    sha256("name|unit|location|qty")[:16]

over the canonical forms below. Names are never singularized or fuzzy
matched here, so two rows only share a signature when they describe the
same thing at the same place with the same quantity.
"""

import hashlib
import re
import unicodedata
from typing import List, Optional

from takeoff.models.chunk_models import QuantityRow
from takeoff.models.takeoff_models import TakeoffItem

_NAME_CHARS = re.compile(r"[^a-z0-9 ./\"'-]+")
_WHITESPACE = re.compile(r"\s+")
_LOCATION_CHARS = re.compile(r"[^a-z0-9]+")

UNIT_SYNONYMS = {
    "ea": "EA", "each": "EA", "pc": "EA", "pcs": "EA", "no": "EA", "nos": "EA",
    "lf": "LF", "ft": "LF", "feet": "LF", "foot": "LF", "linear ft": "LF", "lin ft": "LF",
    "sf": "SF", "sq ft": "SF", "sqft": "SF", "ft2": "SF",
    "cf": "CF", "cu ft": "CF", "ft3": "CF",
    "cy": "CY", "cu yd": "CY", "yd3": "CY",
    "sq": "SQ", "squares": "SQ", "square": "SQ",
}


def normalize_name(name: str) -> str:
    """Lowercase, NFKC-normalized name with punctuation collapsed.

    ``2x4`` survives unchanged since ``x`` is an ordinary letter.
    """
    text = unicodedata.normalize("NFKC", name or "").lower()
    text = _NAME_CHARS.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_unit(unit: str) -> str:
    key = _WHITESPACE.sub(" ", (unit or "").strip().lower().rstrip("."))
    return UNIT_SYNONYMS.get(key, key.upper())


def normalize_location(location: Optional[str]) -> str:
    """``wall-A3`` and ``Wall A3`` both become ``wall-a3``."""
    return _LOCATION_CHARS.sub("-", (location or "").lower()).strip("-")


def format_quantity(quantity: float) -> str:
    return f"{round(float(quantity or 0.0), 2):.2f}"


def signature_hash(name: str, unit: str, location: Optional[str], quantity: float) -> str:
    signature = "|".join([
        normalize_name(name),
        normalize_unit(unit),
        normalize_location(location),
        format_quantity(quantity),
    ])
    return hashlib.sha256(signature.encode("utf-8")).hexdigest()[:16]


def item_location(item: TakeoffItem) -> str:
    return item.location_key or item.location


def quantity_row(item: TakeoffItem) -> QuantityRow:
    """Project a takeoff item onto its duplicate-detection row."""
    pages: List[int] = sorted({ref.page for ref in item.page_refs})
    return QuantityRow(
        item_name=normalize_name(item.name),
        quantity=round(float(item.quantity or 0.0), 2),
        unit=normalize_unit(item.unit),
        location_key=normalize_location(item_location(item)),
        pages=pages,
        bboxes=[item.bounding_box] if item.bounding_box else [],
        signature_hash=signature_hash(item.name, item.unit, item_location(item), item.quantity),
    )
