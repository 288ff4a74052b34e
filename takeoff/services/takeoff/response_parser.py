"""Strict decoding of model output.

A reply either decodes into the expected payload model (``Recognized``) or
is kept verbatim with the reason it was rejected (``Unparsed``). Before
giving up, a bounded textual repair is tried:

- strip markdown code fences
- strip prose around the outermost JSON object
- drop trailing commas before ``}`` or ``]``

Nothing beyond that is guessed. Individual takeoff or analysis entries that
fail validation are dropped and counted on the Recognized result.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from takeoff.models.takeoff_models import (
    AnalysisItem,
    BatchPayload,
    PriorSegment,
    ScopingPayload,
    TakeoffItem,
)
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class Recognized(Generic[T]):
    payload: T
    repaired: bool = False
    dropped: int = 0


@dataclass(frozen=True)
class Unparsed:
    raw_text: str
    reason: str


DecodeResult = Union[Recognized[T], Unparsed]


def _repair_candidates(text: str) -> List[str]:
    """Progressively repaired variants of text, least invasive first."""
    candidates = [text]

    unfenced = _FENCE.sub("", text.strip()).strip()
    candidates.append(unfenced)

    start, end = unfenced.find("{"), unfenced.rfind("}")
    if 0 <= start < end:
        unfenced = unfenced[start:end + 1]
        candidates.append(unfenced)

    candidates.append(_TRAILING_COMMA.sub(r"\1", unfenced))
    return list(dict.fromkeys(candidates))


def decode_json_object(raw_text: str) -> Tuple[Optional[Dict[str, Any]], bool, str]:
    """Decode a JSON object with bounded repair.

    Returns:
        (object or None, whether repair was needed, failure reason)
    """
    if not raw_text or not raw_text.strip():
        return None, False, "empty response"

    reason = "no JSON object found"
    for attempt, candidate in enumerate(_repair_candidates(raw_text)):
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError as e:
            reason = f"invalid JSON: {e.msg} at position {e.pos}"
            continue
        if not isinstance(value, dict):
            reason = f"expected a JSON object, got {type(value).__name__}"
            continue
        return value, attempt > 0, ""

    return None, False, reason


def _validate_entries(entries: Any, model: type, label: str) -> Tuple[List[Any], int]:
    if entries is None:
        return [], 0
    if not isinstance(entries, list):
        raise TypeError(f"'{label}' must be a list")

    valid, dropped = [], 0
    for entry in entries:
        try:
            valid.append(model.model_validate(entry))
        except PydanticValidationError as e:
            dropped += 1
            LOGGER.debug(f"Dropped invalid {label} entry: {e.errors()[:1]}")
    return valid, dropped


def decode_batch_payload(raw_text: str) -> DecodeResult:
    """Decode a segment execution reply into BatchPayload."""
    obj, repaired, reason = decode_json_object(raw_text)
    if obj is None:
        return Unparsed(raw_text=raw_text, reason=reason)

    if "items" not in obj and "analysis" not in obj:
        return Unparsed(raw_text=raw_text, reason="missing 'items' and 'analysis' keys")

    try:
        items, dropped_items = _validate_entries(obj.get("items"), TakeoffItem, "items")
        analysis, dropped_analysis = _validate_entries(obj.get("analysis"), AnalysisItem, "analysis")
    except TypeError as e:
        return Unparsed(raw_text=raw_text, reason=str(e))

    return Recognized(
        payload=BatchPayload(items=items, analysis=analysis),
        repaired=repaired,
        dropped=dropped_items + dropped_analysis,
    )


def decode_scoping_payload(raw_text: str) -> DecodeResult:
    """Decode a scoping reply into ScopingPayload."""
    obj, repaired, reason = decode_json_object(raw_text)
    if obj is None:
        return Unparsed(raw_text=raw_text, reason=reason)

    if "suggested_segments" not in obj and "questions" not in obj:
        return Unparsed(raw_text=raw_text, reason="missing 'suggested_segments' and 'questions' keys")

    try:
        segments, dropped = _validate_entries(obj.get("suggested_segments"), PriorSegment, "suggested_segments")
        questions = obj.get("questions") or []
        if not isinstance(questions, list) or not all(isinstance(q, str) for q in questions):
            raise TypeError("'questions' must be a list of strings")
    except TypeError as e:
        return Unparsed(raw_text=raw_text, reason=str(e))

    return Recognized(
        payload=ScopingPayload(suggested_segments=segments, questions=questions),
        repaired=repaired,
        dropped=dropped,
    )
