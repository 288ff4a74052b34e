"""Prompt construction for scoping, segment execution and vision OCR."""

from typing import List

from takeoff.models.chunk_models import Chunk, ExtractedPage
from takeoff.models.takeoff_models import JobContext, SegmentPlan, UnitCostPolicy

MAX_CHUNK_PROMPT_CHARS = 4000
SAMPLE_PAGE_CHARS = 1500

SCOPING_SYSTEM_PROMPT = """You are a senior construction estimator planning a quantity takeoff.

Given sample pages from a drawing set and the project context, decide which
trade segments the takeoff should be split into, and list any clarifying
questions whose answers would materially change quantities or pricing.

**Return ONLY valid JSON** (no code fences, no explanations):
{
  "suggested_segments": [
    {"industry": "structural", "categories": ["foundations", "framing"]}
  ],
  "questions": ["Is the building type residential or commercial?"]
}

**Rules:**
- industry is one of: general, structural, mep, electrical, plumbing, hvac, sitework, finishes, roofing, glazing
- Only ask questions when information is genuinely missing or ambiguous
- Use an empty list when there are no questions
"""

EXECUTION_SYSTEM_PROMPT = """You are an expert construction estimator performing a quantity takeoff.

Extract every measurable item visible in the provided drawing pages and flag
code issues, drawing conflicts and open questions (RFIs).

**Each takeoff item must include:**
- name: Short item name (e.g., "2x4 stud", "5/8\\" gypsum board")
- description: What the item is and where it is
- quantity: Numeric quantity
- unit: One of EA, LF, SF, CF, CY, SQ
- unit_cost: Unit cost in the requested currency
- unit_cost_source: "model_estimate" or "lookup"
- location: Human-readable location (e.g., "Wall A3, Level 1")
- location_key: Compact location identifier (e.g., "wall-A3")
- industry, category, subcategory, cost_code, cost_code_description
- dimensions: Dimensions as shown on the drawings
- page_refs: [{"pdf": "<pdf url>", "page": <page number>}]
- bounding_box: {"x": 0-1, "y": 0-1, "width": 0-1, "height": 0-1, "page": <page>} when known
- confidence: 0.0 to 1.0

**Each analysis entry must include:**
- type: "code_issue", "conflict" or "rfi"
- title or question, description, sheet, pages
- severity ("low", "medium", "high", "critical") or priority ("low", "medium", "high")
- recommendation, confidence

**Return ONLY valid JSON** (no code fences, no explanations):
{"items": [...], "analysis": [...]}

**Important:**
- Count items shown on schedules and legends only where they are not also placed on plans
- Never invent quantities that cannot be measured from the pages
- Ensure numeric values are numbers, not strings
"""

VISION_OCR_PROMPT = """Transcribe all text visible on this construction drawing page.

Include the title block, sheet number, scale notations, dimensions, notes,
schedule rows and callouts. Preserve line breaks between separate labels.
Return plain text only, no commentary."""


def build_scoping_prompt(
    job_context: JobContext,
    sample_pages: List[ExtractedPage],
    pdf_urls: List[str],
) -> str:
    """Build the user prompt for the scoping call."""
    lines = [
        "**Project context:**",
        f"- Project name: {job_context.project_name or 'unknown'}",
        f"- Location: {job_context.location or 'unknown'}",
        f"- Building type: {job_context.building_type or 'unknown'}",
    ]
    if job_context.notes:
        lines.append(f"- Notes: {job_context.notes}")

    lines.append(f"\n**Documents:** {len(pdf_urls)} PDF(s)")
    lines.append("\n**Sample pages:**")
    for page in sample_pages:
        lines.append(f"\n=== PAGE {page.page_number} ===\n{page.text[:SAMPLE_PAGE_CHARS]}")

    return "\n".join(lines)


def build_execution_prompt(
    chunk: Chunk,
    segment: SegmentPlan,
    job_context: JobContext,
    currency: str = "USD",
    unit_cost_policy: UnitCostPolicy = UnitCostPolicy.ESTIMATE,
) -> str:
    """Build the user prompt for one (segment, chunk) batch."""
    meta = chunk.metadata
    sheets = ", ".join(f"{s.sheet_id} ({s.sheet_type.value})" for s in chunk.sheet_index_subset)
    hints = [hint.reason for hint in chunk.safeguards.no_multiply_hints]

    sections = [
        f"**Segment:** {segment.industry}",
        f"**Categories:** {', '.join(segment.categories) or 'all'}",
        f"**Project:** {job_context.project_name or meta.project_meta.project_name or 'unknown'}",
        f"**Location:** {job_context.location or meta.project_meta.location or 'unknown'}",
        f"**Building type:** {job_context.building_type or 'unknown'}",
        f"**Currency:** {currency}",
        f"**Unit cost policy:** {unit_cost_policy.value}",
        f"**PDF:** {chunk.source_url}",
        f"**Pages:** {chunk.page_range.start}-{chunk.page_range.end}",
        f"**Sheets:** {sheets or 'none'}",
        f"**Scale:** {meta.sheet_scale_units}",
    ]
    if hints:
        sections.append("**Do not multiply:**\n" + "\n".join(f"- {hint}" for hint in hints))

    sections.append(f"\n**Drawing text:**\n{truncate_text(chunk.content.text)}")
    return "\n".join(sections)


def truncate_text(text: str, limit: int = MAX_CHUNK_PROMPT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n[... truncated]"


def execution_generation_config(max_output_tokens: int) -> dict:
    return {
        "temperature": 0.0,
        "max_output_tokens": max_output_tokens,
        "response_mime_type": "application/json",
    }
