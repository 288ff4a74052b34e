"""Scoping planner: decide which trade segments to run and over which chunks.

Segments come from, in order of preference:

1. caller-supplied ``prior_segments``
2. a model call over sample pages (first, middle and last of each PDF)
3. a single ``general`` segment over every chunk

The planner only reads chunks; chunk assignment is by dominant discipline.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from takeoff.core.exceptions import APIClientError
from takeoff.core.unified_llm import UnifiedLLMClient
from takeoff.models.chunk_models import Chunk, ExtractedPage
from takeoff.models.sheet_models import SheetDiscipline
from takeoff.models.takeoff_models import (
    JobContext,
    PipelineRequest,
    PriorSegment,
    ScopingPlan,
    SegmentPlan,
)
from takeoff.services.takeoff.prompt_builder import SCOPING_SYSTEM_PROMPT, build_scoping_prompt
from takeoff.services.takeoff.response_parser import Unparsed, decode_scoping_payload
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_INDUSTRY = "general"

# Chunks of these disciplines are relevant to every segment
SHARED_DISCIPLINES = frozenset({SheetDiscipline.UNKNOWN, SheetDiscipline.ARCHITECTURAL})

AMBIGUOUS_VALUES = frozenset({"tbd", "unknown", "n/a", "na", "other", "mixed", "various", "?"})


class ScopingPlanner:
    """Builds the segmentation plan for a job."""

    INDUSTRY_DISCIPLINES: Dict[str, frozenset] = {
        "structural": frozenset({SheetDiscipline.STRUCTURAL}),
        "electrical": frozenset({SheetDiscipline.ELECTRICAL}),
        "plumbing": frozenset({SheetDiscipline.PLUMBING}),
        "hvac": frozenset({SheetDiscipline.HVAC}),
        "mep": frozenset({
            SheetDiscipline.MEP,
            SheetDiscipline.ELECTRICAL,
            SheetDiscipline.PLUMBING,
            SheetDiscipline.HVAC,
        }),
        "sitework": frozenset({SheetDiscipline.CIVIL, SheetDiscipline.LANDSCAPE}),
        "civil": frozenset({SheetDiscipline.CIVIL}),
        "landscape": frozenset({SheetDiscipline.LANDSCAPE}),
        "architectural": frozenset({SheetDiscipline.ARCHITECTURAL}),
        "finishes": frozenset({SheetDiscipline.ARCHITECTURAL}),
        "roofing": frozenset({SheetDiscipline.ARCHITECTURAL}),
        "glazing": frozenset({SheetDiscipline.ARCHITECTURAL}),
    }

    def __init__(self, llm_client: Optional[UnifiedLLMClient] = None):
        """Initialize the planner.

        Args:
            llm_client: Client used for the scoping call; without one, a
                request that asks for scoping falls back to the default plan
        """
        self.llm_client = llm_client

    async def plan(
        self,
        request: PipelineRequest,
        chunks: List[Chunk],
        pages_by_pdf: Dict[str, List[ExtractedPage]],
    ) -> ScopingPlan:
        warnings: List[str] = []
        model_questions: List[str] = []

        if request.prior_segments:
            segments = self._from_prior(request.prior_segments)
            source = "prior_segments"
        else:
            segments, source = [], "default"
            if request.ask_scoping_questions:
                suggested, model_questions = await self._ask_model(request, pages_by_pdf, warnings)
                if suggested:
                    segments = self._from_prior(suggested)
                    source = "model"
            if not segments:
                segments = [SegmentPlan(industry=DEFAULT_INDUSTRY, priority=1)]

        for segment in segments:
            segment.chunk_ids = self.assign_chunks(segment.industry, chunks)

        questions: List[str] = []
        if request.ask_scoping_questions:
            questions = _dedupe(self.context_questions(request.job_context) + model_questions)

        LOGGER.info(
            f"Scoping plan ready with {len(segments)} segment(s) from {source}",
            extra={
                "source": source,
                "segments": [s.industry for s in segments],
                "questions": len(questions),
            }
        )
        return ScopingPlan(segments=segments, questions=questions, source=source, warnings=warnings)

    @staticmethod
    def _from_prior(prior: Iterable[PriorSegment]) -> List[SegmentPlan]:
        segments: List[SegmentPlan] = []
        seen = set()
        for segment in prior:
            industry = segment.industry.strip().lower()
            if not industry or industry in seen:
                continue
            seen.add(industry)
            segments.append(SegmentPlan(
                industry=industry,
                categories=list(segment.categories),
                priority=len(segments) + 1,
            ))
        return segments

    async def _ask_model(
        self,
        request: PipelineRequest,
        pages_by_pdf: Dict[str, List[ExtractedPage]],
        warnings: List[str],
    ) -> Tuple[List[PriorSegment], List[str]]:
        if self.llm_client is None:
            warnings.append("Scoping skipped: no inference client configured")
            return [], []

        samples: List[ExtractedPage] = []
        for url in request.pdf_urls:
            samples.extend(sample_pages(pages_by_pdf.get(url, [])))

        prompt = build_scoping_prompt(request.job_context, samples, request.pdf_urls)
        try:
            raw = await self.llm_client.generate_content(
                contents=prompt,
                system_instruction=SCOPING_SYSTEM_PROMPT,
                generation_config={"temperature": 0.0, "response_mime_type": "application/json"},
            )
        except APIClientError as e:
            LOGGER.warning(f"Scoping call failed, using default segment: {e}")
            warnings.append(f"Scoping call failed: {e.message}")
            return [], []

        decoded = decode_scoping_payload(raw)
        if isinstance(decoded, Unparsed):
            LOGGER.warning(
                f"Scoping reply not recognized: {decoded.reason}",
                extra={"raw_preview": decoded.raw_text[:200]}
            )
            warnings.append(f"Scoping reply not recognized: {decoded.reason}")
            return [], []

        return decoded.payload.suggested_segments, decoded.payload.questions

    def assign_chunks(self, industry: str, chunks: List[Chunk]) -> List[str]:
        """Chunk ids relevant to one industry, in chunk order."""
        disciplines = self.INDUSTRY_DISCIPLINES.get(industry)
        if disciplines is None:
            return [chunk.chunk_id for chunk in chunks]

        assigned = [
            chunk.chunk_id
            for chunk in chunks
            if chunk.metadata.discipline in disciplines
            or chunk.metadata.discipline in SHARED_DISCIPLINES
        ]
        return assigned or [chunk.chunk_id for chunk in chunks]

    @staticmethod
    def context_questions(job_context: JobContext) -> List[str]:
        """Questions raised by missing or ambiguous project context."""
        questions = []

        building_type = job_context.building_type.strip()
        if not building_type:
            questions.append(
                "What is the building type (e.g. single-family residential, multifamily, commercial office, industrial)?"
            )
        elif building_type.lower() in AMBIGUOUS_VALUES:
            questions.append(
                f"The building type '{building_type}' is ambiguous. Which occupancy classification applies?"
            )

        location = job_context.location.strip()
        if not location:
            questions.append(
                "Where is the project located (city and state or country)? Local codes and unit costs depend on it."
            )
        elif location.lower() in AMBIGUOUS_VALUES:
            questions.append(
                f"The project location '{location}' is ambiguous. Please give the city and state or country."
            )

        return questions


def sample_pages(pages: List[ExtractedPage]) -> List[ExtractedPage]:
    """First, middle and last page, without repeats."""
    if not pages:
        return []
    picks = [0, len(pages) // 2, len(pages) - 1]
    return [pages[i] for i in dict.fromkeys(picks)]


def _dedupe(questions: List[str]) -> List[str]:
    seen = set()
    result = []
    for question in questions:
        key = question.strip().lower()
        if key and key not in seen:
            seen.add(key)
            result.append(question.strip())
    return result
