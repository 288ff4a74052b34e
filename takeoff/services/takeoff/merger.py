"""Merge completed batch outputs into the four-array pipeline result.

The merge is a pure function of the batch set: inputs are sorted into a
canonical order first, so the same batches always produce the same result
no matter in which order they finished or were loaded.

Steps, in order:

1. canonical ordering of batches and provider outputs
2. normalization and provenance of items
3. per-batch consensus when more than one provider answered
4. overlap dedup of equal signatures on the same or adjacent chunks
5. suppression of schedule/legend/detail artifacts with a placed counterpart
6. analysis dedup
7. deterministic ordering of both arrays
8. segment summaries and the run log
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from takeoff.models.chunk_models import Chunk
from takeoff.models.job_models import BatchRecord, BatchStatus, ProviderOutput
from takeoff.models.takeoff_models import (
    AnalysisItem,
    CostCodeTotal,
    PageRef,
    PipelineResult,
    RunLogEntry,
    SegmentPlan,
    SegmentResult,
    SegmentSummary,
    TakeoffItem,
)
from takeoff.services.takeoff.consensus import ConsensusEngine
from takeoff.services.takeoff.normalization import (
    normalize_name,
    normalize_unit,
    quantity_row,
)
from takeoff.utils.logging import get_logger

LOGGER = get_logger(__name__)

SCHEDULE_REFERENCE_NOTE = "schedule_reference"
TOP_RISKS_LIMIT = 5
RISK_TYPES = frozenset({"code_issue", "conflict"})
SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}


@dataclass
class MergeStats:
    raw_items: int = 0
    merged_items: int = 0
    collapsed_overlaps: int = 0
    suppressed_artifacts: int = 0
    conflicts: int = 0
    risks: int = 0
    missing_information: int = 0


def chunk_index_of(chunk_id: str, chunks: Dict[str, Chunk]) -> int:
    """Chunk index from the registry, else parsed from ``chunk_{plan}_{NNNN}``."""
    chunk = chunks.get(chunk_id)
    if chunk is not None:
        return chunk.chunk_index
    suffix = chunk_id.rsplit("_", 1)[-1]
    return int(suffix) if suffix.isdigit() else 0


class ResultMerger:
    """Builds the final TAKEOFF, ANALYSIS, SEGMENTS and RUN_LOG arrays."""

    def __init__(self, consensus: Optional[ConsensusEngine] = None):
        self.consensus = consensus or ConsensusEngine()

    def merge(
        self,
        batches: Sequence[BatchRecord],
        segments: Sequence[SegmentPlan],
        chunks: Optional[Dict[str, Chunk]] = None,
        pdf_urls: Optional[Sequence[str]] = None,
        questions: Sequence[str] = (),
        cancelled: bool = False,
    ) -> Tuple[PipelineResult, MergeStats]:
        """Merge terminal batches into a PipelineResult.

        Args:
            batches: Batch records of the job (any order)
            segments: Segment plan, used for summaries and their order
            chunks: Chunk registry keyed by chunk_id; without it chunk indices
                come from item provenance and no pages are flagged
            pdf_urls: Request PDF order used for output ordering
            questions: Clarifying questions, reported as ``rfi`` analysis entries
                once at least one batch completed
            cancelled: Whether the job was cancelled

        Returns:
            The four-array result and merge statistics
        """
        stats = MergeStats()
        if cancelled:
            return PipelineResult(run_log=[
                RunLogEntry(type="warn", message="Job cancelled; batch results were discarded.")
            ]), stats

        chunks = chunks or {}
        pdf_order = {url: position for position, url in enumerate(pdf_urls or [])}

        ordered = sorted(
            (b for b in batches if b.status == BatchStatus.COMPLETED),
            key=lambda b: (
                min((chunk_index_of(c, chunks) for c in b.chunk_ids), default=0),
                b.segment_priority,
                b.id,
            ),
        )

        items: List[TakeoffItem] = []
        analysis: List[AnalysisItem] = []
        for batch in ordered:
            outputs = [
                self._normalize_output(output, batch, chunks)
                for output in sorted(batch.outputs, key=lambda o: o.provider)
            ]
            stats.raw_items += sum(len(output.items) for output in outputs)

            reconciled = self.consensus.reconcile(outputs)
            stats.conflicts += len(reconciled.conflicts)
            items.extend(self._with_signature(item) for item in reconciled.items)
            for output in outputs:
                analysis.extend(output.analysis)
            analysis.extend(reconciled.conflicts)

        if ordered:
            analysis.extend(
                AnalysisItem(type="rfi", question=question, description=question, priority="medium", confidence=1.0)
                for question in questions
            )

        items, stats.collapsed_overlaps = self._collapse_overlaps(items, chunks)
        items, stats.suppressed_artifacts = self._suppress_artifacts(items, chunks)
        analysis = self._dedupe_analysis(analysis)

        items.sort(key=lambda item: self._item_order(item, chunks, pdf_order))
        analysis.sort(key=lambda entry: (
            min(entry.pages) if entry.pages else 0,
            entry.type,
            _analysis_description(entry),
        ))

        stats.merged_items = len(items)
        stats.risks = sum(1 for entry in analysis if entry.type in RISK_TYPES)
        stats.missing_information = sum(1 for entry in analysis if entry.type == "rfi")

        result = PipelineResult(
            takeoff=items,
            analysis=analysis,
            segments=self._summarize_segments(segments, batches, items, analysis, chunks),
            run_log=self._failure_log(batches, chunks) + self._run_log(stats),
        )
        LOGGER.info(
            f"Merged {stats.raw_items} raw items into {stats.merged_items}",
            extra={
                "completed_batches": len(ordered),
                "collapsed_overlaps": stats.collapsed_overlaps,
                "suppressed_artifacts": stats.suppressed_artifacts,
                "conflicts": stats.conflicts,
            }
        )
        return result, stats

    @staticmethod
    def _normalize_output(output: ProviderOutput, batch: BatchRecord, chunks: Dict[str, Chunk]) -> ProviderOutput:
        default_chunk = batch.chunk_ids[0] if batch.chunk_ids else None
        items = []
        for item in output.items:
            chunk_id = item.source_chunk_id or default_chunk
            updates = {
                "name": item.name.strip(),
                "unit": normalize_unit(item.unit),
                "provider": item.provider or output.provider,
                "batch_id": batch.id,
                "segment_industry": item.segment_industry or batch.segment_industry,
                "source_chunk_id": chunk_id,
            }
            if item.source_chunk_index is None and chunk_id:
                updates["source_chunk_index"] = chunk_index_of(chunk_id, chunks)
            chunk = chunks.get(chunk_id) if chunk_id else None
            if chunk is not None and any(not ref.pdf for ref in item.page_refs):
                updates["page_refs"] = [
                    ref if ref.pdf else PageRef(pdf=chunk.source_url, page=ref.page)
                    for ref in item.page_refs
                ]
            items.append(item.model_copy(update=updates))

        analysis = [
            entry.model_copy(update={"segment_industry": entry.segment_industry or batch.segment_industry})
            for entry in output.analysis
        ]
        return ProviderOutput(provider=output.provider, items=items, analysis=analysis)

    @staticmethod
    def _with_signature(item: TakeoffItem) -> TakeoffItem:
        return item.model_copy(update={"signature_hash": quantity_row(item).signature_hash})

    @staticmethod
    def _plan_of(item: TakeoffItem, chunks: Dict[str, Chunk]) -> Optional[str]:
        chunk = chunks.get(item.source_chunk_id or "")
        return chunk.plan_id if chunk is not None else None

    def _collapse_overlaps(
        self,
        items: List[TakeoffItem],
        chunks: Dict[str, Chunk],
    ) -> Tuple[List[TakeoffItem], int]:
        """Collapse equal signatures on the same or chained adjacent chunks."""
        groups: Dict[str, List[TakeoffItem]] = defaultdict(list)
        for item in items:
            groups[item.signature_hash].append(item)

        merged: List[TakeoffItem] = []
        collapsed = 0
        for signature in sorted(groups):
            group = sorted(
                groups[signature],
                key=lambda i: (i.source_chunk_index or 0, i.batch_id or "", i.provider or ""),
            )
            component = [group[0]]
            for item in group[1:]:
                previous = component[-1]
                adjacent = (item.source_chunk_index or 0) - (previous.source_chunk_index or 0) <= 1
                same_plan = self._plan_of(item, chunks) == self._plan_of(previous, chunks)
                if adjacent and same_plan:
                    component.append(item)
                    continue
                merged.append(self._prefer(component))
                collapsed += len(component) - 1
                component = [item]
            merged.append(self._prefer(component))
            collapsed += len(component) - 1

        return merged, collapsed

    @staticmethod
    def _prefer(component: List[TakeoffItem]) -> TakeoffItem:
        if len(component) == 1:
            return component[0]
        preferred = min(
            component,
            key=lambda i: (-i.confidence, i.source_chunk_index or 0, i.batch_id or "", i.provider or ""),
        )
        refs = {(ref.pdf, ref.page): ref for item in component for ref in item.page_refs}
        page_refs = [refs[key] for key in sorted(refs)]
        return preferred.model_copy(update={"page_refs": page_refs})

    @staticmethod
    def _item_pages(item: TakeoffItem, chunks: Dict[str, Chunk]) -> Set[Tuple[str, int]]:
        chunk = chunks.get(item.source_chunk_id or "")
        default_pdf = chunk.source_url if chunk is not None else ""
        return {(ref.pdf or default_pdf, ref.page) for ref in item.page_refs}

    def _suppress_artifacts(
        self,
        items: List[TakeoffItem],
        chunks: Dict[str, Chunk],
    ) -> Tuple[List[TakeoffItem], int]:
        """Drop schedule/legend/detail rows that duplicate placed items."""
        flagged: Set[Tuple[str, int]] = {
            (chunk.source_url, hint.page_no)
            for chunk in chunks.values()
            for hint in chunk.safeguards.no_multiply_hints
        }
        if not flagged:
            return items, 0

        artifact_ids = set()
        placed_keys = set()
        for position, item in enumerate(items):
            pages = self._item_pages(item, chunks)
            key = (normalize_name(item.name), normalize_unit(item.unit))
            if pages and pages <= flagged:
                artifact_ids.add(position)
            elif pages - flagged:
                placed_keys.add(key)

        kept: List[TakeoffItem] = []
        suppressed = 0
        for position, item in enumerate(items):
            if position not in artifact_ids:
                kept.append(item)
                continue
            if (normalize_name(item.name), normalize_unit(item.unit)) in placed_keys:
                suppressed += 1
                continue
            notes = item.notes or ""
            if SCHEDULE_REFERENCE_NOTE not in notes:
                notes = f"{notes} | {SCHEDULE_REFERENCE_NOTE}" if notes else SCHEDULE_REFERENCE_NOTE
            kept.append(item.model_copy(update={"notes": notes}))
        return kept, suppressed

    @staticmethod
    def _dedupe_analysis(entries: List[AnalysisItem]) -> List[AnalysisItem]:
        seen = set()
        unique = []
        for entry in entries:
            key = (entry.type, normalize_name(_analysis_description(entry)), tuple(sorted(set(entry.pages))))
            if key in seen:
                continue
            seen.add(key)
            unique.append(entry)
        return unique

    def _item_order(self, item: TakeoffItem, chunks: Dict[str, Chunk], pdf_order: Dict[str, int]):
        pages = sorted(self._item_pages(item, chunks), key=lambda p: (pdf_order.get(p[0], len(pdf_order)), p[0], p[1]))
        if pages:
            pdf, first_page = pages[0]
        else:
            chunk = chunks.get(item.source_chunk_id or "")
            pdf = chunk.source_url if chunk is not None else ""
            first_page = chunk.page_range.start if chunk is not None else 0
        bbox_y = item.bounding_box.y if item.bounding_box is not None else 1.0
        return (
            pdf_order.get(pdf, len(pdf_order)),
            pdf,
            first_page,
            bbox_y,
            normalize_name(item.name),
            item.signature_hash or "",
        )

    @staticmethod
    def _summarize_segments(
        segments: Sequence[SegmentPlan],
        batches: Sequence[BatchRecord],
        items: List[TakeoffItem],
        analysis: List[AnalysisItem],
        chunks: Dict[str, Chunk],
    ) -> List[SegmentResult]:
        results = []
        for segment in segments:
            segment_batches = [b for b in batches if b.segment_industry == segment.industry]
            processed = _pages_of(
                [c for b in segment_batches if b.status == BatchStatus.COMPLETED for c in b.chunk_ids], chunks
            )
            failed = _pages_of(
                [c for b in segment_batches if b.status == BatchStatus.FAILED for c in b.chunk_ids], chunks
            ) - processed

            segment_items = [i for i in items if i.segment_industry == segment.industry]
            segment_analysis = [a for a in analysis if a.segment_industry == segment.industry]

            results.append(SegmentResult(
                industry=segment.industry,
                categories=list(segment.categories),
                summary=SegmentSummary(
                    totals_by_cost_code=_totals_by_cost_code(segment_items),
                    top_risks=_top_risks(segment_analysis),
                    pages_processed=len(processed),
                    pages_failed=len(failed),
                ),
                items_count=len(segment_items),
                analysis_count=len(segment_analysis),
            ))
        return results

    @staticmethod
    def _failure_log(batches: Sequence[BatchRecord], chunks: Dict[str, Chunk]) -> List[RunLogEntry]:
        entries = []
        failed = sorted(
            (b for b in batches if b.status == BatchStatus.FAILED),
            key=lambda b: (min((chunk_index_of(c, chunks) for c in b.chunk_ids), default=0), b.segment_priority, b.id),
        )
        for batch in failed:
            chunk = chunks.get(batch.chunk_ids[0]) if batch.chunk_ids else None
            error = batch.error
            reason = f"{error.error_type}: {error.message}" if error else "unknown error"
            entries.append(RunLogEntry(
                type="warn",
                message=f"Batch for segment '{batch.segment_industry}' failed ({reason})",
                pdf=chunk.source_url if chunk is not None else None,
                page_batch=list(chunk.primary_pages) if chunk is not None else None,
            ))
        return entries

    @staticmethod
    def _run_log(stats: MergeStats) -> List[RunLogEntry]:
        return [
            RunLogEntry(type="info", message=f"Merged {stats.raw_items} raw items into {stats.merged_items} takeoff items."),
            RunLogEntry(type="info", message=f"Collapsed {stats.collapsed_overlaps} duplicate items from overlapping chunks."),
            RunLogEntry(
                type="info",
                message=f"Suppressed {stats.suppressed_artifacts} schedule, legend or detail items with placed counterparts.",
            ),
            RunLogEntry(
                type="warn" if stats.conflicts else "info",
                message=f"Found {stats.conflicts} provider quantity conflicts.",
            ),
            RunLogEntry(
                type="info",
                message=(
                    f"Analysis complete. Found {stats.risks} risks and "
                    f"{stats.missing_information} missing information items."
                ),
            ),
        ]


def _pages_of(chunk_ids: List[str], chunks: Dict[str, Chunk]) -> Set[Tuple[str, int]]:
    pages = set()
    for chunk_id in chunk_ids:
        chunk = chunks.get(chunk_id)
        if chunk is not None:
            pages.update((chunk.source_url, page) for page in chunk.primary_pages)
    return pages


def _totals_by_cost_code(items: List[TakeoffItem]) -> List[CostCodeTotal]:
    totals: Dict[Tuple[str, str], CostCodeTotal] = {}
    for item in items:
        key = (item.cost_code or "UNCODED", item.unit)
        total = totals.get(key)
        if total is None:
            total = CostCodeTotal(cost_code=key[0], description=item.cost_code_description, unit=item.unit)
            totals[key] = total
        total.quantity = round(total.quantity + item.quantity, 4)
        total.est_cost = round(total.est_cost + item.quantity * item.unit_cost, 2)
        if not total.description and item.cost_code_description:
            total.description = item.cost_code_description
    return [totals[key] for key in sorted(totals)]


def _top_risks(entries: List[AnalysisItem]) -> List[str]:
    risky = [
        entry for entry in entries
        if entry.severity in ("high", "critical") or entry.priority == "high"
    ]
    risky.sort(key=lambda entry: (
        SEVERITY_RANK.get(entry.severity or "", len(SEVERITY_RANK)),
        min(entry.pages) if entry.pages else 0,
        _analysis_text(entry),
    ))
    return [_analysis_text(entry)[:200] for entry in risky[:TOP_RISKS_LIMIT]]


def _analysis_text(entry: AnalysisItem) -> str:
    return entry.title or entry.question or entry.description


def _analysis_description(entry: AnalysisItem) -> str:
    return entry.description or entry.title or entry.question or ""
