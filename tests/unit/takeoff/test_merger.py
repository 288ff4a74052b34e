"""Unit tests for ResultMerger."""

import pytest

from takeoff.models.job_models import BatchError, BatchRecord, BatchStatus, ProviderOutput
from takeoff.models.sheet_models import SheetType
from takeoff.models.takeoff_models import AnalysisItem, SegmentPlan
from takeoff.services.takeoff.merger import SCHEDULE_REFERENCE_NOTE, ResultMerger

SEGMENTS = [SegmentPlan(industry="framing", categories=["walls"], chunk_ids=[])]


def _batch(batch_id, chunk, items=(), analysis=(), provider="openai", status=BatchStatus.COMPLETED, error=None):
    return BatchRecord(
        id=batch_id,
        job_id="job-1",
        segment_industry="framing",
        chunk_ids=[chunk.chunk_id],
        status=status,
        outputs=[ProviderOutput(provider=provider, items=list(items), analysis=list(analysis))]
        if status == BatchStatus.COMPLETED else [],
        error=error,
    )


@pytest.fixture
def merger():
    return ResultMerger()


class TestOverlapDedup:

    def test_same_item_on_adjacent_chunks_collapses(self, merger, chunk_factory, item_factory):
        first, second = chunk_factory(0, [1, 2, 3, 4, 5]), chunk_factory(1, [5, 6, 7])
        batches = [
            _batch("b0", first, items=[item_factory(pages=(5,), confidence=0.7)]),
            _batch("b1", second, items=[item_factory(pages=(5,), confidence=0.9)]),
        ]

        result, stats = merger.merge(batches, SEGMENTS, chunks={c.chunk_id: c for c in (first, second)})

        assert len(result.takeoff) == 1
        assert result.takeoff[0].confidence == 0.9
        assert result.takeoff[0].batch_id == "b1"
        assert stats.collapsed_overlaps == 1
        assert "Collapsed 1 duplicate items from overlapping chunks." in [e.message for e in result.run_log]

    def test_distant_chunks_are_not_collapsed(self, merger, chunk_factory, item_factory):
        first, third = chunk_factory(0, [1, 2]), chunk_factory(2, [5, 6])
        batches = [
            _batch("b0", first, items=[item_factory(pages=(1,))]),
            _batch("b2", third, items=[item_factory(pages=(5,))]),
        ]

        result, stats = merger.merge(batches, SEGMENTS, chunks={c.chunk_id: c for c in (first, third)})

        assert len(result.takeoff) == 2
        assert stats.collapsed_overlaps == 0

    def test_different_quantities_are_kept(self, merger, chunk_factory, item_factory):
        first, second = chunk_factory(0, [1, 2]), chunk_factory(1, [2, 3])
        batches = [
            _batch("b0", first, items=[item_factory(quantity=48)]),
            _batch("b1", second, items=[item_factory(quantity=36)]),
        ]

        result, _ = merger.merge(batches, SEGMENTS, chunks={c.chunk_id: c for c in (first, second)})

        assert sorted(i.quantity for i in result.takeoff) == [36, 48]


class TestDeterminism:

    def _batches(self, chunk_factory, item_factory):
        chunks = [chunk_factory(n, [n * 2 + 1, n * 2 + 2]) for n in range(3)]
        batches = [
            _batch(f"b{n}", chunk, items=[
                item_factory(name="2x4 stud", quantity=10 * (n + 1), pages=(n * 2 + 1,)),
                item_factory(name="sill plate", quantity=20, unit="lf", pages=(n * 2 + 2,)),
            ], analysis=[AnalysisItem(type="code_issue", description=f"Issue {n}", pages=[n * 2 + 1])])
            for n, chunk in enumerate(chunks)
        ]
        return batches, {c.chunk_id: c for c in chunks}

    def test_order_of_batches_does_not_matter(self, merger, chunk_factory, item_factory):
        batches, chunks = self._batches(chunk_factory, item_factory)

        forward, _ = merger.merge(batches, SEGMENTS, chunks=chunks)
        backward, _ = merger.merge(list(reversed(batches)), SEGMENTS, chunks=chunks)

        assert forward.model_dump() == backward.model_dump()

    def test_merge_is_idempotent(self, merger, chunk_factory, item_factory):
        batches, chunks = self._batches(chunk_factory, item_factory)

        first, _ = merger.merge(batches, SEGMENTS, chunks=chunks)
        second, _ = merger.merge(batches, SEGMENTS, chunks=chunks)

        assert first.as_arrays() == second.as_arrays()

    def test_items_ordered_by_page(self, merger, chunk_factory, item_factory):
        batches, chunks = self._batches(chunk_factory, item_factory)

        result, _ = merger.merge(list(reversed(batches)), SEGMENTS, chunks=chunks)

        first_pages = [item.page_refs[0].page for item in result.takeoff]
        assert first_pages == sorted(first_pages)


class TestNoMultiply:

    def test_schedule_row_with_placed_counterpart_is_suppressed(self, merger, chunk_factory, item_factory):
        chunk = chunk_factory(0, [1, 2, 3], sheet_types={2: SheetType.SCHEDULE})
        batches = [_batch("b0", chunk, items=[
            item_factory(name="Door Type A", quantity=12, pages=(2,)),
            item_factory(name="door type a", quantity=11, pages=(3,)),
        ])]

        result, stats = merger.merge(batches, SEGMENTS, chunks={chunk.chunk_id: chunk})

        assert [i.quantity for i in result.takeoff] == [11]
        assert stats.suppressed_artifacts == 1

    def test_schedule_only_row_is_marked_as_reference(self, merger, chunk_factory, item_factory):
        chunk = chunk_factory(0, [1, 2], sheet_types={2: SheetType.SCHEDULE})
        batches = [_batch("b0", chunk, items=[item_factory(name="Window W1", quantity=8, pages=(2,))])]

        result, stats = merger.merge(batches, SEGMENTS, chunks={chunk.chunk_id: chunk})

        assert len(result.takeoff) == 1
        assert SCHEDULE_REFERENCE_NOTE in result.takeoff[0].notes
        assert stats.suppressed_artifacts == 0


class TestAnalysisAndLog:

    def test_duplicate_analysis_entries_collapse(self, merger, chunk_factory):
        first, second = chunk_factory(0, [1, 2]), chunk_factory(1, [2, 3])
        issue = AnalysisItem(type="code_issue", description="Stair riser exceeds 7-3/4 in", pages=[2], severity="high")
        batches = [_batch("b0", first, analysis=[issue]), _batch("b1", second, analysis=[issue])]

        result, stats = merger.merge(batches, SEGMENTS, chunks={c.chunk_id: c for c in (first, second)})

        assert len(result.analysis) == 1
        assert stats.risks == 1
        assert result.segments[0].summary.top_risks == ["Stair riser exceeds 7-3/4 in"]

    def test_questions_become_rfi_entries(self, merger, chunk_factory, item_factory):
        chunk = chunk_factory(0, [1])
        batches = [_batch("b0", chunk, items=[item_factory()])]

        result, stats = merger.merge(
            batches, SEGMENTS, chunks={chunk.chunk_id: chunk}, questions=["Is the detached garage in scope?"]
        )

        rfis = [a for a in result.analysis if a.type == "rfi"]
        assert [a.question for a in rfis] == ["Is the detached garage in scope?"]
        assert stats.missing_information == 1
        assert result.run_log[-1].message == "Analysis complete. Found 0 risks and 1 missing information items."

    def test_questions_dropped_when_no_batch_completed(self, merger, chunk_factory):
        chunk = chunk_factory(0, [1])
        batches = [
            _batch("b0", chunk, status=BatchStatus.FAILED, error=BatchError(error_type="api_error", message="bad request")),
        ]

        result, stats = merger.merge(
            batches, SEGMENTS, chunks={chunk.chunk_id: chunk}, questions=["What is the building type?"]
        )

        assert result.takeoff == []
        assert result.analysis == []
        assert stats.missing_information == 0

    def test_failed_batch_is_logged_and_excluded(self, merger, chunk_factory, item_factory):
        ok, bad = chunk_factory(0, [1, 2]), chunk_factory(1, [3, 4])
        batches = [
            _batch("b0", ok, items=[item_factory()]),
            _batch("b1", bad, status=BatchStatus.FAILED, error=BatchError(error_type="timeout", message="took too long")),
        ]

        result, _ = merger.merge(batches, SEGMENTS, chunks={c.chunk_id: c for c in (ok, bad)})

        assert len(result.takeoff) == 1
        warning = result.run_log[0]
        assert warning.type == "warn"
        assert "timeout: took too long" in warning.message
        assert warning.page_batch == [3, 4]
        summary = result.segments[0].summary
        assert summary.pages_processed == 2
        assert summary.pages_failed == 2

    def test_cancelled_job_discards_results(self, merger, chunk_factory, item_factory):
        chunk = chunk_factory(0, [1])

        result, _ = merger.merge([_batch("b0", chunk, items=[item_factory()])], SEGMENTS, cancelled=True)

        assert result.takeoff == []
        assert result.analysis == []
        assert result.run_log[0].type == "warn"

    def test_segment_totals_by_cost_code(self, merger, chunk_factory, item_factory):
        chunk = chunk_factory(0, [1, 2])
        batches = [_batch("b0", chunk, items=[
            item_factory(name="2x4 stud", quantity=48, cost_code="06 11 00", unit_cost=4.5, pages=(1,)),
            item_factory(name="2x6 stud", quantity=20, cost_code="06 11 00", unit_cost=6.0, pages=(2,)),
        ])]

        result, _ = merger.merge(batches, SEGMENTS, chunks={chunk.chunk_id: chunk})

        totals = result.segments[0].summary.totals_by_cost_code
        assert len(totals) == 1
        assert totals[0].quantity == 68
        assert totals[0].est_cost == pytest.approx(336.0)
        assert result.segments[0].items_count == 2
