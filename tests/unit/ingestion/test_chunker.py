"""Unit tests for PlanChunker."""

import pytest

from takeoff.models.sheet_models import ProjectMeta, SheetType
from takeoff.services.ingestion.chunker import PlanChunker, location_keys
from takeoff.services.ingestion.sheet_indexer import SheetIndexer


def _chunk(chunker, pages, page_batch_size=5, start_index=0, source_url="plan.pdf"):
    sheets = SheetIndexer().build_index(pages)
    return chunker.chunk(
        plan_id="plan-1",
        pages=pages,
        sheets=sheets,
        project_meta=ProjectMeta(plan_id="plan-1", total_pages=len(pages)),
        source_url=source_url,
        page_batch_size=page_batch_size,
        start_index=start_index,
    )


class TestPageBatching:
    """Chunk boundaries driven by the page cap."""

    @pytest.fixture
    def chunker(self):
        return PlanChunker()

    def test_twelve_pages_split_five_five_two(self, chunker, page_factory):
        pages = [page_factory(n) for n in range(1, 13)]

        result = _chunk(chunker, pages, page_batch_size=5)

        assert [c.page_range.pages for c in result.chunks] == [
            [1, 2, 3, 4, 5],
            [6, 7, 8, 9, 10],
            [11, 12],
        ]
        middle = result.chunks[1].metadata.overlap_info
        assert middle.prev_overlap_tokens > 0
        assert middle.next_overlap_tokens > 0
        assert middle.prev_chunk_id == result.chunks[0].chunk_id
        assert middle.next_chunk_id == result.chunks[2].chunk_id

    def test_overlap_counts_are_symmetric(self, chunker, page_factory):
        pages = [page_factory(n) for n in range(1, 13)]

        chunks = _chunk(chunker, pages).chunks

        for left, right in zip(chunks, chunks[1:]):
            assert left.metadata.overlap_info.next_overlap_tokens == right.metadata.overlap_info.prev_overlap_tokens

    def test_primary_pages_are_an_exact_partition(self, chunker, page_factory):
        pages = [page_factory(n) for n in range(1, 18)]

        chunks = _chunk(chunker, pages, page_batch_size=4).chunks

        primary = [p for c in chunks for p in c.primary_pages]
        assert sorted(primary) == list(range(1, 18))
        assert len(primary) == len(set(primary))

    def test_chunk_indices_continue_from_start_index(self, chunker, page_factory):
        pages = [page_factory(n) for n in range(1, 7)]

        chunks = _chunk(chunker, pages, page_batch_size=3, start_index=4).chunks

        assert [c.chunk_index for c in chunks] == [4, 5]
        assert chunks[0].chunk_id == "chunk_plan-1_0004"

    def test_first_chunk_has_no_previous_link(self, chunker, page_factory):
        chunks = _chunk(chunker, [page_factory(n) for n in range(1, 4)], page_batch_size=2).chunks

        assert chunks[0].metadata.overlap_info.prev_chunk_id is None
        assert chunks[0].metadata.overlap_info.prev_overlap_tokens == 0
        assert chunks[-1].metadata.overlap_info.next_chunk_id is None


class TestTokenBounds:
    """Chunk boundaries driven by token budgets."""

    def test_no_chunk_exceeds_max_tokens(self, page_factory):
        chunker = PlanChunker(target_tokens=300, min_tokens=200, max_tokens=400)
        pages = [page_factory(n, text=f"A-{100 + n}\nPLAN\n" + "X" * 600) for n in range(1, 11)]

        chunks = _chunk(chunker, pages, page_batch_size=10).chunks

        assert all(c.content.token_count <= 400 for c in chunks)
        assert sorted(p for c in chunks for p in c.primary_pages) == list(range(1, 11))

    def test_chunks_close_once_target_is_reached(self, page_factory):
        chunker = PlanChunker(target_tokens=300, min_tokens=200, max_tokens=400)
        pages = [page_factory(n, text=f"A-{100 + n}\nPLAN\n" + "X" * 600) for n in range(1, 11)]

        chunks = _chunk(chunker, pages, page_batch_size=10).chunks

        # Every chunk but the last reaches the minimum
        assert all(c.content.token_count >= 200 for c in chunks[:-1])

    def test_oversized_page_becomes_its_own_chunk(self, page_factory):
        chunker = PlanChunker(target_tokens=300, min_tokens=200, max_tokens=400)
        pages = [
            page_factory(1, text="A-101\nPLAN\n" + "X" * 200),
            page_factory(2, text="A-102\nPLAN\n" + "Y" * 4000),
            page_factory(3, text="A-103\nPLAN\n" + "Z" * 200),
        ]

        result = _chunk(chunker, pages, page_batch_size=5)

        oversized = [c for c in result.chunks if c.metadata.oversized]
        assert len(oversized) == 1
        assert oversized[0].primary_pages == [2]
        assert any("oversized" in warning for warning in result.warnings)

    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError):
            PlanChunker(target_tokens=1000, min_tokens=2000, max_tokens=4000)


class TestSafeguards:
    """Dedup hashes, location keys and no-multiply hints."""

    def test_schedule_pages_get_no_multiply_hints(self, page_factory):
        pages = [
            page_factory(1, text="A-001\nTITLE SHEET"),
            page_factory(2, text="A-201\nDOOR SCHEDULE\nQTY: 12"),
            page_factory(3, text="A-101\nFLOOR PLAN\nGRID B-3"),
        ]

        chunk = _chunk(PlanChunker(), pages).chunks[0]

        hints = chunk.safeguards.no_multiply_hints
        assert [h.page_no for h in hints] == [2]
        assert hints[0].sheet_type == SheetType.SCHEDULE
        assert "qty_12" in chunk.safeguards.quantity_signatures

    def test_dedupe_hash_is_stable(self, page_factory):
        pages = [page_factory(n) for n in range(1, 4)]

        first = _chunk(PlanChunker(), pages).chunks[0]
        second = _chunk(PlanChunker(), pages).chunks[0]

        assert first.safeguards.dedupe_hash == second.safeguards.dedupe_hash
        assert len(first.safeguards.dedupe_hash) == 16

    def test_location_keys_include_grids_and_rooms(self):
        keys = location_keys([], "SEE GRID C-4 AND ROOM 204 FOR DETAILS")

        assert "grid-C-4" in keys
        assert "room-204" in keys
