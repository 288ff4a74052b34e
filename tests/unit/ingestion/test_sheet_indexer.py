"""Unit tests for SheetIndexer.

Tests rule-based classification of construction drawing pages.
"""

import pytest

from takeoff.models.sheet_models import ScaleUnits, SheetDiscipline, SheetType
from takeoff.services.ingestion.sheet_indexer import SheetIndexer


class TestSheetClassification:
    """Per-page classification."""

    @pytest.fixture
    def indexer(self):
        return SheetIndexer()

    def test_first_page_is_title_sheet(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(1, text="A-001\nCOVER SHEET\nPROJECT: MAPLE STREET DUPLEX"))

        assert sheet.sheet_type == SheetType.TITLE
        assert sheet.sheet_id == "A-001"
        assert sheet.discipline == SheetDiscipline.ARCHITECTURAL

    def test_structural_detail_with_imperial_scale(self, indexer, page_factory):
        text = 'S-201\nFOUNDATION DETAILS\nSCALE: 1/4" = 1\'-0"'

        sheet = indexer.index_page(page_factory(4, text=text))

        assert sheet.sheet_id == "S-201"
        assert sheet.title == "FOUNDATION DETAILS"
        assert sheet.discipline == SheetDiscipline.STRUCTURAL
        assert sheet.sheet_type == SheetType.DETAIL
        assert sheet.scale_ratio == 48
        assert sheet.units == ScaleUnits.IMPERIAL

    def test_electrical_schedule(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(6, text="E-301\nLIGHTING FIXTURE SCHEDULE"))

        assert sheet.discipline == SheetDiscipline.ELECTRICAL
        assert sheet.sheet_type == SheetType.SCHEDULE

    def test_mechanical_prefix_with_hvac_vocabulary(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(7, text="M-401\nDUCTWORK LAYOUT"))

        assert sheet.discipline == SheetDiscipline.HVAC

    def test_mechanical_prefix_without_hvac_vocabulary(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(7, text="M-402\nEQUIPMENT NOTES"))

        assert sheet.discipline == SheetDiscipline.MEP

    def test_metric_scale(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(3, text="C-101\nSITE PLAN\nSCALE 1:100"))

        assert sheet.scale_ratio == 100
        assert sheet.units == ScaleUnits.METRIC
        assert sheet.sheet_type == SheetType.SITE_PLAN
        assert sheet.discipline == SheetDiscipline.CIVIL

    def test_blank_page_is_unknown(self, indexer, page_factory):
        sheet = indexer.index_page(page_factory(5, text=""))

        assert sheet.sheet_id == "PAGE-5"
        assert sheet.discipline == SheetDiscipline.UNKNOWN
        assert sheet.sheet_type == SheetType.OTHER
        assert sheet.scale is None


class TestPlanSetsAndProjectMeta:
    """Grouping and project-level facts."""

    def test_group_plan_sets_in_first_seen_order(self, page_factory):
        indexer = SheetIndexer()
        sheets = indexer.build_index([
            page_factory(1, text="A-001\nTITLE SHEET"),
            page_factory(2, text="A-101\nFLOOR PLAN"),
            page_factory(3, text="A-102\nFLOOR PLAN"),
            page_factory(4, text="E-101\nELECTRICAL FLOOR PLAN"),
        ])

        groups = indexer.group_plan_sets(sheets)

        assert [g.group_id for g in groups] == [
            "title_architectural",
            "floor_plan_architectural",
            "floor_plan_electrical",
        ]
        assert groups[1].page_numbers == [2, 3]
        assert groups[1].sheet_ids == ["A-101", "A-102"]

    def test_project_meta_prefers_caller_context(self, page_factory):
        pages = [page_factory(1, text="A-001\nPROJECT: MAPLE STREET DUPLEX\n125 MAPLE STREET, IL 62704")]
        indexer = SheetIndexer()
        sheets = indexer.build_index(pages)

        detected = indexer.build_project_meta("plan-1", pages, sheets)
        overridden = indexer.build_project_meta("plan-1", pages, sheets, project_name="Duplex Remodel")

        assert detected.project_name == "MAPLE STREET DUPLEX"
        assert detected.detected_addresses
        assert overridden.project_name == "Duplex Remodel"
        assert overridden.total_pages == 1
