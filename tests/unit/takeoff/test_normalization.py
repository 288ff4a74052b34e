"""Unit tests for takeoff item canonicalization."""

import hashlib

import pytest

from takeoff.services.takeoff.normalization import (
    normalize_location,
    normalize_name,
    normalize_unit,
    quantity_row,
    signature_hash,
)


class TestCanonicalForms:

    @pytest.mark.parametrize("raw,expected", [
        ("2x4 Stud", "2x4 stud"),
        ("  2X4   STUD  ", "2x4 stud"),
        ("Gyp. Board (5/8\")", "gyp. board 5/8\""),
    ])
    def test_normalize_name(self, raw, expected):
        assert normalize_name(raw) == expected

    @pytest.mark.parametrize("raw,expected", [
        ("each", "EA"),
        ("Sq Ft", "SF"),
        ("lf.", "LF"),
        ("ton", "TON"),
    ])
    def test_normalize_unit(self, raw, expected):
        assert normalize_unit(raw) == expected

    def test_location_separators_collapse(self):
        assert normalize_location("Wall A3") == normalize_location("wall-A3") == "wall-a3"
        assert normalize_location(None) == ""


class TestSignature:

    def test_signature_is_sha256_prefix_of_canonical_fields(self):
        expected = hashlib.sha256("2x4 stud|EA|wall-a3|48.00".encode("utf-8")).hexdigest()[:16]

        assert signature_hash("2x4 Stud", "each", "Wall A3", 48) == expected

    def test_quantity_changes_signature(self):
        assert signature_hash("2x4 stud", "ea", "", 48) != signature_hash("2x4 stud", "ea", "", 49)

    def test_quantity_row_prefers_location_key(self, item_factory):
        item = item_factory(location="Level 1", location_key="grid-B-3", pages=(3, 2, 3))

        row = quantity_row(item)

        assert row.location_key == "grid-b-3"
        assert row.pages == [2, 3]
        assert row.unit == "EA"
        assert row.signature_hash == signature_hash("2x4 stud", "ea", "grid-B-3", 48)
