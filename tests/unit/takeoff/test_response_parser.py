"""Unit tests for model output decoding."""

import json

from takeoff.services.takeoff.response_parser import (
    Recognized,
    Unparsed,
    decode_batch_payload,
    decode_scoping_payload,
)

BATCH_REPLY = {
    "items": [
        {"name": "2x4 stud", "quantity": 48, "unit": "ea", "page_refs": [{"pdf": "a.pdf", "page": 2}]},
    ],
    "analysis": [
        {"type": "code_issue", "title": "Egress window", "description": "Bedroom 2 window undersized", "severity": "high"},
    ],
}


class TestBatchDecoding:

    def test_clean_json(self):
        result = decode_batch_payload(json.dumps(BATCH_REPLY))

        assert isinstance(result, Recognized)
        assert result.repaired is False
        assert result.payload.items[0].name == "2x4 stud"
        assert result.payload.analysis[0].severity == "high"

    def test_fenced_json_with_prose(self):
        raw = "Here is the takeoff:\n```json\n" + json.dumps(BATCH_REPLY) + "\n```\nLet me know."

        result = decode_batch_payload(raw)

        assert isinstance(result, Recognized)
        assert result.repaired is True
        assert len(result.payload.items) == 1

    def test_trailing_commas_repaired(self):
        raw = '{"items": [{"name": "sill plate", "quantity": 60, "unit": "lf",},], "analysis": [],}'

        result = decode_batch_payload(raw)

        assert isinstance(result, Recognized)
        assert result.payload.items[0].unit == "lf"

    def test_invalid_entries_are_dropped_and_counted(self):
        raw = json.dumps({"items": [{"name": "joist hanger", "quantity": 12}, {"name": "   "}, {"quantity": 3}]})

        result = decode_batch_payload(raw)

        assert isinstance(result, Recognized)
        assert [i.name for i in result.payload.items] == ["joist hanger"]
        assert result.dropped == 2

    def test_missing_keys_is_unparsed(self):
        result = decode_batch_payload('{"rows": []}')

        assert isinstance(result, Unparsed)
        assert "missing" in result.reason
        assert result.raw_text == '{"rows": []}'

    def test_garbage_is_unparsed(self):
        result = decode_batch_payload("I could not read these drawings.")

        assert isinstance(result, Unparsed)
        assert result.reason

    def test_empty_reply(self):
        result = decode_batch_payload("   ")

        assert isinstance(result, Unparsed)
        assert result.reason == "empty response"

    def test_items_must_be_a_list(self):
        result = decode_batch_payload('{"items": {"name": "stud"}}')

        assert isinstance(result, Unparsed)
        assert "'items' must be a list" in result.reason


class TestScopingDecoding:

    def test_segments_and_questions(self):
        raw = json.dumps({
            "suggested_segments": [{"industry": "framing", "categories": ["walls", "roof"]}],
            "questions": ["Is the garage in scope?"],
        })

        result = decode_scoping_payload(raw)

        assert isinstance(result, Recognized)
        assert result.payload.suggested_segments[0].industry == "framing"
        assert result.payload.questions == ["Is the garage in scope?"]

    def test_questions_must_be_strings(self):
        result = decode_scoping_payload('{"suggested_segments": [], "questions": [1, 2]}')

        assert isinstance(result, Unparsed)
