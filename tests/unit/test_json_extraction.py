"""Unit tests for JSON extraction and repair of model responses."""

import json

import pytest

from triageq.llm.json_extraction import extract_json, find_balanced_object


class TestExtractJSON:
    """Tests for extract_json."""

    def test_extract_json_valid(self):
        """Should parse valid JSON without repair."""
        result = extract_json('{"action": "move", "confidence": 0.95}')
        assert result["action"] == "move"
        assert result["confidence"] == 0.95

    def test_extract_json_markdown_code_block(self):
        """Should strip markdown code blocks."""
        result = extract_json('```json\n{"category": "receipt"}\n```')
        assert result["category"] == "receipt"

    def test_extract_json_markdown_without_json_tag(self):
        text = '```\n{"category": "job"}\n```'
        assert extract_json(text)["category"] == "job"

    def test_extract_json_with_surrounding_text(self):
        """Should find the object inside commentary."""
        text = 'Here is my answer:\n{"matched_rule": 2, "destination": "Receipts"}\nHope that helps!'
        result = extract_json(text)
        assert result == {"matched_rule": 2, "destination": "Receipts"}

    def test_braces_inside_strings_are_ignored(self):
        text = 'noise {"reasoning": "matched {rule} one", "action": "skip"} trailing }'
        assert extract_json(text)["reasoning"] == "matched {rule} one"

    def test_missing_comma_between_lines(self):
        """Should repair a missing comma between string fields."""
        text = '{\n"category": "receipt"\n"confidence": 0.9\n}'
        result = extract_json(text)
        assert result["category"] == "receipt"
        assert result["confidence"] == 0.9

    def test_missing_comma_after_number(self):
        text = '{\n"confidence": 0.9\n"reasoning": "ok"\n}'
        assert extract_json(text)["reasoning"] == "ok"

    def test_trailing_commas(self):
        text = '{"actions": [{"type": "star"},], "confidence": 1,}'
        result = extract_json(text)
        assert result["actions"] == [{"type": "star"}]

    def test_no_object_raises(self):
        with pytest.raises(json.JSONDecodeError):
            extract_json("I could not decide.")

    def test_empty_text_raises(self):
        with pytest.raises(json.JSONDecodeError):
            extract_json("")

    def test_top_level_list_is_not_accepted(self):
        """A bare list is not a response object; the first object inside is used."""
        assert extract_json('[{"a": 1}]') == {"a": 1}


class TestFindBalancedObject:
    def test_nested(self):
        assert find_balanced_object('x {"a": {"b": 1}} y') == '{"a": {"b": 1}}'

    def test_unbalanced(self):
        assert find_balanced_object('{"a": 1') is None
