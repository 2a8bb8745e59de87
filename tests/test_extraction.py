# Tests for the completion text extractor.
#
# Tests cover:
#   - extract_json_text(): clean input, fences, surrounding prose, array roots
#   - strip_code_fences(): tagged and untagged fences
#   - text with no JSON structure at all
#   - parses_as_json() on valid, invalid and deeply nested text

import json

from src.structured.extraction import extract_json_text, strip_code_fences
from src.structured.json_probe import parses_as_json


class TestExtractJsonText:
    """Test extract_json_text() on typical completion shapes."""

    def test_clean_json_returned_unchanged(self):
        raw = '  {"a": 1, "b": [true, null]}\n'
        assert extract_json_text(raw) is raw

    def test_clean_array_returned_unchanged(self):
        raw = '[{"name": "Ops Lead"}]'
        assert extract_json_text(raw) == raw

    def test_json_fence(self):
        assert extract_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_untagged_fence(self):
        assert extract_json_text("```\n[1, 2]\n```") == "[1, 2]"

    def test_prose_before_and_after(self):
        raw = 'Sure! {"a": {"b": 2}} Hope this helps.'
        assert extract_json_text(raw) == '{"a": {"b": 2}}'

    def test_prose_and_fence(self):
        raw = 'Here is the JSON:\n```json\n{"personas": []}\n```'
        assert json.loads(extract_json_text(raw)) == {"personas": []}

    def test_array_root_uses_last_bracket(self):
        raw = 'Result: [1, {"x": 2}] done'
        assert extract_json_text(raw) == '[1, {"x": 2}]'

    def test_no_json_structure(self):
        raw = "I cannot help with that request."
        assert extract_json_text(raw) == raw

    def test_malformed_body_is_kept(self):
        # Extraction only trims wrapping; later stages repair the body
        raw = 'Output: {"a": 1 "b": 2} end'
        assert extract_json_text(raw) == '{"a": 1 "b": 2}'

    def test_deeply_nested_input_does_not_raise(self):
        # json.loads gives up with RecursionError long before the end
        raw = "[" * 100000
        assert extract_json_text(raw) == raw


class TestStripCodeFences:
    """Test strip_code_fences() edge cases."""

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_fence_on_same_line(self):
        assert strip_code_fences('```json {"a": 1}```') == '{"a": 1}'

    def test_uppercase_language_tag(self):
        assert strip_code_fences('```JSON\n{"a": 1}\n```') == '{"a": 1}'


class TestParsesAsJson:
    def test_valid(self):
        assert parses_as_json('{"a": [1, 2]}')

    def test_invalid(self):
        assert not parses_as_json('{"a": 1,}')

    def test_deep_nesting_is_not_json(self):
        assert not parses_as_json("[" * 100000)
        assert not parses_as_json("{\"a\": " * 100000)
