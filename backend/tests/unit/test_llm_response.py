"""
Unit Tests — LLM Response Processing
═════════════════════════════════════
Tests for paperflow/llm/response.py and EnrichmentResult parsing

Coverage:
  ✅ NDJSON "response" fragments concatenated in order
  ✅ Non-JSON / non-object / fragment-less lines skipped silently
  ✅ Blank body → ""
  ✅ Fenced JSON (``` and ```json) preferred over brace span
  ✅ Unfenced JSON → first "{" to last "}" span
  ✅ No braces → ""
  ✅ Valid JSON → EnrichmentResult with matching fields
  ✅ Invalid JSON / missing title / non-object → None
  ✅ Tags as objects, missing tags, flagFailedEnrichment alias
"""

from __future__ import annotations

import json

import pytest

from paperflow.llm.response import (
    extract_embedded_json,
    extract_json_response,
    parse_enrichment_result,
)
from paperflow.schemas.documents import EnrichmentResult


def _ndjson(*fragments: str, done: bool = True) -> str:
    lines = [json.dumps({"model": "mistral", "response": f, "done": False}) for f in fragments]
    if done:
        lines.append(json.dumps({"model": "mistral", "response": "", "done": True}))
    return "\n".join(lines)


@pytest.mark.unit
class TestExtractJsonResponse:

    def test_fragments_concatenated_in_order(self):
        body = (
            '{"response":"{\\"title\\": \\"Doc1\\"}"}\n'
            '{"response":"{\\"description\\": \\"Info\\"}"}'
        )
        result = extract_json_response(body)

        assert '{"title": "Doc1"}' in result
        assert '{"description": "Info"}' in result
        assert result.index("Doc1") < result.index("Info")

    def test_streamed_object_is_reassembled(self):
        body = _ndjson('{"ti', 'tle": "Inv', 'oice"}')
        assert extract_json_response(body) == '{"title": "Invoice"}'

    def test_bad_lines_contribute_nothing(self):
        body = "\n".join([
            "not json at all",
            '{"response": "A"}',
            "[1, 2, 3]",
            '{"other": "field"}',
            '{"response": {"nested": true}}',
            "",
            '{"response": "B"}',
        ])
        assert extract_json_response(body) == "AB"

    @pytest.mark.parametrize("body", [None, "", "   \n  "])
    def test_blank_body(self, body):
        assert extract_json_response(body) == ""


@pytest.mark.unit
class TestExtractEmbeddedJson:

    def test_fenced_json_is_extracted(self):
        text = 'Sure! Here it is:\n```{ "title": "AI Output" }```\nAnything else?'
        assert extract_embedded_json(text) == '{ "title": "AI Output" }'

    def test_fenced_json_with_language_tag(self):
        text = 'Result:\n```json\n{ "title": "Tagged" }\n```'
        assert extract_embedded_json(text) == '{ "title": "Tagged" }'

    def test_fence_wins_over_outer_braces(self):
        text = '{ "ignored": 1 } ```{ "title": "Fenced" }``` { "also": 2 }'
        assert extract_embedded_json(text) == '{ "title": "Fenced" }'

    def test_unfenced_falls_back_to_outer_brace_span(self):
        text = 'noise... { "title": "Fallback" } ...noise'
        assert extract_embedded_json(text) == '{ "title": "Fallback" }'

    def test_outer_span_covers_nested_objects(self):
        text = 'x {"title": "T", "meta": {"a": 1}} y'
        assert extract_embedded_json(text) == '{"title": "T", "meta": {"a": 1}}'

    @pytest.mark.parametrize("text", [None, "", "no json here", "} backwards {"])
    def test_nothing_to_extract(self, text):
        assert extract_embedded_json(text) == ""


@pytest.mark.unit
class TestParseEnrichmentResult:

    def test_valid_json(self):
        result = parse_enrichment_result(
            '{"title":"Test Title","date_sent":"25.05.2025","tags":["A","B","C","D"]}'
        )
        assert result == EnrichmentResult(
            title="Test Title", date_sent="25.05.2025", tags=["A", "B", "C", "D"],
        )
        assert result.flag_failed_enrichment is False

    @pytest.mark.parametrize("text", [
        "{ title: unquoted }",
        '{"wrongField":"value"}',
        '["title", "list"]',
        '"just a string"',
        "",
        None,
    ])
    def test_unusable_json_yields_none(self, text):
        assert parse_enrichment_result(text) is None

    def test_missing_tags_still_parsed(self):
        result = parse_enrichment_result('{"title":"T","date_sent":"01.02.2023"}')
        assert result is not None
        assert result.tags == []

    def test_tags_as_name_objects(self):
        result = parse_enrichment_result(
            '{"title":"T","tags":[{"name":"finance"},{"name":"tax"},{"other":1}]}'
        )
        assert result.tags == ["finance", "tax"]

    def test_flag_failed_enrichment_alias(self):
        result = parse_enrichment_result('{"title":"T","flagFailedEnrichment":true}')
        assert result.flag_failed_enrichment is True

    def test_extra_fields_ignored(self):
        result = parse_enrichment_result('{"title":"T","description":"ignored","tags":["x"]}')
        assert result.title == "T"
        assert result.tags == ["x"]

    def test_fallback_shape(self):
        fallback = EnrichmentResult.fallback()
        assert fallback.title == "Unknown Title"
        assert fallback.date_sent == "01.01.2000"
        assert fallback.tags == []
        assert fallback.flag_failed_enrichment is True
