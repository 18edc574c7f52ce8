"""
Unit Tests — Events & Schemas
══════════════════════════════
Tests for paperflow/events.py and paperflow/schemas/documents.py

Coverage:
  ✅ Events reject a missing document_id / payload (InvalidEvent)
  ✅ OcrEvent owns a copy of the bytes; None → b""
  ✅ Message form survives JSON transport (base64 PDF bytes)
  ✅ IndexableDocument defaults: tags [], full_text "", year = current year
  ✅ IndexableDocument.from_document: title/filename, year, blank pages
  ✅ SearchRequest bounds, SearchResult.paginate
"""

from __future__ import annotations

import json
from datetime import date

import pytest
from pydantic import ValidationError

from paperflow.core.errors import InvalidEvent
from paperflow.events import EnrichmentEvent, IndexEvent, OcrEvent
from paperflow.models.documents import Document, build_pages
from paperflow.schemas.documents import IndexableDocument, SearchRequest, SearchResult


@pytest.mark.unit
class TestEventValidation:

    def test_ocr_event_requires_document_id(self):
        with pytest.raises(InvalidEvent):
            OcrEvent(None, b"%PDF")

    def test_enrichment_event_requires_document_id(self):
        with pytest.raises(InvalidEvent):
            EnrichmentEvent(None, ("text",))

    def test_index_event_requires_payload(self):
        with pytest.raises(InvalidEvent):
            IndexEvent(None)

    def test_index_message_without_payload(self):
        with pytest.raises(InvalidEvent):
            IndexEvent.from_message({"document_id": 1})

    def test_invalid_event_is_a_value_error(self):
        assert issubclass(InvalidEvent, ValueError)


@pytest.mark.unit
class TestEventPayloads:

    def test_ocr_event_copies_bytes(self):
        buffer = bytearray(b"%PDF-1.7 original")
        event = OcrEvent(1, buffer)
        buffer[:4] = b"XXXX"

        assert event.pdf_bytes == b"%PDF-1.7 original"
        assert isinstance(event.pdf_bytes, bytes)

    def test_ocr_event_none_bytes(self):
        assert OcrEvent(1, None).pdf_bytes == b""

    def test_enrichment_event_texts_are_a_tuple(self):
        event = EnrichmentEvent(3, ["page one", "page two"])
        assert event.page_texts == ("page one", "page two")

    def test_ocr_message_survives_json(self):
        event = OcrEvent(7, b"%PDF-1.7\x00\xff binary")

        wire = json.loads(json.dumps(event.to_message()))

        assert OcrEvent.from_message(wire) == event

    def test_index_message_survives_json(self):
        event = IndexEvent(IndexableDocument(
            id=5, file_name="Lease", tags=["housing"], year=2022,
            full_text="rent", username="alice",
        ))

        wire = json.loads(json.dumps(event.to_message()))

        restored = IndexEvent.from_message(wire)
        assert restored.payload == event.payload
        assert restored.document_id == 5


@pytest.mark.unit
class TestIndexableDocument:

    def test_defaults(self):
        doc = IndexableDocument(id=1, tags=None, full_text=None)

        assert doc.tags == []
        assert doc.full_text == ""
        assert doc.year == date.today().year

    def test_from_document_uses_title_and_date(self):
        source = Document(
            filename="scan_001.pdf", owner_username="alice", id=9,
            title="Water Bill", tags=["utilities"], date_on_document=date(2021, 6, 30),
        )
        source.pages = build_pages(9, ["page one", "   ", "page three"])

        doc = IndexableDocument.from_document(source)

        assert doc.id == 9
        assert doc.file_name == "Water Bill"
        assert doc.year == 2021
        assert doc.tags == ["utilities"]
        assert doc.username == "alice"
        assert doc.full_text == "page one\npage three"

    def test_from_document_falls_back_to_filename_and_current_year(self):
        source = Document(filename="scan_002.pdf", owner_username="bob", id=3)

        doc = IndexableDocument.from_document(source)

        assert doc.file_name == "scan_002.pdf"
        assert doc.year == date.today().year
        assert doc.full_text == ""

    def test_from_document_requires_id(self):
        with pytest.raises(ValueError):
            IndexableDocument.from_document(Document(filename="a.pdf", owner_username="u"))


@pytest.mark.unit
class TestSearchContracts:

    @pytest.mark.parametrize("kwargs", [{"page": -1}, {"size": 0}, {"size": 101}])
    def test_request_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            SearchRequest(username="alice", **kwargs)

    def test_request_defaults(self):
        request = SearchRequest(username="alice")
        assert (request.query, request.page, request.size) == ("", 0, 10)

    @pytest.mark.parametrize("total,size,pages", [(0, 10, 0), (10, 10, 1), (11, 10, 2), (7, 3, 3)])
    def test_paginate_total_pages(self, total, size, pages):
        assert SearchResult.paginate([], total, 0, size).total_pages == pages
