# -*- coding: utf-8 -*-
"""
Module: test_transmutation.py
Package: tests.ingestion
Purpose: Unit tests for parser dispatch, failure policy and format detection

Tests:
- Unsupported / oversized / empty inputs raise the right ParseError
- Every DocumentFormat has a parser
- detect_format by extension and by content
"""

# Standard library
from io import BytesIO

# Third-party
import pytest
from openpyxl import Workbook

# Local
from kgforge.ingestion.format_detection import detect_format
from kgforge.ingestion.transmutation import PARSERS, parse, resolve_format
from kgforge.utils.dataclasses import DocumentFormat
from kgforge.utils.errors import (
    DocumentTooLargeError,
    EmptyExtractionError,
    ParseError,
    UnsupportedFormatError,
)

pytestmark = pytest.mark.ingestion


# ============================================================================
# TESTS: DISPATCH
# ============================================================================

class TestDispatch:

    def test_every_format_registered(self):
        assert set(PARSERS) == set(DocumentFormat)

    def test_resolve_aliases(self):
        assert resolve_format("XLSX") is DocumentFormat.SPREADSHEET
        assert resolve_format(DocumentFormat.PDF) is DocumentFormat.PDF

    def test_unsupported_format(self):
        with pytest.raises(UnsupportedFormatError) as excinfo:
            parse(b"slides", "pptx", "deck.pptx")
        assert isinstance(excinfo.value, ParseError)

    def test_too_large(self):
        with pytest.raises(DocumentTooLargeError):
            parse(b"x" * 100, "text", "big.txt", config={'max_bytes': 10})

    def test_empty_document(self):
        with pytest.raises(EmptyExtractionError) as excinfo:
            parse(b"   \n\n  ", "text", "blank.txt")
        assert excinfo.value.source_id == "blank.txt"

    def test_latin1_fallback_warns(self):
        doc = parse("Café Zürich".encode('latin-1'), "text", "cafe.txt")
        assert doc.blocks[0].text == "Café Zürich"
        assert any("latin-1" in w for w in doc.warnings)

    def test_document_carries_source_and_format(self):
        doc = parse(b"# Title\n\nBody", "markdown", "a.md")
        assert doc.source_id == "a.md"
        assert doc.format is DocumentFormat.MARKDOWN


# ============================================================================
# TESTS: FORMAT DETECTION
# ============================================================================

class TestDetectFormat:

    @pytest.mark.parametrize("name,expected", [
        ("report.PDF", DocumentFormat.PDF),
        ("org.xlsx", DocumentFormat.SPREADSHEET),
        ("people.tsv", DocumentFormat.CSV),
        ("notes.markdown", DocumentFormat.MARKDOWN),
        ("page.htm", DocumentFormat.HTML),
    ])
    def test_by_extension(self, name, expected):
        assert detect_format(name) is expected

    @pytest.mark.parametrize("content,expected", [
        (b"%PDF-1.7 ...", DocumentFormat.PDF),
        (b"<!DOCTYPE html><html></html>", DocumentFormat.HTML),
        (b"<?xml version='1.0'?><org/>", DocumentFormat.XML),
        (b"\xef\xbb\xbf  [1, 2]", DocumentFormat.JSON),
        (b"# Heading", DocumentFormat.MARKDOWN),
        (b"just words", DocumentFormat.TEXT),
    ])
    def test_by_content(self, content, expected):
        assert detect_format(None, content) is expected

    def test_zip_container_inspected(self):
        workbook = Workbook()
        workbook.active.append(["Name"])
        buffer = BytesIO()
        workbook.save(buffer)
        assert detect_format("upload.bin", buffer.getvalue()) is DocumentFormat.SPREADSHEET
