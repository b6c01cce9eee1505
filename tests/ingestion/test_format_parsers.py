# -*- coding: utf-8 -*-
"""
Module: test_format_parsers.py
Package: tests.ingestion
Purpose: Unit tests for the per-format parsers behind transmutation.parse()

Tests:
- Markdown / text / JSON / XML / HTML structure and locators
- CSV header handling and partial-failure warnings
- DOCX and XLSX built in memory (python-docx / openpyxl)
- PDF heading detection, plain-text page fallback and unreadable pages (mocked PyMuPDF)
"""

# Standard library
import json
from io import BytesIO
from unittest.mock import patch

# Third-party
import pytest
from docx import Document
from openpyxl import Workbook

# Local
from kgforge.ingestion.transmutation import parse
from kgforge.utils.dataclasses import Heading, Locator, Paragraph, TableRow
from kgforge.utils.errors import CorruptDocumentError

pytestmark = pytest.mark.ingestion


def _of(doc, block_type):
    return [b for b in doc.blocks if isinstance(b, block_type)]


# ============================================================================
# TESTS: TEXT FORMATS
# ============================================================================

class TestMarkdown:

    SOURCE = "\n".join([
        "# Handbook",               # 1
        "",
        "Alice Smith leads the",    # 3
        "data team.",
        "",
        "Setext Title",             # 6
        "------------",
        "",
        "| Name | Manager |",       # 9
        "|------|---------|",
        "| Alice | Bob |",          # 11
        "",
        "```",                       # 13
        "code | not a table",
        "```",
        "***",
    ])

    def test_blocks_in_order(self):
        doc = parse(self.SOURCE.encode(), "markdown", "handbook.md")
        kinds = [type(b).__name__ for b in doc.blocks]
        assert kinds == ['Heading', 'Paragraph', 'Heading', 'TableRow', 'TableRow', 'Paragraph']

    def test_locators_and_content(self):
        doc = parse(self.SOURCE.encode(), "md", "handbook.md")
        heading, paragraph, setext = doc.blocks[0], doc.blocks[1], doc.blocks[2]
        assert heading == Heading(1, "Handbook", Locator(line=1))
        assert paragraph.text == "Alice Smith leads the data team."
        assert paragraph.locator == Locator(line=3)
        assert setext == Heading(2, "Setext Title", Locator(line=6))

        header, row = _of(doc, TableRow)
        assert header.is_header and header.cells == ("Name", "Manager")
        assert row.cells == ("Alice", "Bob") and row.locator == Locator(table=0, line=11)
        assert doc.blocks[-1].text == "code | not a table"


class TestPlainTextAndJson:

    def test_text_paragraphs_split_on_blank_lines(self):
        doc = parse(b"first line\ncontinues\n\n\nsecond", "text", "notes.txt")
        assert [b.text for b in doc.blocks] == ["first line continues", "second"]
        assert doc.blocks[1].locator == Locator(line=5)

    def test_long_paragraph_is_split(self):
        doc = parse(("word " * 100).encode(), "text", "long.txt", config={'max_block_chars': 50})
        assert len(doc.blocks) > 1
        assert all(len(b.text) <= 50 for b in doc.blocks)

    def test_json_array_of_records_becomes_table(self):
        payload = [{"name": "Alice", "manager": "Bob"}, {"name": "Carol", "manager": "Bob"}]
        doc = parse(json.dumps(payload).encode(), "json", "people.json")
        rows = _of(doc, TableRow)
        assert rows[0].is_header and rows[0].cells == ("name", "manager")
        assert [r.cells for r in rows[1:]] == [("Alice", "Bob"), ("Carol", "Bob")]

    def test_json_object_nesting(self):
        payload = {"company": "Acme", "hq": {"city": "Berlin"}, "tags": ["ai", "data"]}
        doc = parse(json.dumps(payload).encode(), "json", "acme.json")
        assert doc.blocks[0].text == "company: Acme\ntags: ai, data"
        assert doc.blocks[1] == Heading(1, "hq", Locator(line=1))
        assert doc.blocks[2].text == "city: Berlin"

    def test_truncated_json_recovers_with_warning(self):
        doc = parse(b'{\n  "company": "Acme",\n  "city": "Ber', "json", "broken.json")
        assert doc.warnings and "Invalid JSON" in doc.warnings[0]
        assert Paragraph("company: Acme", Locator(line=2)) in doc.blocks

    def test_deeply_nested_json_is_corrupt(self):
        depth = 100_000
        payload = ('{"a": ' * depth + '1' + '}' * depth).encode()
        with pytest.raises(CorruptDocumentError, match="nested too deeply"):
            parse(payload, "json", "deep.json")


# ============================================================================
# TESTS: MARKUP
# ============================================================================

class TestMarkup:

    def test_html_structure(self):
        html = b"""<html><head><title>Team</title><script>var x = 1;</script></head>
        <body><nav>Menu</nav><h1>People</h1><p>Alice works at <b>Acme</b>.</p>
        <ul><li>Item <p>nested</p></li></ul>
        <table><thead><tr><th>Name</th><th>Manager</th></tr></thead>
        <tbody><tr><td>Alice</td><td>Bob</td></tr></tbody></table></body></html>"""
        doc = parse(html, "html", "team.html")

        assert doc.metadata['title'] == "Team"
        assert doc.blocks[0] == Heading(1, "People", Locator(line=0))
        assert doc.blocks[1].text == "Alice works at Acme ."
        assert doc.blocks[2].text == "Item nested"
        rows = _of(doc, TableRow)
        assert rows[0].is_header and rows[1].cells == ("Alice", "Bob")
        assert not any("Menu" in getattr(b, 'text', '') for b in doc.blocks)

    def test_html_without_containers_falls_back_to_text(self):
        doc = parse(b"<div>Loose text<br>second line</div>", "html", "loose.html")
        assert [b.text for b in doc.blocks] == ["Loose text", "second line"]

    def test_html_container_text_kept_beside_headings(self):
        html = b"""<html><body><h1>Team</h1><div>Alice works at Acme</div>
        <section>Bob leads <span>procurement</span><p>Carol joined in 2020.</p>Dave consults.</section>
        <span>Erin audits.</span><!-- hidden note --></body></html>"""
        doc = parse(html, "html", "team.html")

        assert [b.text for b in doc.blocks] == [
            "Team", "Alice works at Acme", "Bob leads procurement",
            "Carol joined in 2020.", "Dave consults.", "Erin audits.",
        ]
        assert doc.blocks[0] == Heading(1, "Team", Locator(line=0))
        assert [b.locator.line for b in doc.blocks] == list(range(6))

    def test_xml_records_become_table(self):
        xml = b"""<org><title>Acme</title>
        <employee><name>Alice</name><manager>Bob</manager></employee>
        <employee><name>Carol</name><manager>Bob</manager></employee>
        <note>Founded 1999</note></org>"""
        doc = parse(xml, "xml", "org.xml")
        assert isinstance(doc.blocks[0], Heading) and doc.blocks[0].text == "Acme"
        rows = _of(doc, TableRow)
        assert rows[0].cells == ("name", "manager") and rows[0].is_header
        assert rows[2].cells == ("Carol", "Bob")
        assert doc.blocks[-1].text == "note: Founded 1999"

    def test_truncated_xml_keeps_partial_tree(self):
        doc = parse(b"<org><note>Kept</note><note>Also kept</note><broken", "xml", "cut.xml")
        assert doc.warnings
        assert [b.text for b in doc.blocks] == ["note: Kept", "note: Also kept"]

    def test_garbage_xml_is_corrupt(self):
        with pytest.raises(CorruptDocumentError):
            parse(b"not xml at all", "xml", "bad.xml")


# ============================================================================
# TESTS: TABULAR
# ============================================================================

class TestTabular:

    def test_csv_header_and_padding(self):
        doc = parse(b"Name,Manager,Team\nAlice,Bob\nCarol,Bob,Data\n", "csv", "people.csv")
        rows = _of(doc, TableRow)
        assert rows[0].is_header and rows[0].cells == ("Name", "Manager", "Team")
        assert rows[1].cells == ("Alice", "Bob", "")
        assert rows[2].locator == Locator(row=3)

    def test_csv_overlong_row_skipped_with_warning(self):
        doc = parse(b"Name,Manager\nAlice,Bob\nX,Y,Z\nCarol,Dan\n", "csv", "people.csv")
        assert len(_of(doc, TableRow)) == 3
        assert any("line 3" in w for w in doc.warnings)

    def test_semicolon_delimiter_sniffed(self):
        doc = parse(b"Name;Manager\nAlice;Bob\nCarol;Bob\n", "csv", "people.csv")
        assert doc.blocks[1].cells == ("Alice", "Bob")

    def test_xlsx_sheets(self):
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "People"
        sheet.append(["Name", "Manager"])
        sheet.append(["Alice", "Bob"])
        workbook.create_sheet("Empty")
        buffer = BytesIO()
        workbook.save(buffer)

        doc = parse(buffer.getvalue(), "xlsx", "org.xlsx")
        header, row = _of(doc, TableRow)
        assert header.is_header and header.cells == ("Name", "Manager")
        assert row.cells == ("Alice", "Bob")
        assert row.locator == Locator(sheet="People", table=0, row=2)
        assert any("Empty" in w for w in doc.warnings)

    def test_corrupt_xlsx(self):
        with pytest.raises(CorruptDocumentError):
            parse(b"PK\x03\x04 definitely not a workbook", "spreadsheet", "bad.xlsx")


# ============================================================================
# TESTS: OFFICE / PDF
# ============================================================================

class TestDocxAndPdf:

    def test_docx_headings_paragraphs_tables_in_order(self):
        document = Document()
        document.add_heading("Org Chart", level=0)
        document.add_heading("People", level=2)
        document.add_paragraph("Alice works at Acme.")
        table = document.add_table(rows=2, cols=2)
        table.cell(0, 0).text, table.cell(0, 1).text = "Name", "Manager"
        table.cell(1, 0).text, table.cell(1, 1).text = "Alice", "Bob"
        document.add_paragraph("After the table.")
        buffer = BytesIO()
        document.save(buffer)

        doc = parse(buffer.getvalue(), "docx", "org.docx")
        assert [(b.level, b.text) for b in _of(doc, Heading)] == [(1, "Org Chart"), (2, "People")]
        assert doc.blocks[2].text == "Alice works at Acme."
        assert doc.blocks[3].is_header and doc.blocks[4].cells == ("Alice", "Bob")
        assert doc.blocks[4].locator == Locator(table=0, row=1)
        assert doc.blocks[5].text == "After the table."

    def test_docx_garbage_is_corrupt(self):
        with pytest.raises(CorruptDocumentError):
            parse(b"no zip here", "docx", "bad.docx")

    def test_pdf_headings_by_font_size(self, fake_pdf):
        pdf = fake_pdf([[("Annual Report", 22.0), ("Acme grew in 2023 " * 5, 11.0),
                         ("Results", 15.0), ("Revenue doubled " * 5, 11.0)]], title="Report")
        with patch('kgforge.ingestion.parsers.pdf_parser.fitz.open', return_value=pdf):
            doc = parse(b"%PDF-1.7", "pdf", "report.pdf")

        assert doc.blocks[0] == Heading(1, "Annual Report", Locator(page=1, line=0))
        assert isinstance(doc.blocks[1], Paragraph)
        assert doc.blocks[2] == Heading(2, "Results", Locator(page=1, line=2))
        assert doc.metadata['title'] == "Report"
        assert pdf.closed

    def test_pdf_unreadable_page_is_warning(self, fake_pdf):
        pdf = fake_pdf([
            [("First readable paragraph.", 11.0)],
            RuntimeError("xref damaged"),
            [("Second readable paragraph.", 11.0), ("Third readable paragraph.", 11.0)],
        ])
        with patch('kgforge.ingestion.parsers.pdf_parser.fitz.open', return_value=pdf):
            doc = parse(b"%PDF-1.4", "pdf", "damaged.pdf")

        assert len(_of(doc, Paragraph)) == 3
        assert len(doc.warnings) == 1 and "Page 2" in doc.warnings[0]

    def test_pdf_page_falls_back_to_plain_text(self, fake_pdf):
        pdf = fake_pdf([
            [("Overview", 20.0), ("Acme grew in 2023 " * 5, 11.0)],
            "Alice Smith joined Acme.\n\nBob Jones\nleads the data team.\n",
        ])
        with patch('kgforge.ingestion.parsers.pdf_parser.fitz.open', return_value=pdf):
            doc = parse(b"%PDF-1.4", "pdf", "mixed.pdf")

        assert doc.warnings == []
        page_two = [b for b in doc.blocks if b.locator.page == 2]
        assert page_two == [
            Paragraph("Alice Smith joined Acme.", Locator(page=2, line=0)),
            Paragraph("Bob Jones leads the data team.", Locator(page=2, line=1)),
        ]
        assert doc.blocks[0] == Heading(1, "Overview", Locator(page=1, line=0))

    def test_pdf_unopenable_is_corrupt(self):
        with patch('kgforge.ingestion.parsers.pdf_parser.fitz.open', side_effect=RuntimeError("broken")):
            with pytest.raises(CorruptDocumentError):
                parse(b"garbage", "pdf", "bad.pdf")
