# -*- coding: utf-8 -*-
"""
Format parsers.

One function per format with the signature parse_x(raw_bytes, ctx). The
dispatch table mapping format tags to these functions is PARSERS in
kgforge.ingestion.transmutation.
"""
from kgforge.ingestion.parsers.base import ParseContext, split_text
from kgforge.ingestion.parsers.docx_parser import parse_docx
from kgforge.ingestion.parsers.markup_parser import parse_html, parse_xml
from kgforge.ingestion.parsers.pdf_parser import parse_pdf
from kgforge.ingestion.parsers.tabular_parser import parse_csv, parse_spreadsheet
from kgforge.ingestion.parsers.text_parser import parse_json, parse_markdown, parse_text

__all__ = [
    'ParseContext',
    'split_text',
    'parse_csv',
    'parse_docx',
    'parse_html',
    'parse_json',
    'parse_markdown',
    'parse_pdf',
    'parse_spreadsheet',
    'parse_text',
    'parse_xml',
]
