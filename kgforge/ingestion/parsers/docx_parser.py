# -*- coding: utf-8 -*-
"""
DOCX parser (python-docx).

Walks the document body in order so tables stay between the paragraphs that
surround them. "Title" and "Heading N" styles become headings; the first row
of every table is treated as its header row.
"""
# Standard library
import logging
import re
from io import BytesIO
from typing import Optional

# Third-party
from docx import Document
from docx.table import Table

# Local
from kgforge.ingestion.parsers.base import ParseContext
from kgforge.utils.dataclasses import Locator
from kgforge.utils.errors import CorruptDocumentError

logger = logging.getLogger(__name__)

_HEADING_STYLE = re.compile(r'^heading\s*(\d)?', re.IGNORECASE)


def _heading_level(style_name: str) -> Optional[int]:
    if style_name.lower() == 'title':
        return 1
    match = _HEADING_STYLE.match(style_name)
    if not match:
        return None
    return int(match.group(1)) if match.group(1) else 1


def _add_table(table: Table, table_index: int, ctx: ParseContext) -> None:
    header_seen = False
    for row_index, row in enumerate(table.rows):
        try:
            cells = [cell.text for cell in row.cells]
        except Exception as e:
            ctx.warn(f"Table {table_index} row {row_index} unreadable: {e}")
            continue
        added = ctx.add_row(
            cells,
            Locator(table=table_index, row=row_index),
            is_header=not header_seen,
        )
        header_seen = header_seen or added


def parse_docx(raw_bytes: bytes, ctx: ParseContext) -> None:
    try:
        doc = Document(BytesIO(raw_bytes))
    except Exception as e:
        raise CorruptDocumentError(f"Cannot open DOCX: {e}", ctx.source_id) from e

    props = doc.core_properties
    if props.title:
        ctx.metadata['title'] = props.title
    if props.author:
        ctx.metadata['author'] = props.author

    paragraph_index = 0
    table_index = 0
    for item in doc.iter_inner_content():
        if isinstance(item, Table):
            _add_table(item, table_index, ctx)
            table_index += 1
            continue

        locator = Locator(line=paragraph_index)
        paragraph_index += 1
        text = item.text
        style_name = item.style.name if item.style is not None else ''
        level = _heading_level(style_name or '')
        if level is not None:
            ctx.add_heading(level, text, locator)
        else:
            ctx.add_paragraph(text, locator)

    ctx.metadata['table_count'] = str(table_index)
