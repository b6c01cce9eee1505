# -*- coding: utf-8 -*-
"""
Spreadsheet (pandas + openpyxl) and delimited-text (csv) parsers.

Both emit one TableRow per row with the first non-empty row of each sheet or
file flagged as the header. Rows are never flattened into prose: the
extraction engine relies on the header to turn columns into relationships.
"""
# Standard library
import csv
import io
import logging

# Third-party
import pandas as pd

# Local
from kgforge.ingestion.parsers.base import ParseContext, decode_text
from kgforge.utils.dataclasses import Locator
from kgforge.utils.errors import CorruptDocumentError

logger = logging.getLogger(__name__)


# ============================================================================
# SPREADSHEETS
# ============================================================================

def _trim_trailing_empty(cells):
    end = len(cells)
    while end and not cells[end - 1]:
        end -= 1
    return cells[:end]


def parse_spreadsheet(raw_bytes: bytes, ctx: ParseContext) -> None:
    try:
        sheets = pd.read_excel(
            io.BytesIO(raw_bytes),
            sheet_name=None,
            header=None,
            dtype=str,
            engine='openpyxl',
        )
    except Exception as e:
        raise CorruptDocumentError(f"Cannot open spreadsheet: {e}", ctx.source_id) from e

    ctx.metadata['sheets'] = ', '.join(str(name) for name in sheets)

    for table_index, (sheet_name, frame) in enumerate(sheets.items()):
        frame = frame.fillna('')
        header_seen = False
        for position, values in enumerate(frame.itertuples(index=False, name=None)):
            cells = _trim_trailing_empty([str(v).strip() for v in values])
            locator = Locator(sheet=str(sheet_name), table=table_index, row=position + 1)
            added = ctx.add_row(cells, locator, is_header=not header_seen)
            header_seen = header_seen or added

        if not header_seen:
            ctx.warn(f"Sheet '{sheet_name}' is empty")


# ============================================================================
# DELIMITED TEXT
# ============================================================================

def _sniff_delimiter(sample: str, ctx: ParseContext) -> str:
    try:
        return csv.Sniffer().sniff(sample, delimiters=',;\t|').delimiter
    except csv.Error:
        return ctx.config['csv_default_delimiter']


def parse_csv(raw_bytes: bytes, ctx: ParseContext) -> None:
    text = decode_text(raw_bytes, ctx)
    delimiter = _sniff_delimiter(text[:ctx.config['csv_sniff_bytes']], ctx)
    reader = csv.reader(io.StringIO(text), delimiter=delimiter, strict=True)

    header_width = None
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            ctx.warn(f"Skipped malformed line {reader.line_num}: {e}")
            continue

        cells = _trim_trailing_empty([cell.strip() for cell in row])
        if not cells:
            continue

        locator = Locator(row=reader.line_num)
        if header_width is None:
            if ctx.add_row(cells, locator, is_header=True):
                header_width = len(cells)
            continue

        if len(cells) > header_width:
            ctx.warn(
                f"Skipped line {reader.line_num}: {len(cells)} cells, header has {header_width}"
            )
            continue
        ctx.add_row(cells + [''] * (header_width - len(cells)), locator)
