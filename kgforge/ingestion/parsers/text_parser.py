# -*- coding: utf-8 -*-
"""
Markdown, plain-text and JSON parsers.

Markdown is parsed line by line: ATX and setext headings, pipe tables (first
row header, alignment row dropped), fenced code kept verbatim as one
paragraph, and everything else joined into blank-line separated paragraphs.
Locators carry the 1-based line where the block starts.

JSON arrays of flat objects become tables; objects become a heading per
nested key path and one paragraph of "key: value" lines per object.
Truncated or invalid JSON is recovered line by line with a warning; nesting
too deep to parse is a CorruptDocumentError.
"""
# Standard library
import json
import logging
import re
from typing import Any, List, Optional

# Local
from kgforge.ingestion.parsers.base import ParseContext, decode_text
from kgforge.utils.dataclasses import Locator
from kgforge.utils.errors import CorruptDocumentError

logger = logging.getLogger(__name__)

_ATX_HEADING = re.compile(r'^\s{0,3}(#{1,6})\s+(.*?)\s*#*\s*$')
_SETEXT_H1 = re.compile(r'^\s{0,3}=+\s*$')
_SETEXT_H2 = re.compile(r'^\s{0,3}-+\s*$')
_TABLE_SEPARATOR = re.compile(r'^\s*\|?\s*:?-{1,}:?\s*(\|\s*:?-{1,}:?\s*)*\|?\s*$')
_FENCE = re.compile(r'^\s{0,3}(```|~~~)')
_THEMATIC_BREAK = re.compile(r'^\s{0,3}([-*_])(\s*\1){2,}\s*$')


def _table_cells(line: str) -> List[str]:
    stripped = line.strip()
    if stripped.startswith('|'):
        stripped = stripped[1:]
    if stripped.endswith('|'):
        stripped = stripped[:-1]
    return [cell.strip() for cell in stripped.split('|')]


# ============================================================================
# MARKDOWN
# ============================================================================

def parse_markdown(raw_bytes: bytes, ctx: ParseContext) -> None:
    lines = decode_text(raw_bytes, ctx).splitlines()

    buffer: List[str] = []
    buffer_start: Optional[int] = None
    table_index = 0

    def flush():
        nonlocal buffer, buffer_start
        if buffer:
            ctx.add_paragraph(' '.join(buffer), Locator(line=buffer_start))
        buffer, buffer_start = [], None

    i = 0
    while i < len(lines):
        line = lines[i]
        line_no = i + 1

        if _FENCE.match(line):
            flush()
            fence = _FENCE.match(line).group(1)
            code = []
            i += 1
            while i < len(lines) and not lines[i].strip().startswith(fence):
                code.append(lines[i])
                i += 1
            ctx.add_paragraph('\n'.join(code), Locator(line=line_no))
            i += 1
            continue

        if not line.strip():
            flush()
            i += 1
            continue

        heading = _ATX_HEADING.match(line)
        if heading:
            flush()
            ctx.add_heading(len(heading.group(1)), heading.group(2), Locator(line=line_no))
            i += 1
            continue

        if buffer and (_SETEXT_H1.match(line) or _SETEXT_H2.match(line)):
            level = 1 if _SETEXT_H1.match(line) else 2
            ctx.add_heading(level, ' '.join(buffer), Locator(line=buffer_start))
            buffer, buffer_start = [], None
            i += 1
            continue

        if _THEMATIC_BREAK.match(line):
            flush()
            i += 1
            continue

        next_line = lines[i + 1] if i + 1 < len(lines) else ''
        if '|' in line and _TABLE_SEPARATOR.match(next_line) and '-' in next_line:
            flush()
            ctx.add_row(_table_cells(line), Locator(table=table_index, line=line_no),
                        is_header=True)
            i += 2
            while i < len(lines) and '|' in lines[i] and lines[i].strip():
                ctx.add_row(_table_cells(lines[i]), Locator(table=table_index, line=i + 1))
                i += 1
            table_index += 1
            continue

        if buffer_start is None:
            buffer_start = line_no
        buffer.append(line.strip())
        i += 1

    flush()


# ============================================================================
# PLAIN TEXT
# ============================================================================

def parse_text(raw_bytes: bytes, ctx: ParseContext) -> None:
    buffer: List[str] = []
    start = None
    for line_no, line in enumerate(decode_text(raw_bytes, ctx).splitlines(), start=1):
        if line.strip():
            if start is None:
                start = line_no
            buffer.append(line.strip())
            continue
        if buffer:
            ctx.add_paragraph(' '.join(buffer), Locator(line=start))
        buffer, start = [], None
    if buffer:
        ctx.add_paragraph(' '.join(buffer), Locator(line=start))


# ============================================================================
# JSON
# ============================================================================

def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _scalar_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def _cell_text(value: Any) -> str:
    return _scalar_text(value) if _is_scalar(value) else json.dumps(value, ensure_ascii=False)


class _JsonWalker:
    def __init__(self, ctx: ParseContext):
        self.ctx = ctx
        self.ordinal = 0
        self.table_index = 0

    def _locator(self) -> Locator:
        locator = Locator(line=self.ordinal)
        self.ordinal += 1
        return locator

    def _emit_table(self, records: List[dict]) -> None:
        header: List[str] = []
        for record in records:
            for key in record:
                if key not in header:
                    header.append(key)
        table = self.table_index
        self.table_index += 1
        self.ctx.add_row(header, Locator(table=table, row=0), is_header=True)
        for row, record in enumerate(records, start=1):
            self.ctx.add_row([_cell_text(record.get(key)) for key in header],
                             Locator(table=table, row=row))

    def walk(self, value: Any, path: str = '', depth: int = 0) -> None:
        if isinstance(value, dict):
            scalars = [f"{key}: {_scalar_text(v)}" for key, v in value.items()
                       if _is_scalar(v) and _scalar_text(v) != '']
            scalar_lists = [f"{key}: {', '.join(_scalar_text(x) for x in v)}"
                            for key, v in value.items()
                            if isinstance(v, list) and v and all(_is_scalar(x) for x in v)]
            if scalars or scalar_lists:
                self.ctx.add_paragraph('\n'.join(scalars + scalar_lists), self._locator())
            for key, child in value.items():
                if _is_scalar(child):
                    continue
                if isinstance(child, list) and child and all(_is_scalar(x) for x in child):
                    continue
                child_path = f"{path}.{key}" if path else str(key)
                self.ctx.add_heading(depth + 1, child_path, self._locator())
                self.walk(child, child_path, depth + 1)
            return

        if isinstance(value, list):
            if value and all(isinstance(item, dict) for item in value) and \
                    all(_is_scalar(v) for item in value for v in item.values()):
                self._emit_table(value)
                return
            for index, item in enumerate(value):
                item_path = f"{path}[{index}]"
                if _is_scalar(item):
                    self.ctx.add_paragraph(_scalar_text(item), self._locator())
                    continue
                self.ctx.add_heading(depth + 1, item_path, self._locator())
                self.walk(item, item_path, depth + 1)
            return

        self.ctx.add_paragraph(_scalar_text(value), self._locator())


_JSON_PUNCTUATION = ' \t{}[],'


def parse_json(raw_bytes: bytes, ctx: ParseContext) -> None:
    text = decode_text(raw_bytes, ctx)
    try:
        data = json.loads(text)
    except RecursionError as e:
        raise CorruptDocumentError("JSON nested too deeply to parse", ctx.source_id) from e
    except json.JSONDecodeError as e:
        ctx.warn(f"Invalid JSON ({e}); recovered content line by line")
        for line_no, line in enumerate(text.splitlines(), start=1):
            cleaned = line.strip(_JSON_PUNCTUATION)
            cleaned = re.sub(r'"\s*:\s*"?', ': ', cleaned).replace('"', '').strip(': ')
            ctx.add_paragraph(cleaned, Locator(line=line_no))
        return

    try:
        _JsonWalker(ctx).walk(data)
    except RecursionError as e:
        raise CorruptDocumentError("JSON nested too deeply to walk", ctx.source_id) from e
