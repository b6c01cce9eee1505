# -*- coding: utf-8 -*-
"""
HTML (BeautifulSoup) and XML (ElementTree) parsers.

HTML: headings h1-h6, text containers (p, li, blockquote, pre, dd, dt,
figcaption) and tables in document order. Content inside a table or nested
inside another collected container is emitted once, by the outermost element.
Text sitting directly in structural containers (div, section, span runs, ...)
becomes its own paragraph, split at <br> and at collected children.

XML: the tree read so far is kept when the stream breaks mid-document.
Repeated sibling records whose children are all leaves become table rows
(child tag names as header); heading-like elements become headings; other
leaves become "tag: text" paragraphs.
"""
# Standard library
import logging
import re
import xml.etree.ElementTree as ET
from io import BytesIO
from typing import List

# Third-party
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

# Local
from kgforge.ingestion.parsers.base import ParseContext
from kgforge.utils.dataclasses import Locator
from kgforge.utils.errors import CorruptDocumentError

logger = logging.getLogger(__name__)

HEADING_TAGS = ['h1', 'h2', 'h3', 'h4', 'h5', 'h6']
TEXT_TAGS = ['p', 'li', 'blockquote', 'pre', 'dd', 'dt', 'figcaption']
COLLECTED_TAGS = HEADING_TAGS + TEXT_TAGS + ['table']
CONTAINER_TAGS = [
    'body', 'div', 'section', 'article', 'main', 'aside', 'form', 'address',
    'ul', 'ol', 'dl', 'figure', 'details', 'fieldset',
]


# ============================================================================
# HTML
# ============================================================================

def _html_table(table, table_index: int, ctx: ParseContext) -> None:
    header_seen = False
    for row_index, tr in enumerate(table.find_all('tr')):
        if tr.find_parent('table') is not table:
            continue  # nested table row
        cells = tr.find_all(['th', 'td'], recursive=False)
        texts = [cell.get_text(' ', strip=True) for cell in cells]
        is_header = (
            not header_seen
            and (tr.find_parent('thead') is not None or all(c.name == 'th' for c in cells))
        )
        if ctx.add_row(texts, Locator(table=table_index, row=row_index), is_header=is_header):
            header_seen = True


def parse_html(raw_bytes: bytes, ctx: ParseContext) -> None:
    soup = BeautifulSoup(raw_bytes, 'html.parser')
    if soup.title and soup.title.string:
        ctx.metadata['title'] = soup.title.string.strip()
    for tag in soup(ctx.config['html_drop_tags'] + ['head']):
        tag.decompose()

    counters = {'line': 0, 'table': 0}

    def emit_loose(pieces: List[str]) -> None:
        text = ' '.join(''.join(pieces).split())
        pieces.clear()
        if text:
            ctx.add_paragraph(text, Locator(line=counters['line']))
            counters['line'] += 1

    def walk(node) -> None:
        loose: List[str] = []
        for child in node.children:
            if isinstance(child, NavigableString):
                if not isinstance(child, PreformattedString):
                    loose.append(str(child))
                continue
            if not isinstance(child, Tag):
                continue

            if child.name == 'br':
                emit_loose(loose)
            elif child.name == 'table':
                emit_loose(loose)
                _html_table(child, counters['table'], ctx)
                counters['table'] += 1
            elif child.name in HEADING_TAGS or child.name in TEXT_TAGS:
                emit_loose(loose)
                text = child.get_text(' ', strip=True)
                if not text:
                    continue
                locator = Locator(line=counters['line'])
                counters['line'] += 1
                if child.name in HEADING_TAGS:
                    ctx.add_heading(int(child.name[1]), text, locator)
                else:
                    ctx.add_paragraph(text, locator)
            elif child.name in CONTAINER_TAGS or child.find(COLLECTED_TAGS + ['br']) is not None:
                # Direct text of a container is its own paragraph
                emit_loose(loose)
                walk(child)
            else:
                loose.append(child.get_text(' '))
        emit_loose(loose)

    walk(soup.body or soup)


# ============================================================================
# XML
# ============================================================================

def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1]


def _is_leaf(element) -> bool:
    return len(element) == 0


def _is_record(element) -> bool:
    return len(element) > 0 and all(_is_leaf(child) for child in element)


def _heading_level(name: str, depth: int) -> int:
    match = re.match(r'^h([1-6])$', name)
    return int(match.group(1)) if match else min(depth, 6)


class _XmlWalker:
    def __init__(self, ctx: ParseContext):
        self.ctx = ctx
        self.heading_tags = {t.lower() for t in ctx.config['xml_heading_tags']}
        self.ordinal = 0
        self.table_index = 0

    def _next_locator(self) -> Locator:
        locator = Locator(line=self.ordinal)
        self.ordinal += 1
        return locator

    def _emit_table(self, records: List) -> None:
        header: List[str] = []
        for record in records:
            for child in record:
                name = _local_name(child.tag)
                if name not in header:
                    header.append(name)
        table = self.table_index
        self.table_index += 1
        self.ctx.add_row(header, Locator(table=table, row=0), is_header=True)
        for row_index, record in enumerate(records, start=1):
            values = {}
            for child in record:
                values.setdefault(_local_name(child.tag), (child.text or '').strip())
            self.ctx.add_row([values.get(name, '') for name in header],
                             Locator(table=table, row=row_index))

    def walk(self, element, depth: int = 1) -> None:
        name = _local_name(element.tag)
        text = (element.text or '').strip()

        if _is_leaf(element):
            if not text:
                return
            if name.lower() in self.heading_tags:
                self.ctx.add_heading(_heading_level(name.lower(), depth), text, self._next_locator())
            else:
                self.ctx.add_paragraph(f"{name}: {text}", self._next_locator())
            return

        if text:
            self.ctx.add_paragraph(text, self._next_locator())

        children = list(element)
        tag_counts = {}
        for child in children:
            key = _local_name(child.tag)
            tag_counts[key] = tag_counts.get(key, 0) + 1

        emitted_groups = set()
        for child in children:
            key = _local_name(child.tag)
            group = [c for c in children if _local_name(c.tag) == key]
            if tag_counts[key] > 1 and all(_is_record(c) for c in group):
                if key not in emitted_groups:
                    emitted_groups.add(key)
                    self._emit_table(group)
                continue
            self.walk(child, depth + 1)


def parse_xml(raw_bytes: bytes, ctx: ParseContext) -> None:
    root = None
    try:
        for _, element in ET.iterparse(BytesIO(raw_bytes), events=('start',)):
            if root is None:
                root = element
    except ET.ParseError as e:
        if root is None:
            raise CorruptDocumentError(f"Cannot parse XML: {e}", ctx.source_id) from e
        ctx.warn(f"XML truncated or malformed, kept content read so far: {e}")

    if root is None:
        raise CorruptDocumentError("XML document has no root element", ctx.source_id)

    ctx.metadata['root'] = _local_name(root.tag)
    _XmlWalker(ctx).walk(root)
