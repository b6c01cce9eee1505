# -*- coding: utf-8 -*-
"""
PDF parser (PyMuPDF).

Reads each page's text dictionary and classifies text blocks by font size:
blocks whose largest span is noticeably bigger than the document's body size
become headings, everything else paragraphs. A page whose layout cannot be
decoded falls back to its plain text; pages unreadable either way are
recorded as warnings and skipped. The document only fails when it cannot be
opened at all.
"""
# Standard library
import logging
import re
from collections import Counter
from typing import Dict, List, Optional, Tuple

# Third-party
import fitz  # PyMuPDF

# Local
from kgforge.ingestion.parsers.base import ParseContext
from kgforge.utils.dataclasses import Locator
from kgforge.utils.errors import CorruptDocumentError

logger = logging.getLogger(__name__)

# (page_number, block_index, text, max_font_size)
_TextBlock = Tuple[int, int, str, float]


def _page_text_blocks(page, page_number: int) -> List[_TextBlock]:
    blocks = []
    page_dict = page.get_text("dict")
    for index, block in enumerate(page_dict.get("blocks", [])):
        if block.get("type", 0) != 0:
            continue  # image block
        lines = []
        max_size = 0.0
        for line in block.get("lines", []):
            spans = line.get("spans", [])
            line_text = ''.join(span.get("text", '') for span in spans)
            if line_text.strip():
                lines.append(line_text.strip())
            for span in spans:
                if span.get("text", '').strip():
                    max_size = max(max_size, float(span.get("size", 0.0)))
        text = ' '.join(lines)
        if text.strip():
            blocks.append((page_number, index, text, max_size))
    return blocks


def _page_plain_blocks(page, page_number: int) -> List[_TextBlock]:
    """Blank-line separated paragraphs of the page text, without font sizes."""
    text = page.get_text("text")
    paragraphs = [' '.join(p.split()) for p in re.split(r'\n\s*\n', text)]
    return [(page_number, index, p, 0.0) for index, p in enumerate(paragraphs) if p]


def _body_font_size(blocks: List[_TextBlock]) -> float:
    """Most common font size, weighted by characters."""
    weights = Counter()
    for _, _, text, size in blocks:
        if size <= 0:
            continue  # plain-text fallback block
        weights[round(size, 1)] += len(text)
    if not weights:
        return 0.0
    return weights.most_common(1)[0][0]


def _heading_level(size: float, body: float, text: str, config: Dict) -> Optional[int]:
    if body <= 0 or len(text) > config['pdf_heading_max_chars']:
        return None
    ratio = size / body
    for level, threshold in enumerate(config['pdf_heading_ratios'], start=1):
        if ratio >= threshold:
            return level
    return None


def parse_pdf(raw_bytes: bytes, ctx: ParseContext) -> None:
    try:
        doc = fitz.open(stream=raw_bytes, filetype="pdf")
    except Exception as e:
        raise CorruptDocumentError(f"Cannot open PDF: {e}", ctx.source_id) from e

    try:
        page_count = len(doc)
        ctx.metadata['page_count'] = str(page_count)
        title = (doc.metadata or {}).get('title')
        if title:
            ctx.metadata['title'] = title

        text_blocks: List[_TextBlock] = []
        for page_index in range(page_count):
            page_number = page_index + 1
            page = doc[page_index]
            try:
                text_blocks.extend(_page_text_blocks(page, page_number))
            except Exception as e:
                try:
                    text_blocks.extend(_page_plain_blocks(page, page_number))
                    logger.info(f"Page {page_number} of {ctx.source_id}: layout unreadable ({e}), used plain text")
                except Exception as fallback_error:
                    ctx.warn(f"Page {page_number} unreadable: {fallback_error}")
    finally:
        doc.close()

    body = _body_font_size(text_blocks)
    for page_number, index, text, size in text_blocks:
        locator = Locator(page=page_number, line=index)
        level = _heading_level(size, body, text, ctx.config)
        if level is not None:
            ctx.add_heading(level, text, locator)
        else:
            ctx.add_paragraph(text, locator)

    logger.debug(f"PDF {ctx.source_id}: {page_count} pages, {len(text_blocks)} text blocks")
