# -*- coding: utf-8 -*-
"""
Shared parsing state and text helpers.

Every format parser receives a ParseContext and appends blocks to it in
reading order. Parsers never build CanonicalDocument themselves; the
dispatcher in kgforge.ingestion.transmutation does that once the parser
returns, so size/emptiness rules live in one place.
"""
# Standard library
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

# Local
from kgforge.utils.dataclasses import (
    Block,
    DocumentFormat,
    Heading,
    Locator,
    Paragraph,
    TableRow,
)

logger = logging.getLogger(__name__)


def split_text(text: str, max_chars: int) -> List[str]:
    """
    Split text into pieces of at most max_chars, breaking on whitespace.

    A single word longer than max_chars is hard-cut.

    Example:
        >>> split_text("aa bb cc", 5)
        ['aa bb', 'cc']
    """
    text = text.strip()
    if len(text) <= max_chars:
        return [text] if text else []

    pieces = []
    current = []
    current_len = 0
    for word in text.split():
        while len(word) > max_chars:
            if current:
                pieces.append(' '.join(current))
                current, current_len = [], 0
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        extra = len(word) + (1 if current else 0)
        if current and current_len + extra > max_chars:
            pieces.append(' '.join(current))
            current, current_len = [], 0
            extra = len(word)
        current.append(word)
        current_len += extra
    if current:
        pieces.append(' '.join(current))
    return pieces


def decode_text(raw_bytes: bytes, ctx: 'ParseContext') -> str:
    """UTF-8 (BOM tolerated), falling back to latin-1 with a warning."""
    try:
        return raw_bytes.decode('utf-8-sig')
    except UnicodeDecodeError:
        ctx.warn("Input is not valid UTF-8; decoded as latin-1")
        return raw_bytes.decode('latin-1')


@dataclass
class ParseContext:
    """
    Accumulator for one parse call.

    add_* helpers drop empty text and split paragraphs longer than
    config['max_block_chars'] into consecutive paragraphs with the same
    locator coordinates.
    """
    source_id: str
    format: DocumentFormat
    config: Dict
    blocks: List[Block] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    def warn(self, message: str) -> None:
        logger.warning(f"[{self.source_id}] {message}")
        self.warnings.append(message)

    def add_paragraph(self, text: Optional[str], locator: Locator) -> None:
        if not text or not text.strip():
            return
        for piece in split_text(text, self.config['max_block_chars']):
            self.blocks.append(Paragraph(text=piece, locator=locator))

    def add_heading(self, level: int, text: Optional[str], locator: Locator) -> None:
        text = ' '.join((text or '').split())
        if not text:
            return
        self.blocks.append(Heading(level=max(1, min(level, 6)), text=text, locator=locator))

    def add_row(self, cells: Sequence, locator: Locator, is_header: bool = False) -> bool:
        """Append a table row; all-empty rows are skipped. Returns True if added."""
        clean = tuple(' '.join(str(c).split()) if c is not None else '' for c in cells)
        if not any(clean):
            return False
        self.blocks.append(TableRow(cells=clean, is_header=is_header, locator=locator))
        return True
