# -*- coding: utf-8 -*-
"""
Transmutation: raw bytes of any supported format -> CanonicalDocument.

Format polymorphism is a dispatch table from DocumentFormat to a parse
function; adding a format means adding one function and one entry.

Failure policy:
    - unknown format tag               -> UnsupportedFormatError
    - input above PARSER_CONFIG bound  -> DocumentTooLargeError
    - bytes cannot be opened at all    -> CorruptDocumentError (raised by parser)
    - opened but zero blocks           -> EmptyExtractionError
    - damage inside an opened document -> partial document + warnings

Example:
    from kgforge.ingestion.transmutation import parse

    doc = parse(Path("people.xlsx").read_bytes(), "spreadsheet", "people.xlsx")
    for block in doc.blocks:
        print(block)
"""
# Standard library
import logging
from typing import Callable, Dict, Optional, Union

# Config imports (direct)
from config.pipeline_config import PARSER_CONFIG

# Local
from kgforge.ingestion.parsers import (
    ParseContext,
    parse_csv,
    parse_docx,
    parse_html,
    parse_json,
    parse_markdown,
    parse_pdf,
    parse_spreadsheet,
    parse_text,
    parse_xml,
)
from kgforge.utils.dataclasses import CanonicalDocument, DocumentFormat
from kgforge.utils.errors import (
    DocumentTooLargeError,
    EmptyExtractionError,
    UnsupportedFormatError,
)

logger = logging.getLogger(__name__)

ParseFunction = Callable[[bytes, ParseContext], None]

PARSERS: Dict[DocumentFormat, ParseFunction] = {
    DocumentFormat.PDF: parse_pdf,
    DocumentFormat.DOCX: parse_docx,
    DocumentFormat.SPREADSHEET: parse_spreadsheet,
    DocumentFormat.CSV: parse_csv,
    DocumentFormat.HTML: parse_html,
    DocumentFormat.JSON: parse_json,
    DocumentFormat.XML: parse_xml,
    DocumentFormat.MARKDOWN: parse_markdown,
    DocumentFormat.TEXT: parse_text,
}


def resolve_format(declared_format: Union[str, DocumentFormat]) -> DocumentFormat:
    try:
        fmt = DocumentFormat.from_tag(declared_format)
    except ValueError as e:
        raise UnsupportedFormatError(f"Unsupported format: {declared_format!r}") from e
    if fmt not in PARSERS:
        raise UnsupportedFormatError(f"No parser registered for {fmt.value}")
    return fmt


def parse(
    raw_bytes: bytes,
    declared_format: Union[str, DocumentFormat],
    source_id: str,
    config: Optional[Dict] = None,
) -> CanonicalDocument:
    """
    Parse one document.

    Args:
        raw_bytes: File content
        declared_format: Format tag or DocumentFormat (aliases like "xlsx" accepted)
        source_id: Identifier carried into every provenance record
        config: Overrides for PARSER_CONFIG

    Returns:
        CanonicalDocument with blocks in reading order and non-fatal warnings

    Raises:
        ParseError subclasses (see module docstring)
    """
    cfg = {**PARSER_CONFIG, **(config or {})}
    fmt = resolve_format(declared_format)

    if len(raw_bytes) > cfg['max_bytes']:
        raise DocumentTooLargeError(
            f"{source_id}: {len(raw_bytes)} bytes exceeds limit of {cfg['max_bytes']}",
            source_id,
        )

    ctx = ParseContext(source_id=source_id, format=fmt, config=cfg)
    PARSERS[fmt](raw_bytes, ctx)

    if not ctx.blocks:
        raise EmptyExtractionError(f"{source_id}: no content blocks extracted", source_id)

    doc = CanonicalDocument(
        source_id=source_id,
        format=fmt,
        blocks=ctx.blocks,
        metadata=ctx.metadata,
        warnings=ctx.warnings,
    )
    logger.info(
        f"Parsed {source_id} ({fmt.value}): {doc.block_counts()}, "
        f"{len(doc.warnings)} warnings"
    )
    return doc
