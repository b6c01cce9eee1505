# -*- coding: utf-8 -*-
"""
Best-effort format detection for callers that do not declare a format.

Extension first, then magic bytes. Office files are ZIP containers, so the
archive listing decides between DOCX (word/) and spreadsheets (xl/).
"""
import io
import zipfile
from pathlib import Path
from typing import Optional

from kgforge.utils.dataclasses import DocumentFormat

EXTENSION_FORMATS = {
    '.pdf': DocumentFormat.PDF,
    '.docx': DocumentFormat.DOCX,
    '.xlsx': DocumentFormat.SPREADSHEET,
    '.xlsm': DocumentFormat.SPREADSHEET,
    '.csv': DocumentFormat.CSV,
    '.tsv': DocumentFormat.CSV,
    '.html': DocumentFormat.HTML,
    '.htm': DocumentFormat.HTML,
    '.json': DocumentFormat.JSON,
    '.xml': DocumentFormat.XML,
    '.md': DocumentFormat.MARKDOWN,
    '.markdown': DocumentFormat.MARKDOWN,
    '.txt': DocumentFormat.TEXT,
}


def _sniff_zip(raw_bytes: bytes) -> Optional[DocumentFormat]:
    try:
        with zipfile.ZipFile(io.BytesIO(raw_bytes)) as archive:
            names = archive.namelist()
    except zipfile.BadZipFile:
        return None
    if any(name.startswith('word/') for name in names):
        return DocumentFormat.DOCX
    if any(name.startswith('xl/') for name in names):
        return DocumentFormat.SPREADSHEET
    return None


def detect_format(filename: Optional[str], raw_bytes: bytes = b'') -> DocumentFormat:
    """
    Guess the format of a file.

    Falls back to plain text when nothing more specific matches.

    Example:
        >>> detect_format("report.PDF")
        <DocumentFormat.PDF: 'pdf'>
    """
    if filename:
        suffix = Path(filename).suffix.lower()
        if suffix in EXTENSION_FORMATS:
            return EXTENSION_FORMATS[suffix]

    head = raw_bytes[:512]
    if head.startswith(b'%PDF'):
        return DocumentFormat.PDF
    if head.startswith(b'PK\x03\x04'):
        return _sniff_zip(raw_bytes) or DocumentFormat.TEXT

    text = head.decode('utf-8', errors='ignore').lstrip('\ufeff \t\r\n').lower()
    if text.startswith('<!doctype html') or text.startswith('<html') or '<body' in text:
        return DocumentFormat.HTML
    if text.startswith('<'):
        return DocumentFormat.XML
    if text.startswith('{') or text.startswith('['):
        return DocumentFormat.JSON
    if text.startswith('#'):
        return DocumentFormat.MARKDOWN
    return DocumentFormat.TEXT
