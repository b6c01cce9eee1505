# -*- coding: utf-8 -*-
"""
Exception hierarchy for kgforge.

Every failure raised by the package derives from KGForgeError and belongs to
exactly one stage family, so callers can catch at the granularity they need:

    KGForgeError
    ├── ParseError
    │   ├── UnsupportedFormatError
    │   ├── CorruptDocumentError
    │   ├── EmptyExtractionError
    │   └── DocumentTooLargeError
    ├── ExtractionError
    │   ├── ModelTimeoutError
    │   └── SchemaViolationError
    ├── UpsertError
    │   ├── StoreUnavailableError
    │   └── ConflictUnresolvableError
    ├── RetrievalError
    │   ├── IndexUnavailableError
    │   └── QueryTimeoutError
    └── EmbeddingError

Library exceptions (neo4j, together, pydantic) are translated into these at the
module that talks to the library; nothing above that boundary sees them.
"""
from typing import Optional


class KGForgeError(Exception):
    """Base class for all kgforge errors."""


# ============================================================================
# PARSING
# ============================================================================

class ParseError(KGForgeError):
    """A document could not be turned into a canonical document."""

    def __init__(self, message: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.source_id = source_id


class UnsupportedFormatError(ParseError):
    """Declared format tag has no registered parser."""


class CorruptDocumentError(ParseError):
    """Bytes could not be opened as the declared format at all."""


class EmptyExtractionError(ParseError):
    """Document opened but yielded zero blocks."""


class DocumentTooLargeError(ParseError):
    """Input exceeds the configured size bound."""


# ============================================================================
# EXTRACTION
# ============================================================================

class ExtractionError(KGForgeError):
    """Entity/relationship extraction failed for a block."""


class ModelTimeoutError(ExtractionError):
    """Language model call did not answer in time."""


class SchemaViolationError(ExtractionError):
    """Language model answered with output that does not fit the schema."""


# ============================================================================
# UPSERT
# ============================================================================

class UpsertError(KGForgeError):
    """A graph write could not be completed."""


class StoreUnavailableError(UpsertError):
    """Graph store cannot be reached."""


class ConflictUnresolvableError(UpsertError):
    """Store kept rejecting a merge after all retries."""


# ============================================================================
# RETRIEVAL
# ============================================================================

class RetrievalError(KGForgeError):
    """A retrieval query failed."""


class IndexUnavailableError(RetrievalError):
    """Vector index is missing or not queryable."""


class QueryTimeoutError(RetrievalError):
    """Store query exceeded its timeout."""


# ============================================================================
# EMBEDDING
# ============================================================================

class EmbeddingError(KGForgeError):
    """Embedding model failed or returned a vector of the wrong shape."""
