# -*- coding: utf-8 -*-
"""
Deterministic ID generation and name normalization.

Single source of truth for entity, fragment and relationship identity. IDs are
truncated SHA-256 digests of normalized content, so the same entity extracted
from two documents (or in two runs) always lands on the same node.

Example:
    from kgforge.utils.id_generator import generate_entity_id

    generate_entity_id("Acme  Corp", "Organization")
    generate_entity_id("ACME CORP", "organization")  # same ID
"""

import hashlib
import re
import unicodedata
from typing import Tuple

_WHITESPACE = re.compile(r'\s+')
_NON_WORD = re.compile(r'[^0-9a-z]+')
_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')


def _hash_string(content: str, length: int = 12) -> str:
    """
    Truncated SHA-256 hex digest of content.

    12 hex chars = 48 bits; collisions are negligible below millions of nodes.
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:length]


# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize_name(name: str) -> str:
    """
    Canonical form of an entity name used for identity.

    NFKC folds compatibility characters (full-width letters, ligatures),
    casefold handles case beyond ASCII, and internal whitespace collapses to a
    single space.

    Example:
        >>> normalize_name("  Acme\\u00a0 CORP ")
        'acme corp'
    """
    folded = unicodedata.normalize('NFKC', name).casefold()
    return _WHITESPACE.sub(' ', folded).strip()


def normalize_relation_kind(kind: str) -> str:
    """
    snake_case label for a relationship kind or column header.

    Example:
        >>> normalize_relation_kind("Reports To")
        'reports_to'
        >>> normalize_relation_kind("managerName")
        'manager_name'
    """
    split = _CAMEL_BOUNDARY.sub('_', unicodedata.normalize('NFKC', kind).strip())
    snake = _NON_WORD.sub('_', split.casefold()).strip('_')
    return snake or 'related_to'


# ============================================================================
# IDS
# ============================================================================

def generate_entity_id(name: str, entity_type: str) -> str:
    """
    Entity ID from normalized "name|type".

    Returns:
        ID in format "ent_<12-char-hex>"
    """
    content = f"{normalize_name(name)}|{normalize_name(entity_type)}"
    return f"ent_{_hash_string(content)}"


def generate_fragment_id(source_id: str, locator_key: str, part: int = 0) -> str:
    """
    Fragment ID from its source document, block locator and split index.

    Returns:
        ID in format "frag_<12-char-hex>"
    """
    return f"frag_{_hash_string(f'{source_id}|{locator_key}|{part}')}"


def relationship_key(
    source_id: str, target_id: str, kind: str, origin: str
) -> Tuple[str, str, str, str]:
    """Identity tuple under which relationships are merged."""
    return (source_id, target_id, normalize_relation_kind(kind), origin)
