# -*- coding: utf-8 -*-
"""
Module: pipeline_config.py
Package: config
Purpose: Configuration for ingestion (parsing, extraction, upsert) and the
         external capabilities (Neo4j, Together LLM, BGE embedder).

Secrets and endpoints come from the environment (.env is loaded on import).
Everything else is a plain dict that components copy and merge with any
caller-supplied overrides.
"""

import os
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# EXTERNAL SERVICES (from .env)
# ============================================================================

NEO4J_CONFIG = {
    'uri': os.getenv('NEO4J_URI', 'bolt://localhost:7687'),
    'user': os.getenv('NEO4J_USER', 'neo4j'),
    'password': os.getenv('NEO4J_PASSWORD', ''),
    'database': os.getenv('NEO4J_DATABASE', 'neo4j'),
    'query_timeout': 30.0,           # Seconds per transaction
    'vector_index_name': 'kgforge_vectors',
}

LLM_CONFIG = {
    'api_key': os.getenv('TOGETHER_API_KEY'),
    'model_name': os.getenv('KGFORGE_LLM_MODEL', 'mistralai/Mistral-7B-Instruct-v0.3'),
    'temperature': 0.0,              # Deterministic extraction
    'max_tokens': 2048,
    'timeout': 60.0,                 # Seconds per completion call
    'max_calls_per_minute': 2900,    # 100 below Together's 3000 RPM
}

EMBEDDING_CONFIG = {
    'model_name': 'BAAI/bge-m3',
    'dimension': 1024,               # BGE-M3 output size
    'device': os.getenv('KGFORGE_EMBED_DEVICE'),   # None = auto-detect
    'normalize': True,
    'timeout': 30.0,                 # Seconds per embed call
}


# ============================================================================
# PARSING
# ============================================================================

PARSER_CONFIG = {
    'max_bytes': 50 * 1024 * 1024,   # Reject inputs above 50 MB
    'max_block_chars': 24_000,       # Longer paragraphs are split on whitespace

    # PDF heading detection: span size / body size ratio per heading level
    'pdf_heading_ratios': [1.6, 1.3, 1.12],
    'pdf_heading_max_chars': 200,    # Longer spans are never headings

    # Delimited text
    'csv_sniff_bytes': 4096,
    'csv_default_delimiter': ',',

    # HTML elements dropped before walking the tree
    'html_drop_tags': ['script', 'style', 'nav', 'noscript', 'header', 'footer'],

    # XML elements treated as headings (local names)
    'xml_heading_tags': ['title', 'heading', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6'],
}


# ============================================================================
# EXTRACTION
# ============================================================================

EXTRACTION_CONFIG = {
    # Concurrency
    'max_block_workers': 8,
    'max_retries': 3,
    'backoff_base': 1.0,             # Sleep backoff_base * 2**attempt between retries

    # Fragments
    'max_fragment_chars': 24_000,

    # Prompt context
    'heading_context_depth': 3,      # Enclosing headings sent with a paragraph

    # LLM confidence when the model reports none
    'confidence_both_in_text': 0.8,
    'confidence_default': 0.5,

    # Table rows: header names (normalized) preferred as the key column.
    # Falls back to the first column when none match.
    'key_columns': ['name', 'full_name', 'employee', 'person', 'id', 'title', 'entity'],

    # Table rows: header keyword -> entity type of the cell values
    'column_type_hints': {
        'Person': ['name', 'person', 'employee', 'manager', 'author', 'owner',
                   'lead', 'contact', 'reports_to', 'supervisor', 'member'],
        'Organization': ['company', 'organization', 'organisation', 'org',
                         'employer', 'department', 'team', 'vendor', 'customer'],
        'Location': ['city', 'country', 'location', 'office', 'region',
                     'address', 'site', 'state'],
        'Document': ['document', 'report', 'policy', 'file', 'contract'],
        'Concept': ['topic', 'skill', 'category', 'concept', 'technology', 'product'],
    },
}


# ============================================================================
# UPSERT
# ============================================================================

UPSERT_CONFIG = {
    'max_retries': 3,                # Transient store errors per merge
    'backoff_base': 0.5,
    'embed_new_entities': True,      # Embed synchronously before first persist
    'embed_fragments': True,
}


# ============================================================================
# INGESTION SERVICE
# ============================================================================

INGESTION_CONFIG = {
    'parse_workers': 2,
    'extract_workers': 2,
    'upsert_workers': 1,
    'job_archive_size': 1000,        # Terminal jobs kept for status queries
}


def validate_retry_config(config: Dict) -> None:
    """
    Reject retry settings under which no attempt would run.

    Raises:
        ValueError: max_retries below 1 or negative backoff_base
    """
    if config['max_retries'] < 1:
        raise ValueError(f"max_retries must be >= 1 (total attempts), got {config['max_retries']}")
    if config['backoff_base'] < 0:
        raise ValueError(f"backoff_base must be >= 0, got {config['backoff_base']}")
