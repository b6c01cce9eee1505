# -*- coding: utf-8 -*-
"""
Module: conftest.py
Package: tests
Purpose: Shared fixtures and stub capabilities for the kgforge test suite

Stubs:
- StubLLM: scripted generate(prompt, schema_hint) with call recording
- HashEmbedder: deterministic bag-of-words vectors (no model download)
"""

# Standard library
import hashlib
import json
import re
import sys
import threading
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Third-party
import numpy as np
import pytest

# Local
from kgforge.graph.memory_store import InMemoryGraphStore
from kgforge.graph.upserter import GraphUpserter
from kgforge.utils.errors import EmbeddingError

EMBED_DIM = 64

EMPTY_EXTRACTION = '{"entities": [], "relations": []}'


# ============================================================================
# STUB CAPABILITIES
# ============================================================================

class StubLLM:
    """
    LLM capability double.

    responder(prompt) may return a str, a dict/list (sent back as JSON) or an
    Exception instance (raised). Without a responder every call returns
    `default`.
    """

    def __init__(self, responder=None, default=EMPTY_EXTRACTION):
        self.responder = responder
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, prompt, schema_hint=None):
        with self._lock:
            self.calls.append(prompt)
        if self.responder is None:
            return self.default
        result = self.responder(prompt)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, (dict, list)):
            return json.dumps(result)
        return result


class HashEmbedder:
    """Deterministic unit vectors from hashed lowercase word buckets."""

    def __init__(self, dimension=EMBED_DIM):
        self.dimension = dimension
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        words = re.findall(r'\w+', (text or '').lower())
        if not words:
            raise EmbeddingError("Cannot embed empty text")
        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in words:
            bucket = int(hashlib.md5(word.encode('utf-8')).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector / np.linalg.norm(vector)


class FailingEmbedder:
    """Embedder whose every call fails."""

    def embed(self, text):
        raise EmbeddingError("embedding service down")


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def memory_store():
    return InMemoryGraphStore(dimension=EMBED_DIM)


@pytest.fixture
def upserter(memory_store, embedder):
    return GraphUpserter(memory_store, embedder, config={'backoff_base': 0.0})


@pytest.fixture
def stub_llm():
    return StubLLM()


class FakePdfPage:
    def __init__(self, blocks):
        self.blocks = blocks

    def get_text(self, kind):
        if isinstance(self.blocks, Exception):
            raise self.blocks
        if isinstance(self.blocks, str):
            if kind != "text":
                raise RuntimeError("no layout information")
            return self.blocks
        return {"blocks": [
            {"type": 0, "lines": [{"spans": [{"text": text, "size": size}]}]}
            for text, size in self.blocks
        ]}


class FakePdfDocument:
    """
    Stand-in for fitz.Document.

    Pages are [(text, size), ...], an Exception (page unreadable), or a str
    (layout unreadable, plain text available).
    """

    def __init__(self, pages, title=None):
        self.pages = [FakePdfPage(p) for p in pages]
        self.metadata = {'title': title} if title else {}
        self.closed = False

    def __len__(self):
        return len(self.pages)

    def __getitem__(self, index):
        return self.pages[index]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_pdf():
    """Factory: fake_pdf(pages, title=None) -> FakePdfDocument."""
    return FakePdfDocument
