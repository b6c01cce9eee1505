# -*- coding: utf-8 -*-
"""
Module: test_answer_generation.py
Package: tests.retrieval
Purpose: Unit tests for grounded answer generation over retrieval results

Tests:
- Context formatting (entities, passages, relations, budget)
- Reference / entity marker extraction
- Empty retrieval results
"""

# Third-party
import pytest

# Local
from kgforge.retrieval.answer_generator import AnswerGenerator
from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    EntityType,
    Locator,
    Provenance,
    Relationship,
    RetrievalResult,
    ScoredItem,
)
from kgforge.utils.id_generator import generate_fragment_id

from conftest import StubLLM

pytestmark = pytest.mark.retrieval


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def jane():
    return Entity.create("Jane Doe", EntityType.PERSON, frozenset([Provenance("msa.pdf", Locator(page=4))]))


@pytest.fixture
def contract():
    return Entity.create("Master Services Agreement", EntityType.DOCUMENT,
                         frozenset([Provenance("msa.pdf", Locator(page=1))]))


@pytest.fixture
def passage():
    return DocumentFragment(
        id=generate_fragment_id("msa.pdf", "page=4;line=2"),
        source_id="msa.pdf",
        locator=Locator(page=4, line=2),
        text="Signed on behalf of Acme Corp by Jane Doe, Chief Operating Officer.",
    )


@pytest.fixture
def result(jane, contract, passage):
    return RetrievalResult(
        query="Who signed the master services agreement?",
        items=[
            ScoredItem(contract, 0.9, vector_score=0.9),
            ScoredItem(passage, 0.8, vector_score=0.8),
            ScoredItem(jane, 0.5, graph_score=0.5, hops=1),
        ],
    )


# ============================================================================
# TESTS
# ============================================================================

class TestAnswerGenerator:

    def test_context_lists_entities_and_passages(self, result, passage):
        context, used = AnswerGenerator(StubLLM()).format_context(result)

        assert used == 3
        assert "- [[Master Services Agreement]] (Document) sources: msa.pdf" in context
        assert f"[{passage.id}] msa.pdf @ page=4;line=2" in context
        assert "Chief Operating Officer" in context

    def test_relations_among_retrieved_entities(self, result, jane, contract, upserter, memory_store):
        upserter.upsert([jane, contract], [Relationship(jane.id, contract.id, "signed", 1.0)])
        context, _ = AnswerGenerator(StubLLM(), store=memory_store).format_context(result)

        assert "RELATIONS:" in context
        assert "[[Jane Doe]] --signed--> [[Master Services Agreement]] (Explicit, 1.00)" in context

    def test_long_passages_truncated_and_budget_respected(self, result):
        result.items[1].node.text = "x" * 5000
        generator = AnswerGenerator(StubLLM(), config={'truncate_fragment_chars': 100,
                                                       'max_context_chars': 220})
        context, used = generator.format_context(result)

        assert "x" * 100 + "..." in context
        assert "x" * 101 not in context
        assert used == 2
        assert "Jane Doe" not in context

    def test_answer_markers_extracted(self, result, passage):
        answer = (f"[[Jane Doe]] signed the [[Master Services Agreement]] (Ref: {passage.id}). "
                  f"See also (Ref: frag_notincontext).")
        llm = StubLLM(default=answer)
        generated = AnswerGenerator(llm).generate(result)

        assert generated.answer == answer
        assert generated.references == [passage.id]
        assert generated.entities == ["Jane Doe", "Master Services Agreement"]
        assert generated.items_used == 3
        assert result.query in llm.calls[0]
        assert "Answer ONLY from the context" in llm.calls[0]

    def test_empty_result(self):
        llm = StubLLM(default="The context does not contain the answer.")
        generated = AnswerGenerator(llm).generate(RetrievalResult(query="Who is the CFO?", degraded=True))

        assert generated.items_used == 0
        assert generated.references == []
        assert generated.degraded
        assert "No context retrieved." in llm.calls[0]
