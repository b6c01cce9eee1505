# -*- coding: utf-8 -*-
"""
Module: test_graph_upsert.py
Package: tests.graph
Purpose: Unit tests for the graph stores and the idempotent upsert layer

Tests:
- InMemoryGraphStore: merges, traversal, vector search, save/load, clear
- GraphUpserter: idempotence, cross-document merge, confidence monotonicity,
  embedding policy and backfill, per-item errors
- Neo4jGraphStore: driver error translation (mocked driver)
"""

# Standard library
import threading
from unittest.mock import MagicMock

# Third-party
import numpy as np
import pytest
from neo4j.exceptions import ClientError, ServiceUnavailable, TransientError

# Local
from kgforge.graph.memory_store import InMemoryGraphStore
from kgforge.graph.neo4j_store import Neo4jGraphStore
from kgforge.graph.upserter import GraphUpserter
from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    EntityType,
    Locator,
    Provenance,
    RelationOrigin,
    Relationship,
    SubgraphSelector,
)
from kgforge.utils.errors import (
    ConflictUnresolvableError,
    IndexUnavailableError,
    StoreUnavailableError,
    UpsertError,
)
from kgforge.utils.id_generator import generate_fragment_id

from conftest import EMBED_DIM, FailingEmbedder, HashEmbedder

pytestmark = pytest.mark.graph


# ============================================================================
# FIXTURES
# ============================================================================

def _prov(source_id, line=1):
    return frozenset([Provenance(source_id, Locator(line=line))])


def _entity(name, entity_type=EntityType.ORGANIZATION, source_id="a.md", line=1):
    return Entity.create(name, entity_type, _prov(source_id, line))


def _fragment(source_id, line, text):
    return DocumentFragment(
        id=generate_fragment_id(source_id, Locator(line=line).to_key()),
        source_id=source_id,
        locator=Locator(line=line),
        text=text,
    )


@pytest.fixture
def org_chart():
    """Alice -manager-> Bob, Alice -works_at-> Acme, all from org.md line 2."""
    alice = _entity("Alice", EntityType.PERSON, "org.md", 2)
    bob = _entity("Bob", EntityType.PERSON, "org.md", 2)
    acme = _entity("Acme Corp", EntityType.ORGANIZATION, "org.md", 2)
    relationships = [
        Relationship(alice.id, bob.id, "manager", 1.0, provenance=_prov("org.md", 2)),
        Relationship(alice.id, acme.id, "works_at", 0.8, provenance=_prov("org.md", 2)),
    ]
    fragments = [_fragment("org.md", 2, "Alice works at Acme Corp and reports to Bob.")]
    return [alice, bob, acme], relationships, fragments


# ============================================================================
# TESTS: IN-MEMORY STORE
# ============================================================================

class TestInMemoryStore:

    def test_merge_entity_unions_provenance(self, memory_store):
        assert memory_store.merge_entity(_entity("Acme Corp", source_id="a.md")) is True
        assert memory_store.merge_entity(_entity("ACME corp", source_id="b.md")) is False

        assert len(memory_store.entities) == 1
        stored = next(iter(memory_store.entities.values()))
        assert stored.name == "Acme Corp"
        assert stored.source_ids == frozenset(["a.md", "b.md"])

    def test_existing_embedding_is_kept(self, memory_store):
        first = np.ones(EMBED_DIM, dtype=np.float32)
        second = np.arange(EMBED_DIM, dtype=np.float32)
        entity = _entity("Acme Corp")
        memory_store.merge_entity(Entity(entity.id, entity.name, entity.type, first, entity.provenance))
        memory_store.merge_entity(Entity(entity.id, entity.name, entity.type, second, entity.provenance))

        assert np.array_equal(memory_store.entities[entity.id].embedding, first)
        assert memory_store.set_embedding_if_absent(entity.id, second) is False
        assert memory_store.stats()['vectors'] == 1

    def test_relationship_requires_endpoints(self, memory_store):
        acme = _entity("Acme Corp")
        memory_store.merge_entity(acme)
        with pytest.raises(UpsertError):
            memory_store.merge_relationship(Relationship(acme.id, "ent_missing", "owns", 0.9))

    def test_explicit_and_inferred_edges_are_distinct(self, memory_store):
        a, b = _entity("A Corp"), _entity("B Corp")
        memory_store.merge_entity(a)
        memory_store.merge_entity(b)
        memory_store.merge_relationship(Relationship(a.id, b.id, "partner_of", 0.9))
        memory_store.merge_relationship(
            Relationship(a.id, b.id, "partner_of", 0.6, origin=RelationOrigin.INFERRED)
        )
        assert memory_store.stats()['relationships'] == 2
        assert memory_store.stats()['inferred_relationships'] == 1

    def test_traverse_tracks_hops_and_inferred_paths(self, memory_store):
        a, b, c = _entity("A Corp"), _entity("B Corp"), _entity("C Corp")
        for entity in (a, b, c):
            memory_store.merge_entity(entity)
        memory_store.merge_relationship(Relationship(a.id, b.id, "supplier_of", 0.9))
        memory_store.merge_relationship(
            Relationship(b.id, c.id, "partner_of", 0.7, origin=RelationOrigin.INFERRED)
        )

        hits = {(h.node_id, h.hops, h.via_inferred) for h in memory_store.traverse([a.id], 2)}
        assert hits == {(b.id, 1, False), (c.id, 2, True)}

        explicit_only = memory_store.traverse([a.id], 2, include_inferred=False)
        assert [(h.node_id, h.hops) for h in explicit_only] == [(b.id, 1)]
        assert memory_store.traverse([a.id], 1, include_inferred=True)[0].node_id == b.id

    def test_vector_search_ranks_by_similarity(self, memory_store, embedder):
        for name in ("Acme Corp", "Globex Industries", "Initech"):
            entity = _entity(name)
            entity.embedding = embedder.embed(entity.embedding_text())
            memory_store.merge_entity(entity)

        hits = memory_store.vector_search(embedder.embed("Acme Corp (Organization)"), top_m=2)
        assert len(hits) == 2
        assert memory_store.get_nodes([hits[0].node_id])[hits[0].node_id].name == "Acme Corp"
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-5)
        assert all(0.0 <= h.similarity <= 1.0 for h in hits)

    def test_vector_search_without_index(self, embedder):
        store = InMemoryGraphStore(dimension=EMBED_DIM, vector_index=False)
        with pytest.raises(IndexUnavailableError):
            store.vector_search(embedder.embed("anything"), top_m=5)

    def test_find_entities_and_subgraph(self, memory_store, org_chart):
        entities, relationships, _ = org_chart
        for entity in entities:
            memory_store.merge_entity(entity)
        for rel in relationships:
            memory_store.merge_relationship(rel)

        assert [e.name for e in memory_store.find_entities_by_terms(["ACM"])] == ["Acme Corp"]
        people = memory_store.fetch_subgraph(SubgraphSelector(entity_types=[EntityType.PERSON]))
        assert {e.name for e in people.entities.values()} == {"Alice", "Bob"}
        assert [r.kind for r in people.relationships] == ["manager"]

    def test_save_and_load(self, tmp_path, embedder, org_chart):
        store = InMemoryGraphStore(dimension=EMBED_DIM)
        entities, relationships, fragments = org_chart
        GraphUpserter(store, embedder).upsert(entities, relationships, fragments)
        store.save(tmp_path)

        loaded = InMemoryGraphStore.load(tmp_path)
        assert loaded.stats() == store.stats()
        alice_id = entities[0].id
        assert loaded.entities[alice_id].provenance == entities[0].provenance
        assert np.allclose(loaded.entities[alice_id].embedding, store.entities[alice_id].embedding)
        hits = loaded.vector_search(embedder.embed("Alice (Person)"), top_m=1)
        assert hits[0].node_id == alice_id

    def test_clear_empties_store(self, upserter, memory_store, embedder, org_chart):
        entities, relationships, fragments = org_chart
        upserter.upsert(entities, relationships, fragments)

        assert memory_store.clear() == 4
        assert set(memory_store.stats().values()) == {0}
        assert memory_store.traverse([entities[0].id], max_hops=2) == []
        assert memory_store.vector_search(embedder.embed("Alice (Person)"), top_m=3) == []

        report = upserter.upsert(entities, relationships, fragments)
        assert report.entities_created == 3
        assert memory_store.vector_search(embedder.embed("Alice (Person)"), top_m=1)[0].node_id == entities[0].id


# ============================================================================
# TESTS: UPSERTER
# ============================================================================

class TestGraphUpserter:

    def test_second_upsert_changes_nothing(self, upserter, memory_store, org_chart):
        entities, relationships, fragments = org_chart
        first = upserter.upsert(entities, relationships, fragments)
        stats = memory_store.stats()
        second = upserter.upsert(entities, relationships, fragments)

        assert (first.entities_created, first.relationships_created) == (3, 2)
        assert (second.entities_created, second.entities_merged) == (0, 3)
        assert (second.relationships_created, second.relationships_merged) == (0, 2)
        assert memory_store.stats() == stats

    def test_same_entity_from_two_documents(self, upserter, memory_store):
        upserter.upsert([_entity("Acme Corp", source_id="a.pdf", line=4)], [])
        upserter.upsert([_entity("acme  corp", source_id="b.xlsx", line=9)], [])

        assert len(memory_store.entities) == 1
        stored = next(iter(memory_store.entities.values()))
        assert stored.source_ids == frozenset(["a.pdf", "b.xlsx"])

    def test_confidence_never_decreases(self, upserter, memory_store):
        alice, acme = _entity("Alice", EntityType.PERSON), _entity("Acme Corp")
        upserter.upsert([alice, acme], [Relationship(alice.id, acme.id, "works_at", 0.9, provenance=_prov("a.md"))])
        upserter.upsert([alice, acme], [Relationship(alice.id, acme.id, "works_at", 0.4, provenance=_prov("b.md"))])

        stored = memory_store.relationships[(alice.id, acme.id, "works_at", "Explicit")]
        assert stored.confidence == 0.9
        assert {p.source_id for p in stored.provenance} == {"a.md", "b.md"}

    def test_only_new_entities_are_embedded(self, memory_store, embedder):
        upserter = GraphUpserter(memory_store, embedder, config={'embed_fragments': False})
        acme = _entity("Acme Corp")
        report = upserter.upsert([acme], [])
        assert report.embeddings_computed == 1
        assert embedder.calls == 1

        upserter.upsert([_entity("Acme Corp", source_id="b.md")], [])
        assert embedder.calls == 1
        assert memory_store.entities[acme.id].embedding is not None

    def test_fragments_link_to_mentioned_entities(self, upserter, memory_store, org_chart):
        entities, relationships, fragments = org_chart
        report = upserter.upsert(entities, relationships, fragments)

        assert report.fragments_written == 1
        assert memory_store.mentions[fragments[0].id] == {e.id for e in entities}
        assert memory_store.fragments[fragments[0].id].embedding is not None

    def test_failed_embedding_is_queued_then_backfilled(self, memory_store, org_chart):
        entities, relationships, fragments = org_chart
        upserter = GraphUpserter(memory_store, FailingEmbedder(), config={'backoff_base': 0.0})

        report = upserter.upsert(entities, relationships, fragments)
        assert report.embeddings_queued == 4
        assert report.errors == []
        assert all(e.embedding is None for e in memory_store.entities.values())
        assert upserter.backfill_embeddings() == 0
        assert upserter.pending_embeddings == 4

        upserter.embedder = HashEmbedder()
        assert upserter.backfill_embeddings() == 4
        assert upserter.pending_embeddings == 0
        assert memory_store.stats()['vectors'] == 4

    def test_backfill_scan_recovers_from_store(self, memory_store, embedder):
        memory_store.merge_entity(_entity("Orphan Ltd"))
        upserter = GraphUpserter(memory_store, embedder)
        assert upserter.backfill_embeddings(scan_store=True) == 1

    def test_bad_relationship_does_not_stop_batch(self, upserter):
        alice, acme = _entity("Alice", EntityType.PERSON), _entity("Acme Corp")
        report = upserter.upsert([alice, acme], [
            Relationship(alice.id, "ent_ghost", "knows", 0.7),
            Relationship(alice.id, acme.id, "works_at", 0.9),
        ])
        assert report.relationships_created == 1
        assert len(report.errors) == 1 and "ent_ghost" in report.errors[0]

    def test_concurrent_upserts_converge(self, memory_store, embedder):
        upserter = GraphUpserter(memory_store, embedder)
        barrier = threading.Barrier(4)

        def work(index):
            barrier.wait()
            upserter.upsert([_entity("Acme Corp", source_id=f"doc{index}.md")], [])

        threads = [threading.Thread(target=work, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(memory_store.entities) == 1
        stored = next(iter(memory_store.entities.values()))
        assert stored.source_ids == frozenset(f"doc{i}.md" for i in range(4))

    def test_unavailable_store_propagates_after_retries(self, embedder):
        store = MagicMock()
        store.existing_entity_ids.return_value = set()
        store.merge_entity.side_effect = StoreUnavailableError("down")
        upserter = GraphUpserter(store, embedder, config={'backoff_base': 0.0, 'max_retries': 3})

        with pytest.raises(StoreUnavailableError):
            upserter.upsert([_entity("Acme Corp")], [])
        assert store.merge_entity.call_count == 3

    @pytest.mark.parametrize("max_retries", [0, -2])
    def test_retry_count_must_allow_one_attempt(self, memory_store, max_retries):
        with pytest.raises(ValueError):
            GraphUpserter(memory_store, config={'max_retries': max_retries})

    def test_conflict_recorded_per_item(self, embedder):
        store = MagicMock()
        store.existing_entity_ids.return_value = set()
        store.merge_entity.side_effect = [ConflictUnresolvableError("deadlock")] * 2 + [True]
        upserter = GraphUpserter(store, embedder, config={'backoff_base': 0.0, 'max_retries': 2})

        report = upserter.upsert([_entity("A Corp"), _entity("B Corp")], [])
        assert report.entities_created == 1
        assert len(report.errors) == 1


# ============================================================================
# TESTS: NEO4J STORE (mocked driver)
# ============================================================================

class TestNeo4jStore:

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def store(self, session):
        driver = MagicMock()
        driver.session.return_value.__enter__.return_value = session
        return Neo4jGraphStore(driver=driver, config={'database': 'neo4j'})

    def test_merge_entity_returns_created_flag(self, store, session):
        session.execute_write.return_value = {'created': True}
        assert store.merge_entity(_entity("Acme Corp")) is True

    def test_missing_endpoints_raise_upsert_error(self, store, session):
        session.execute_write.return_value = None
        with pytest.raises(UpsertError):
            store.merge_relationship(Relationship("ent_a", "ent_b", "owns", 0.9))

    def test_service_unavailable_translated(self, store, session):
        session.execute_write.side_effect = ServiceUnavailable("connection refused")
        with pytest.raises(StoreUnavailableError):
            store.merge_entity(_entity("Acme Corp"))

    def test_transient_error_becomes_conflict(self, store, session):
        session.execute_write.side_effect = TransientError("deadlock detected")
        with pytest.raises(ConflictUnresolvableError):
            store.merge_entity(_entity("Acme Corp"))

    def test_missing_vector_index(self, store, session):
        session.execute_read.side_effect = ClientError("no such vector schema index")
        with pytest.raises(IndexUnavailableError):
            store.vector_search(np.ones(EMBED_DIM), top_m=5)

    def test_vector_scores_rescaled_to_cosine(self, store, session):
        session.execute_read.return_value = [{'id': 'ent_a', 'score': 1.0}, {'id': 'frag_b', 'score': 0.75}]
        hits = store.vector_search(np.ones(EMBED_DIM), top_m=2)
        assert [(h.node_id, h.similarity) for h in hits] == [('ent_a', 1.0), ('frag_b', 0.5)]

    def test_traverse_records(self, store, session):
        session.execute_read.return_value = [
            {'seed_id': 'ent_a', 'node_id': 'ent_b', 'hops': 1, 'via_inferred': False},
        ]
        hits = store.traverse(['ent_a'], max_hops=2)
        assert hits[0].node_id == 'ent_b' and hits[0].hops == 1
        assert store.traverse([], max_hops=2) == []

    def test_clear_reports_deleted_nodes(self, store, session):
        session.execute_write.return_value = {'deleted': 7}
        assert store.clear() == 7
        session.execute_write.assert_called_once()
