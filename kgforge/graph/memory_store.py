# -*- coding: utf-8 -*-
"""
In-process graph store backed by dicts and a FAISS inner-product index.

Used for local runs without Neo4j and as the store in tests. A single lock
makes every merge atomic, which gives the same convergence guarantees as the
Neo4j MERGE statements. Vectors are L2-normalized before indexing, so inner
product equals cosine similarity.

The store can be saved to and loaded from a directory (graph.json plus a
FAISS index and its id map), so separate CLI runs can share one graph.

Example:
    store = InMemoryGraphStore(dimension=1024)
    store.merge_entity(entity)
    hits = store.vector_search(query_vector, top_m=30)
"""
# Standard library
import json
import logging
import threading
from collections import deque
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

# Third-party
import faiss
import numpy as np

# Local
from kgforge.graph.graph_store import GraphStore
from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    EntityType,
    GraphNode,
    Locator,
    Provenance,
    RelationOrigin,
    Relationship,
    Subgraph,
    SubgraphSelector,
    TraversalHit,
    VectorHit,
)
from kgforge.utils.errors import EmbeddingError, IndexUnavailableError, UpsertError

logger = logging.getLogger(__name__)


class InMemoryGraphStore(GraphStore):
    """
    Thread-safe in-memory store.

    Args:
        dimension: Embedding size; fixed on the first vector when None
        vector_index: False simulates a deployment without a vector index
    """

    def __init__(self, dimension: Optional[int] = None, vector_index: bool = True):
        self.dimension = dimension
        self.vector_index_enabled = vector_index
        self._lock = threading.Lock()

        self.entities: Dict[str, Entity] = {}
        self.fragments: Dict[str, DocumentFragment] = {}
        self.relationships: Dict[Tuple[str, str, str, str], Relationship] = {}
        self.mentions: Dict[str, Set[str]] = {}

        # node_id -> {(neighbor_id, origin)}
        self._adjacency: Dict[str, Set[Tuple[str, str]]] = {}

        self._index: Optional[faiss.Index] = None
        self._int_ids: Dict[str, int] = {}
        self._node_ids: Dict[int, str] = {}

    # ------------------------------------------------------------------
    # Vector index helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _prepare_vector(self, embedding: np.ndarray) -> np.ndarray:
        vector = np.asarray(embedding, dtype=np.float32).reshape(1, -1).copy()
        if self.dimension is None:
            self.dimension = vector.shape[1]
        if vector.shape[1] != self.dimension:
            raise EmbeddingError(
                f"Expected {self.dimension}-dim vector, got {vector.shape[1]}-dim"
            )
        faiss.normalize_L2(vector)
        return vector

    def _index_vector(self, node_id: str, embedding: np.ndarray) -> None:
        vector = self._prepare_vector(embedding)
        if self._index is None:
            self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(self.dimension))
        int_id = self._int_ids.get(node_id)
        if int_id is None:
            int_id = len(self._int_ids)
            self._int_ids[node_id] = int_id
            self._node_ids[int_id] = node_id
        self._index.add_with_ids(vector, np.array([int_id], dtype=np.int64))

    def _link(self, a: str, b: str, origin: str) -> None:
        self._adjacency.setdefault(a, set()).add((b, origin))
        self._adjacency.setdefault(b, set()).add((a, origin))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def merge_entity(self, entity: Entity) -> bool:
        with self._lock:
            current = self.entities.get(entity.id)
            if current is None:
                stored = Entity(
                    id=entity.id,
                    name=entity.name,
                    type=entity.type,
                    embedding=None,
                    provenance=frozenset(entity.provenance),
                )
                if entity.embedding is not None:
                    self._index_vector(entity.id, entity.embedding)
                    stored.embedding = np.asarray(entity.embedding, dtype=np.float32)
                self.entities[entity.id] = stored
                return True

            current.provenance = current.provenance | entity.provenance
            if current.embedding is None and entity.embedding is not None:
                self._index_vector(entity.id, entity.embedding)
                current.embedding = np.asarray(entity.embedding, dtype=np.float32)
            return False

    def merge_relationship(self, relationship: Relationship) -> bool:
        with self._lock:
            for endpoint in (relationship.source_entity_id, relationship.target_entity_id):
                if endpoint not in self.entities:
                    raise UpsertError(f"Relationship endpoint {endpoint} does not exist")

            current = self.relationships.get(relationship.key)
            if current is None:
                self.relationships[relationship.key] = Relationship(
                    source_entity_id=relationship.source_entity_id,
                    target_entity_id=relationship.target_entity_id,
                    kind=relationship.kind,
                    confidence=relationship.confidence,
                    origin=relationship.origin,
                    provenance=frozenset(relationship.provenance),
                    rationale=relationship.rationale,
                )
                self._link(
                    relationship.source_entity_id,
                    relationship.target_entity_id,
                    relationship.origin.value,
                )
                return True

            current.confidence = max(current.confidence, relationship.confidence)
            current.provenance = current.provenance | relationship.provenance
            if current.rationale is None:
                current.rationale = relationship.rationale
            return False

    def merge_fragment(self, fragment: DocumentFragment, entity_ids: Iterable[str]) -> bool:
        with self._lock:
            created = fragment.id not in self.fragments
            if created:
                self.fragments[fragment.id] = DocumentFragment(
                    id=fragment.id,
                    source_id=fragment.source_id,
                    locator=fragment.locator,
                    text=fragment.text,
                )
            stored = self.fragments[fragment.id]
            if stored.embedding is None and fragment.embedding is not None:
                self._index_vector(fragment.id, fragment.embedding)
                stored.embedding = np.asarray(fragment.embedding, dtype=np.float32)

            linked = self.mentions.setdefault(fragment.id, set())
            for entity_id in entity_ids:
                if entity_id in self.entities and entity_id not in linked:
                    linked.add(entity_id)
                    self._link(fragment.id, entity_id, RelationOrigin.EXPLICIT.value)
            return created

    def set_embedding_if_absent(self, node_id: str, embedding: np.ndarray) -> bool:
        with self._lock:
            node = self.entities.get(node_id) or self.fragments.get(node_id)
            if node is None or node.embedding is not None:
                return False
            self._index_vector(node_id, embedding)
            node.embedding = np.asarray(embedding, dtype=np.float32)
            return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def existing_entity_ids(self, ids: Iterable[str]) -> Set[str]:
        with self._lock:
            return {i for i in ids if i in self.entities}

    def entities_missing_embedding(self, limit: int = 1000) -> List[Entity]:
        with self._lock:
            missing = [e for _, e in sorted(self.entities.items()) if e.embedding is None]
            return missing[:limit]

    def vector_search(self, embedding: np.ndarray, top_m: int) -> List[VectorHit]:
        if not self.vector_index_enabled:
            raise IndexUnavailableError("Vector index is not configured")
        with self._lock:
            if self._index is None or self._index.ntotal == 0 or top_m <= 0:
                return []
            query = self._prepare_vector(embedding)
            scores, ids = self._index.search(query, min(top_m, self._index.ntotal))

        hits = []
        for score, int_id in zip(scores[0], ids[0]):
            if int_id < 0:
                continue
            hits.append(VectorHit(self._node_ids[int(int_id)], max(0.0, min(1.0, float(score)))))
        return hits

    def traverse(
        self, seed_ids: Iterable[str], max_hops: int, include_inferred: bool = True
    ) -> List[TraversalHit]:
        with self._lock:
            adjacency = {node: set(edges) for node, edges in self._adjacency.items()}

        hits = []
        for seed in sorted(set(seed_ids)):
            # BFS over (node, used_inferred) states
            best: Dict[Tuple[str, bool], int] = {(seed, False): 0}
            queue = deque([(seed, False, 0)])
            while queue:
                node, used_inferred, hops = queue.popleft()
                if hops >= max_hops:
                    continue
                for neighbor, origin in adjacency.get(node, ()):
                    inferred_edge = origin == RelationOrigin.INFERRED.value
                    if inferred_edge and not include_inferred:
                        continue
                    state = (neighbor, used_inferred or inferred_edge)
                    if state in best:
                        continue
                    best[state] = hops + 1
                    queue.append((neighbor, state[1], hops + 1))

            for (node, used_inferred), hops in sorted(best.items()):
                if node == seed:
                    continue
                hits.append(TraversalHit(node, seed, hops, used_inferred))
        return hits

    def get_nodes(self, ids: Iterable[str]) -> Dict[str, GraphNode]:
        with self._lock:
            nodes = {}
            for node_id in ids:
                node = self.entities.get(node_id) or self.fragments.get(node_id)
                if node is not None:
                    nodes[node_id] = node
            return nodes

    def find_entities_by_terms(self, terms: List[str], limit: int = 200) -> List[Entity]:
        lowered = [t.lower() for t in terms if t]
        with self._lock:
            matches = [
                entity for _, entity in sorted(self.entities.items())
                if any(term in entity.name.lower() for term in lowered)
            ]
        return matches[:limit]

    def fetch_subgraph(self, selector: Optional[SubgraphSelector] = None) -> Subgraph:
        selector = selector or SubgraphSelector()
        with self._lock:
            scope = [e for _, e in sorted(self.entities.items()) if selector.matches(e)]
            scope = scope[:selector.max_entities]
            ids = {e.id for e in scope}
            relationships = [
                rel for key, rel in sorted(self.relationships.items())
                if rel.source_entity_id in ids and rel.target_entity_id in ids
            ]
        return Subgraph(entities={e.id: e for e in scope}, relationships=relationships)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            inferred = sum(
                1 for rel in self.relationships.values()
                if rel.origin is RelationOrigin.INFERRED
            )
            return {
                'entities': len(self.entities),
                'fragments': len(self.fragments),
                'relationships': len(self.relationships),
                'inferred_relationships': inferred,
                'mentions': sum(len(v) for v in self.mentions.values()),
                'vectors': self._index.ntotal if self._index is not None else 0,
            }

    def clear(self) -> int:
        with self._lock:
            deleted = len(self.entities) + len(self.fragments)
            self.entities.clear()
            self.fragments.clear()
            self.relationships.clear()
            self.mentions.clear()
            self._adjacency.clear()
            self._index = None
            self._int_ids.clear()
            self._node_ids.clear()
        logger.info(f"Cleared in-memory graph ({deleted} nodes)")
        return deleted

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, directory: Union[str, Path]) -> None:
        """Write graph.json, vectors.index and vector_id_map.json."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        with self._lock:
            graph = {
                'dimension': self.dimension,
                'entities': [
                    {'id': e.id, 'name': e.name, 'type': e.type.value,
                     'provenance': sorted(p.to_key() for p in e.provenance)}
                    for e in self.entities.values()
                ],
                'fragments': [
                    {'id': f.id, 'source_id': f.source_id, 'locator': f.locator.to_key(),
                     'text': f.text}
                    for f in self.fragments.values()
                ],
                'relationships': [
                    {'source': r.source_entity_id, 'target': r.target_entity_id,
                     'kind': r.kind, 'origin': r.origin.value, 'confidence': r.confidence,
                     'provenance': sorted(p.to_key() for p in r.provenance),
                     'rationale': r.rationale}
                    for r in self.relationships.values()
                ],
                'mentions': {k: sorted(v) for k, v in self.mentions.items()},
            }
            with open(directory / 'graph.json', 'w', encoding='utf-8') as f:
                json.dump(graph, f, ensure_ascii=False, indent=2)
            if self._index is not None:
                faiss.write_index(self._index, str(directory / 'vectors.index'))
                with open(directory / 'vector_id_map.json', 'w', encoding='utf-8') as f:
                    json.dump(self._int_ids, f)
        logger.info(f"Saved in-memory graph to {directory}")

    @classmethod
    def load(cls, directory: Union[str, Path], vector_index: bool = True) -> 'InMemoryGraphStore':
        directory = Path(directory)
        with open(directory / 'graph.json', 'r', encoding='utf-8') as f:
            graph = json.load(f)

        store = cls(dimension=graph.get('dimension'), vector_index=vector_index)
        index_path = directory / 'vectors.index'
        if index_path.exists():
            store._index = faiss.read_index(str(index_path))
            with open(directory / 'vector_id_map.json', 'r', encoding='utf-8') as f:
                store._int_ids = {k: int(v) for k, v in json.load(f).items()}
            store._node_ids = {v: k for k, v in store._int_ids.items()}

        def _vector(node_id):
            int_id = store._int_ids.get(node_id)
            return store._index.reconstruct(int_id) if int_id is not None else None

        for raw in graph['entities']:
            store.entities[raw['id']] = Entity(
                id=raw['id'],
                name=raw['name'],
                type=EntityType.parse(raw['type']),
                embedding=_vector(raw['id']),
                provenance=frozenset(Provenance.from_key(p) for p in raw['provenance']),
            )
        for raw in graph['fragments']:
            store.fragments[raw['id']] = DocumentFragment(
                id=raw['id'],
                source_id=raw['source_id'],
                locator=Locator.from_key(raw['locator']),
                text=raw['text'],
                embedding=_vector(raw['id']),
            )
        for raw in graph['relationships']:
            rel = Relationship(
                source_entity_id=raw['source'],
                target_entity_id=raw['target'],
                kind=raw['kind'],
                confidence=raw['confidence'],
                origin=RelationOrigin(raw['origin']),
                provenance=frozenset(Provenance.from_key(p) for p in raw['provenance']),
                rationale=raw.get('rationale'),
            )
            store.relationships[rel.key] = rel
            store._link(rel.source_entity_id, rel.target_entity_id, rel.origin.value)
        for fragment_id, entity_ids in graph['mentions'].items():
            store.mentions[fragment_id] = set(entity_ids)
            for entity_id in entity_ids:
                store._link(fragment_id, entity_id, RelationOrigin.EXPLICIT.value)

        logger.info(f"Loaded in-memory graph from {directory}: {store.stats()}")
        return store
