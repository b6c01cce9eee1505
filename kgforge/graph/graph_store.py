# -*- coding: utf-8 -*-
"""
Graph/vector store boundary.

The rest of the package talks to storage only through this interface. Writes
are atomic create-or-merge primitives, so concurrent writers converge on the
same state without any read-then-write on the caller side.

Node kinds:
    Entity    (id "ent_...")   RELATES edges between entities
    Fragment  (id "frag_...")  MENTIONS edges fragment -> entity

Implementations: InMemoryGraphStore (kgforge.graph.memory_store) and
Neo4jGraphStore (kgforge.graph.neo4j_store).
"""
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    GraphNode,
    Relationship,
    Subgraph,
    SubgraphSelector,
    TraversalHit,
    VectorHit,
)


class GraphStore:
    """Abstract store. Every method may raise StoreUnavailableError."""

    # ------------------------------------------------------------------
    # Writes (atomic merges)
    # ------------------------------------------------------------------

    def merge_entity(self, entity: Entity) -> bool:
        """
        Create the entity or merge into the existing node with the same id.

        Provenance is unioned; an existing embedding is kept, a missing one is
        filled from entity.embedding.

        Returns:
            True if the node was created by this call
        """
        raise NotImplementedError

    def merge_relationship(self, relationship: Relationship) -> bool:
        """
        Create or merge the edge keyed by (source, target, kind, origin).

        Confidence becomes the max of stored and incoming; provenance is
        unioned. Both endpoints must already exist.

        Returns:
            True if the edge was created by this call
        """
        raise NotImplementedError

    def merge_fragment(self, fragment: DocumentFragment, entity_ids: Iterable[str]) -> bool:
        """Create the fragment if absent and ensure MENTIONS edges to entity_ids."""
        raise NotImplementedError

    def set_embedding_if_absent(self, node_id: str, embedding: np.ndarray) -> bool:
        """Set a node's embedding only if it has none. Returns True if set."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def existing_entity_ids(self, ids: Iterable[str]) -> Set[str]:
        raise NotImplementedError

    def entities_missing_embedding(self, limit: int = 1000) -> List[Entity]:
        raise NotImplementedError

    def vector_search(self, embedding: np.ndarray, top_m: int) -> List[VectorHit]:
        """
        Nearest entities and fragments by cosine similarity.

        Returns:
            Up to top_m hits with similarity clamped to [0, 1]

        Raises:
            IndexUnavailableError: No usable vector index
            QueryTimeoutError: Query exceeded its timeout
        """
        raise NotImplementedError

    def traverse(
        self, seed_ids: Iterable[str], max_hops: int, include_inferred: bool = True
    ) -> List[TraversalHit]:
        """
        Nodes within max_hops of each seed over RELATES and MENTIONS edges
        (both directions).

        For every (seed, node, via_inferred) combination the shortest hop
        count is reported; seeds themselves are not reported for their own
        traversal.
        """
        raise NotImplementedError

    def get_nodes(self, ids: Iterable[str]) -> Dict[str, GraphNode]:
        raise NotImplementedError

    def find_entities_by_terms(self, terms: List[str], limit: int = 200) -> List[Entity]:
        """Entities whose name contains any term (case-insensitive)."""
        raise NotImplementedError

    def fetch_subgraph(self, selector: Optional[SubgraphSelector] = None) -> Subgraph:
        """Entities matching selector plus all RELATES edges among them."""
        raise NotImplementedError

    def stats(self) -> Dict[str, int]:
        raise NotImplementedError

    def clear(self) -> int:
        """Delete every node and edge. Returns the number of nodes removed."""
        raise NotImplementedError

    def close(self) -> None:
        pass
