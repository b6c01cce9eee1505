# -*- coding: utf-8 -*-
"""
Neo4j graph store.

Every write is a single Cypher MERGE inside a managed write transaction, so
the database serializes concurrent writers: two jobs merging "Acme Corp" at
the same time converge on one node with the union of their provenance.

Schema:
    (:Entity:Searchable {id, name, type, provenance[], sources[], embedding})
    (:Fragment:Searchable {id, source_id, locator, text, embedding})
    (:Entity)-[:RELATES {kind, origin, confidence, provenance[], rationale}]->(:Entity)
    (:Fragment)-[:MENTIONS]->(:Entity)

One native vector index (cosine) covers :Searchable.embedding for both node
kinds. Driver exceptions are translated at this boundary:
    ServiceUnavailable / SessionExpired -> StoreUnavailableError
    TransientError after driver retries -> ConflictUnresolvableError
    vector procedure ClientError        -> IndexUnavailableError
    transaction timeout                 -> QueryTimeoutError

Example:
    store = Neo4jGraphStore(uri, user, password)
    store.ensure_schema(dimension=1024)
    store.merge_entity(entity)
"""
# Standard library
import logging
from typing import Dict, Iterable, List, Optional, Set

# Third-party
import numpy as np
from neo4j import GraphDatabase, unit_of_work
from neo4j.exceptions import (
    ClientError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

# Config imports (direct)
from config.pipeline_config import NEO4J_CONFIG

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
from kgforge.utils.errors import (
    ConflictUnresolvableError,
    IndexUnavailableError,
    QueryTimeoutError,
    StoreUnavailableError,
    UpsertError,
)

logger = logging.getLogger(__name__)


# ============================================================================
# CYPHER
# ============================================================================

MERGE_ENTITY = """
MERGE (e:Entity:Searchable {id: $id})
ON CREATE SET e._new = true,
              e.name = $name,
              e.type = $type,
              e.provenance = $provenance,
              e.sources = $sources,
              e.embedding = $embedding
ON MATCH SET e.provenance = e.provenance + [p IN $provenance WHERE NOT p IN e.provenance],
             e.sources = e.sources + [s IN $sources WHERE NOT s IN e.sources],
             e.embedding = coalesce(e.embedding, $embedding)
WITH e, coalesce(e._new, false) AS created
REMOVE e._new
RETURN created
"""

# Locking both endpoints first serializes concurrent merges of the same edge
MERGE_RELATIONSHIP = """
MATCH (a:Entity {id: $source}), (b:Entity {id: $target})
SET a._lock = true, b._lock = true
MERGE (a)-[r:RELATES {kind: $kind, origin: $origin}]->(b)
ON CREATE SET r._new = true,
              r.confidence = $confidence,
              r.provenance = $provenance,
              r.rationale = $rationale
ON MATCH SET r.confidence = CASE WHEN $confidence > r.confidence
                                 THEN $confidence ELSE r.confidence END,
             r.provenance = r.provenance + [p IN $provenance WHERE NOT p IN r.provenance],
             r.rationale = coalesce(r.rationale, $rationale)
WITH a, b, r, coalesce(r._new, false) AS created
REMOVE r._new, a._lock, b._lock
RETURN created
"""

MERGE_FRAGMENT = """
MERGE (f:Fragment:Searchable {id: $id})
ON CREATE SET f._new = true,
              f.source_id = $source_id,
              f.locator = $locator,
              f.text = $text,
              f.embedding = $embedding
ON MATCH SET f.embedding = coalesce(f.embedding, $embedding)
WITH f, coalesce(f._new, false) AS created
REMOVE f._new
WITH f, created
CALL {
    WITH f
    UNWIND $entity_ids AS entity_id
    MATCH (e:Entity {id: entity_id})
    MERGE (f)-[:MENTIONS]->(e)
    RETURN count(*) AS linked
}
RETURN created, linked
"""

SET_EMBEDDING_IF_ABSENT = """
MATCH (n:Searchable {id: $id})
WHERE n.embedding IS NULL
SET n.embedding = $embedding
RETURN count(n) AS updated
"""

VECTOR_SEARCH = """
CALL db.index.vector.queryNodes($index_name, $top_m, $embedding)
YIELD node, score
RETURN node.id AS id, score
ORDER BY score DESC, id ASC
"""

# {max_hops} is formatted in: variable-length bounds cannot be parameters
TRAVERSE = """
UNWIND $seed_ids AS seed_id
MATCH (s:Searchable {{id: seed_id}})
MATCH p = (s)-[rels:RELATES|MENTIONS*1..{max_hops}]-(n:Searchable)
WHERE n <> s
  AND ($include_inferred OR none(r IN rels WHERE r.origin = 'Inferred'))
WITH seed_id, n.id AS node_id,
     any(r IN rels WHERE r.origin = 'Inferred') AS via_inferred,
     length(p) AS hops
RETURN seed_id, node_id, via_inferred, min(hops) AS hops
ORDER BY seed_id, node_id, via_inferred
"""

GET_NODES = """
MATCH (n:Searchable)
WHERE n.id IN $ids
RETURN n.id AS id, 'Entity' IN labels(n) AS is_entity, n {.*, embedding: null} AS props
"""

FIND_BY_TERMS = """
MATCH (e:Entity)
WHERE any(t IN $terms WHERE toLower(e.name) CONTAINS t)
RETURN e {.id, .name, .type, .provenance} AS entity
ORDER BY e.id
LIMIT $limit
"""

EXISTING_IDS = """
MATCH (e:Entity)
WHERE e.id IN $ids
RETURN collect(e.id) AS ids
"""

MISSING_EMBEDDING = """
MATCH (e:Entity)
WHERE e.embedding IS NULL
RETURN e {.id, .name, .type, .provenance} AS entity
ORDER BY e.id
LIMIT $limit
"""

FETCH_SUBGRAPH = """
MATCH (e:Entity)
WHERE ($ids IS NULL OR e.id IN $ids)
  AND ($types IS NULL OR e.type IN $types)
  AND ($sources IS NULL OR any(s IN e.sources WHERE s IN $sources))
WITH e ORDER BY e.id LIMIT $limit
WITH collect(e) AS scope
UNWIND scope AS e
OPTIONAL MATCH (e)-[r:RELATES]->(o:Entity)
WHERE o IN scope
RETURN e {.id, .name, .type, .provenance} AS entity,
       collect(CASE WHEN r IS NULL THEN null ELSE {
           target: o.id, kind: r.kind, origin: r.origin, confidence: r.confidence,
           provenance: r.provenance, rationale: r.rationale
       } END) AS relationships
ORDER BY entity.id
"""

CLEAR = """
MATCH (n:Searchable)
DETACH DELETE n
RETURN count(n) AS deleted
"""

STATS = """
CALL { MATCH (e:Entity) RETURN count(e) AS entities }
CALL { MATCH (f:Fragment) RETURN count(f) AS fragments }
CALL { MATCH ()-[r:RELATES]->() RETURN count(r) AS relationships }
CALL { MATCH ()-[r:RELATES {origin: 'Inferred'}]->() RETURN count(r) AS inferred }
CALL { MATCH ()-[m:MENTIONS]->() RETURN count(m) AS mentions }
RETURN entities, fragments, relationships, inferred, mentions
"""


def _vector(embedding: Optional[np.ndarray]) -> Optional[List[float]]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).ravel().tolist()


def _entity_from_record(raw: Dict) -> Entity:
    return Entity(
        id=raw['id'],
        name=raw['name'],
        type=EntityType.parse(raw.get('type')),
        provenance=frozenset(Provenance.from_key(p) for p in raw.get('provenance') or []),
    )


class Neo4jGraphStore(GraphStore):
    """
    GraphStore over the official neo4j driver.

    Args:
        uri, user, password, database: Connection (defaults from NEO4J_CONFIG)
        driver: Pre-built driver (tests inject a mock here)
    """

    def __init__(
        self,
        uri: Optional[str] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        database: Optional[str] = None,
        config: Optional[Dict] = None,
        driver=None,
    ):
        self.config = {**NEO4J_CONFIG, **(config or {})}
        self.database = database or self.config['database']
        self.timeout = self.config['query_timeout']
        self.index_name = self.config['vector_index_name']
        uri = uri or self.config['uri']
        self.driver = driver or GraphDatabase.driver(
            uri, auth=(user or self.config['user'], password or self.config['password'])
        )
        logger.info(f"Neo4j store on {uri} (database={self.database})")

    def close(self) -> None:
        self.driver.close()
        logger.info("Neo4j connection closed")

    # ------------------------------------------------------------------
    # Session plumbing
    # ------------------------------------------------------------------

    @staticmethod
    def _is_timeout(error: Neo4jError) -> bool:
        return 'TransactionTimedOut' in (getattr(error, 'code', None) or '')

    def _write(self, cypher: str, **params):
        """Run one write statement and return its single record."""
        @unit_of_work(timeout=self.timeout)
        def work(tx):
            return tx.run(cypher, **params).single()

        try:
            with self.driver.session(database=self.database) as session:
                return session.execute_write(work)
        except (ServiceUnavailable, SessionExpired) as e:
            raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e
        except TransientError as e:
            raise ConflictUnresolvableError(f"Write kept conflicting: {e}") from e
        except ClientError as e:
            if self._is_timeout(e):
                raise StoreUnavailableError(f"Neo4j write timed out: {e}") from e
            raise

    def _read(self, cypher: str, **params) -> List:
        """Run one read statement and return all records."""
        @unit_of_work(timeout=self.timeout)
        def work(tx):
            return list(tx.run(cypher, **params))

        try:
            with self.driver.session(database=self.database) as session:
                return session.execute_read(work)
        except (ServiceUnavailable, SessionExpired) as e:
            raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e
        except ClientError as e:
            if self._is_timeout(e):
                raise QueryTimeoutError(f"Neo4j query timed out: {e}") from e
            raise

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def ensure_schema(self, dimension: int) -> None:
        """Create uniqueness constraints, the id index and the vector index."""
        statements = [
            "CREATE CONSTRAINT entity_id IF NOT EXISTS FOR (e:Entity) REQUIRE e.id IS UNIQUE",
            "CREATE CONSTRAINT fragment_id IF NOT EXISTS FOR (f:Fragment) REQUIRE f.id IS UNIQUE",
            "CREATE INDEX searchable_id IF NOT EXISTS FOR (n:Searchable) ON (n.id)",
            "CREATE INDEX entity_name IF NOT EXISTS FOR (e:Entity) ON (e.name)",
            (
                f"CREATE VECTOR INDEX {self.index_name} IF NOT EXISTS "
                f"FOR (n:Searchable) ON (n.embedding) "
                f"OPTIONS {{indexConfig: {{`vector.dimensions`: {int(dimension)}, "
                f"`vector.similarity_function`: 'cosine'}}}}"
            ),
        ]
        try:
            with self.driver.session(database=self.database) as session:
                for statement in statements:
                    session.run(statement)
        except (ServiceUnavailable, SessionExpired) as e:
            raise StoreUnavailableError(f"Neo4j unavailable: {e}") from e
        logger.info(f"Neo4j schema ready ({len(statements)} constraints/indexes)")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def merge_entity(self, entity: Entity) -> bool:
        record = self._write(
            MERGE_ENTITY,
            id=entity.id,
            name=entity.name,
            type=entity.type.value,
            provenance=sorted(p.to_key() for p in entity.provenance),
            sources=sorted(entity.source_ids),
            embedding=_vector(entity.embedding),
        )
        return bool(record and record['created'])

    def merge_relationship(self, relationship: Relationship) -> bool:
        record = self._write(
            MERGE_RELATIONSHIP,
            source=relationship.source_entity_id,
            target=relationship.target_entity_id,
            kind=relationship.kind,
            origin=relationship.origin.value,
            confidence=relationship.confidence,
            provenance=sorted(p.to_key() for p in relationship.provenance),
            rationale=relationship.rationale,
        )
        if record is None:
            raise UpsertError(
                f"Relationship endpoints missing: {relationship.source_entity_id} -> "
                f"{relationship.target_entity_id}"
            )
        return bool(record['created'])

    def merge_fragment(self, fragment: DocumentFragment, entity_ids: Iterable[str]) -> bool:
        record = self._write(
            MERGE_FRAGMENT,
            id=fragment.id,
            source_id=fragment.source_id,
            locator=fragment.locator.to_key(),
            text=fragment.text,
            embedding=_vector(fragment.embedding),
            entity_ids=sorted(set(entity_ids)),
        )
        return bool(record and record['created'])

    def set_embedding_if_absent(self, node_id: str, embedding: np.ndarray) -> bool:
        record = self._write(SET_EMBEDDING_IF_ABSENT, id=node_id, embedding=_vector(embedding))
        return bool(record and record['updated'])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def existing_entity_ids(self, ids: Iterable[str]) -> Set[str]:
        records = self._read(EXISTING_IDS, ids=list(ids))
        return set(records[0]['ids']) if records else set()

    def entities_missing_embedding(self, limit: int = 1000) -> List[Entity]:
        return [_entity_from_record(r['entity']) for r in self._read(MISSING_EMBEDDING, limit=limit)]

    def vector_search(self, embedding: np.ndarray, top_m: int) -> List[VectorHit]:
        if top_m <= 0:
            return []
        try:
            records = self._read(
                VECTOR_SEARCH,
                index_name=self.index_name,
                top_m=int(top_m),
                embedding=_vector(embedding),
            )
        except ClientError as e:
            raise IndexUnavailableError(f"Vector index unavailable: {e}") from e

        # Neo4j cosine scores are (1 + cos) / 2
        return [
            VectorHit(r['id'], max(0.0, min(1.0, 2.0 * float(r['score']) - 1.0)))
            for r in records
        ]

    def traverse(
        self, seed_ids: Iterable[str], max_hops: int, include_inferred: bool = True
    ) -> List[TraversalHit]:
        seeds = sorted(set(seed_ids))
        if not seeds or max_hops < 1:
            return []
        records = self._read(
            TRAVERSE.format(max_hops=int(max_hops)),
            seed_ids=seeds,
            include_inferred=include_inferred,
        )
        return [
            TraversalHit(r['node_id'], r['seed_id'], int(r['hops']), bool(r['via_inferred']))
            for r in records
        ]

    def get_nodes(self, ids: Iterable[str]) -> Dict[str, GraphNode]:
        nodes: Dict[str, GraphNode] = {}
        for record in self._read(GET_NODES, ids=list(ids)):
            props = record['props']
            if record['is_entity']:
                nodes[record['id']] = _entity_from_record(props)
            else:
                nodes[record['id']] = DocumentFragment(
                    id=props['id'],
                    source_id=props['source_id'],
                    locator=Locator.from_key(props.get('locator') or ''),
                    text=props.get('text') or '',
                )
        return nodes

    def find_entities_by_terms(self, terms: List[str], limit: int = 200) -> List[Entity]:
        lowered = [t.lower() for t in terms if t]
        if not lowered:
            return []
        records = self._read(FIND_BY_TERMS, terms=lowered, limit=limit)
        return [_entity_from_record(r['entity']) for r in records]

    def fetch_subgraph(self, selector: Optional[SubgraphSelector] = None) -> Subgraph:
        selector = selector or SubgraphSelector()
        records = self._read(
            FETCH_SUBGRAPH,
            ids=selector.entity_ids,
            types=[t.value for t in selector.entity_types] if selector.entity_types else None,
            sources=selector.source_ids,
            limit=selector.max_entities,
        )
        subgraph = Subgraph()
        for record in records:
            entity = _entity_from_record(record['entity'])
            subgraph.entities[entity.id] = entity
            for raw in record['relationships']:
                subgraph.relationships.append(Relationship(
                    source_entity_id=entity.id,
                    target_entity_id=raw['target'],
                    kind=raw['kind'],
                    confidence=raw['confidence'],
                    origin=RelationOrigin(raw['origin']),
                    provenance=frozenset(
                        Provenance.from_key(p) for p in raw.get('provenance') or []
                    ),
                    rationale=raw.get('rationale'),
                ))
        return subgraph

    def stats(self) -> Dict[str, int]:
        records = self._read(STATS)
        if not records:
            return {}
        record = records[0]
        return {
            'entities': record['entities'],
            'fragments': record['fragments'],
            'relationships': record['relationships'],
            'inferred_relationships': record['inferred'],
            'mentions': record['mentions'],
        }

    def clear(self) -> int:
        logger.warning("Clearing all kgforge nodes from Neo4j...")
        record = self._write(CLEAR)
        deleted = record['deleted'] if record else 0
        logger.info(f"Deleted {deleted} nodes and their relationships")
        return deleted
