# -*- coding: utf-8 -*-
"""
Graph Upsert Layer: the only component that writes to the graph store.

upsert() merges entities, then relationships, then fragments (with their
MENTIONS links). Each write is one atomic store merge, so applying the same
extraction output twice leaves the graph unchanged and concurrent documents
touching the same entity id cannot corrupt each other.

Embeddings:
    - new entity (not yet in the store) without embedding: embedded
      synchronously as "{name} ({type})" before its first merge
    - embedding failure or no embedder configured: persisted without a
      vector and queued; backfill_embeddings() fills it later, only where
      the node still has none
    - existing entities keep their stored embedding

Example:
    upserter = GraphUpserter(store, embedder)
    report = upserter.upsert(result.entities, result.relationships, result.fragments)
    upserter.backfill_embeddings()
"""
# Standard library
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

# Config imports (direct)
from config.pipeline_config import UPSERT_CONFIG, validate_retry_config

# Local
from kgforge.graph.graph_store import GraphStore
from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    Relationship,
    UpsertReport,
)
from kgforge.utils.errors import (
    ConflictUnresolvableError,
    StoreUnavailableError,
    UpsertError,
)

logger = logging.getLogger(__name__)


class EmbeddingBackfillQueue:
    """Thread-safe, de-duplicating FIFO of (node_id, text) awaiting an embedding."""

    def __init__(self):
        self._items: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, node_id: str, text: str) -> None:
        with self._lock:
            self._items.setdefault(node_id, text)

    def drain(self) -> List[Tuple[str, str]]:
        with self._lock:
            items = list(self._items.items())
            self._items.clear()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class GraphUpserter:
    """
    Idempotent writer over a GraphStore.

    Args:
        store: Graph store (sole write path)
        embedder: Object with embed(text) -> vector, or None to queue all
        config: Overrides for UPSERT_CONFIG
    """

    def __init__(self, store: GraphStore, embedder=None, config: Optional[Dict] = None):
        self.store = store
        self.embedder = embedder
        self.config = {**UPSERT_CONFIG, **(config or {})}
        validate_retry_config(self.config)
        self.backfill_queue = EmbeddingBackfillQueue()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _with_retries(self, operation: Callable, *args):
        """
        Run a store call, retrying unavailability and write conflicts with
        exponential backoff. The last error is re-raised.
        """
        max_retries = self.config['max_retries']
        for attempt in range(max_retries):
            try:
                return operation(*args)
            except (StoreUnavailableError, ConflictUnresolvableError) as e:
                if attempt < max_retries - 1:
                    logger.warning(f"Store call failed (attempt {attempt + 1}/{max_retries}): {e}")
                    time.sleep(self.config['backoff_base'] * 2 ** attempt)
                else:
                    raise

    def _try_embed(self, text: str):
        if self.embedder is None:
            return None
        try:
            return self.embedder.embed(text)
        except Exception as e:
            logger.warning(f"Embedding failed for {text[:60]!r}, queued for backfill: {e}")
            return None

    @staticmethod
    def _mentions_index(entities: Iterable[Entity]) -> Dict[str, Set[str]]:
        index: Dict[str, Set[str]] = {}
        for entity in entities:
            for provenance in entity.provenance:
                index.setdefault(provenance.to_key(), set()).add(entity.id)
        return index

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def upsert(
        self,
        entities: Iterable[Entity],
        relationships: Iterable[Relationship],
        fragments: Iterable[DocumentFragment] = (),
    ) -> UpsertReport:
        """
        Merge extraction output into the store.

        Per-item conflicts are recorded in report.errors and the rest of the
        batch continues.

        Raises:
            StoreUnavailableError: Store unreachable after retries
        """
        entities = list(entities)
        relationships = list(relationships)
        fragments = list(fragments)
        report = UpsertReport()

        existing = self._with_retries(
            self.store.existing_entity_ids, [e.id for e in entities]
        ) if entities else set()

        for entity in entities:
            to_write = entity
            if entity.embedding is None and entity.id not in existing:
                if self.config['embed_new_entities']:
                    vector = self._try_embed(entity.embedding_text())
                else:
                    vector = None
                if vector is not None:
                    to_write = Entity(
                        id=entity.id,
                        name=entity.name,
                        type=entity.type,
                        embedding=vector,
                        provenance=entity.provenance,
                    )
                    report.embeddings_computed += 1
                else:
                    self.backfill_queue.put(entity.id, entity.embedding_text())
                    report.embeddings_queued += 1

            try:
                created = self._with_retries(self.store.merge_entity, to_write)
            except ConflictUnresolvableError as e:
                report.errors.append(f"entity {entity.id}: {e}")
                continue
            if created:
                report.entities_created += 1
            else:
                report.entities_merged += 1

        for relationship in relationships:
            try:
                created = self._with_retries(self.store.merge_relationship, relationship)
            except StoreUnavailableError:
                raise
            except UpsertError as e:
                report.errors.append(f"relationship {relationship.key}: {e}")
                continue
            if created:
                report.relationships_created += 1
            else:
                report.relationships_merged += 1

        mentions = self._mentions_index(entities)
        for fragment in fragments:
            to_write = fragment
            if fragment.embedding is None and self.config['embed_fragments']:
                vector = self._try_embed(fragment.text)
                if vector is not None:
                    to_write = DocumentFragment(
                        id=fragment.id,
                        source_id=fragment.source_id,
                        locator=fragment.locator,
                        text=fragment.text,
                        embedding=vector,
                    )
                    report.embeddings_computed += 1
                else:
                    self.backfill_queue.put(fragment.id, fragment.text)
                    report.embeddings_queued += 1

            linked = sorted(mentions.get(fragment.provenance.to_key(), ()))
            try:
                self._with_retries(self.store.merge_fragment, to_write, linked)
            except ConflictUnresolvableError as e:
                report.errors.append(f"fragment {fragment.id}: {e}")
                continue
            report.fragments_written += 1

        logger.info(
            f"Upsert: entities +{report.entities_created}/~{report.entities_merged}, "
            f"relationships +{report.relationships_created}/~{report.relationships_merged}, "
            f"fragments {report.fragments_written}, embeddings {report.embeddings_computed} "
            f"computed / {report.embeddings_queued} queued, {len(report.errors)} errors"
        )
        return report

    # ------------------------------------------------------------------
    # Out-of-band embeddings
    # ------------------------------------------------------------------

    @property
    def pending_embeddings(self) -> int:
        return len(self.backfill_queue)

    def backfill_embeddings(self, scan_store: bool = False, limit: int = 1000) -> int:
        """
        Compute queued embeddings and set them where the node still has none.

        Args:
            scan_store: Also enqueue store entities missing an embedding
                (recovers work queued by a previous process)
            limit: Max entities pulled from the store scan

        Returns:
            Number of embeddings written
        """
        if self.embedder is None:
            logger.warning("No embedder configured; backfill skipped")
            return 0

        if scan_store:
            for entity in self.store.entities_missing_embedding(limit=limit):
                self.backfill_queue.put(entity.id, entity.embedding_text())

        written = 0
        for node_id, text in self.backfill_queue.drain():
            vector = self._try_embed(text)
            if vector is None:
                self.backfill_queue.put(node_id, text)
                continue
            if self._with_retries(self.store.set_embedding_if_absent, node_id, vector):
                written += 1

        logger.info(f"Backfilled {written} embeddings ({self.pending_embeddings} still pending)")
        return written
