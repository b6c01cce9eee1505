# -*- coding: utf-8 -*-
"""
Hybrid retrieval: vector similarity fused with graph traversal.

Pipeline for retrieve(query, k):
    (1) embed the query, vector search the top m = candidate_multiplier * k
        entities and fragments (similarity in [0, 1]),
    (2) traverse up to max_hops from those seeds; a reached node scores
        seed_similarity * decay ** hops (times inferred_edge_weight when the
        path used an inferred edge), max over seeds,
    (3) fuse: nodes in both channels get w_v * v + w_g * g, single-channel
        nodes keep their score times that channel's weight,
    (4) sort by score desc, node id asc; return the top k.

When the vector index is unavailable or the query cannot be embedded, seeds
come from name matching instead (score = match score, hop 0) and the result is
flagged degraded. Store outages and timeouts propagate.

Modes (RetrievalMode) follow the ablation split: SEMANTIC uses the vector
channel only, GRAPH uses name-matched seeds and traversal only, HYBRID fuses.

Example:
    retriever = HybridRetriever(store, embedder)
    result = retriever.retrieve("who signed the Acme contract?", k=5)
    for item in result.items:
        print(f"[{item.score:.3f}] {item.node_id}")
"""
# Standard library
import logging
from typing import Dict, List, Optional, Tuple, Union

# Config imports (direct)
from config.retrieval_config import (
    RETRIEVAL_CONFIG,
    RetrievalMode,
    validate_fusion_config,
)

# Dataclass imports (direct)
from kgforge.utils.dataclasses import RetrievalResult, ScoredItem

# Local
from kgforge.retrieval.name_matcher import NameMatcher
from kgforge.utils.errors import EmbeddingError, IndexUnavailableError

logger = logging.getLogger(__name__)

# node_id -> (graph score, hops of the best path)
GraphScores = Dict[str, Tuple[float, int]]


class HybridRetriever:
    """
    Rank entities and fragments for a query.

    Args:
        store: GraphStore (vector_search, traverse, get_nodes)
        embedder: Object with embed(text), or None (always degraded)
        config: Overrides for RETRIEVAL_CONFIG, validated on construction
        name_matcher: Seed matcher for GRAPH and degraded retrieval

    Raises:
        ValueError: Invalid fusion configuration
    """

    def __init__(
        self,
        store,
        embedder=None,
        config: Optional[Dict] = None,
        name_matcher: Optional[NameMatcher] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.config = {**RETRIEVAL_CONFIG, **(config or {})}
        validate_fusion_config(self.config)
        self.name_matcher = name_matcher or NameMatcher(store, self.config)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def _vector_channel(self, query: str, top_m: int) -> Dict[str, float]:
        if self.embedder is None:
            raise EmbeddingError("No embedder configured")
        embedding = self.embedder.embed(query)

        scores: Dict[str, float] = {}
        for hit in self.store.vector_search(embedding, top_m):
            similarity = min(1.0, max(0.0, hit.similarity))
            scores[hit.node_id] = max(similarity, scores.get(hit.node_id, 0.0))
        return scores

    def _graph_channel(self, seeds: Dict[str, float], seeds_at_hop_zero: bool) -> GraphScores:
        """
        Score nodes reached from seeds.

        Args:
            seeds: seed node_id -> seed score in [0, 1]
            seeds_at_hop_zero: Score the seeds themselves (name-matched seeds
                have no vector score to carry them)
        """
        scores: GraphScores = {}
        if seeds_at_hop_zero:
            for seed_id, seed_score in seeds.items():
                scores[seed_id] = (seed_score, 0)

        if not seeds or self.config['max_hops'] == 0:
            return scores

        decay = self.config['decay']
        inferred_weight = self.config['inferred_edge_weight']
        hits = self.store.traverse(
            sorted(seeds), self.config['max_hops'], self.config['include_inferred']
        )
        for hit in hits:
            seed_score = seeds.get(hit.seed_id)
            if seed_score is None or hit.hops < 1:
                continue
            value = seed_score * decay ** hit.hops
            if hit.via_inferred:
                value *= inferred_weight
            current = scores.get(hit.node_id)
            if current is None or value > current[0] or (value == current[0] and hit.hops < current[1]):
                scores[hit.node_id] = (value, hit.hops)
        return scores

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def fuse(
        self, vector_scores: Dict[str, float], graph_scores: GraphScores
    ) -> List[Tuple[str, float, Optional[float], Optional[float], Optional[int]]]:
        """
        Weighted merge of both channels.

        Returns:
            (node_id, fused, vector_score, graph_score, hops) sorted by fused
            score desc, node id asc
        """
        w_v = self.config['vector_weight']
        w_g = self.config['graph_weight']

        fused = []
        for node_id in set(vector_scores) | set(graph_scores):
            v = vector_scores.get(node_id)
            g, hops = graph_scores.get(node_id, (None, None))
            if v is not None and g is not None:
                score = w_v * v + w_g * g
            elif v is not None:
                score = w_v * v
            else:
                score = w_g * g
            fused.append((node_id, score, v, g, hops))

        fused.sort(key=lambda row: (-row[1], row[0]))
        return fused

    @staticmethod
    def _single_channel(
        vector_scores: Dict[str, float], graph_scores: GraphScores
    ) -> List[Tuple[str, float, Optional[float], Optional[float], Optional[int]]]:
        rows = []
        for node_id, v in vector_scores.items():
            rows.append((node_id, v, v, None, None))
        for node_id, (g, hops) in graph_scores.items():
            rows.append((node_id, g, None, g, hops))
        rows.sort(key=lambda row: (-row[1], row[0]))
        return rows

    def _materialize(self, ranked, k: int) -> List[ScoredItem]:
        """Load nodes for the ranked ids, skipping ids no longer in the store."""
        items: List[ScoredItem] = []
        position = 0
        while len(items) < k and position < len(ranked):
            batch = ranked[position:position + k]
            position += k
            nodes = self.store.get_nodes([row[0] for row in batch])
            for node_id, score, v, g, hops in batch:
                node = nodes.get(node_id)
                if node is None:
                    continue
                items.append(ScoredItem(node=node, score=score, vector_score=v, graph_score=g, hops=hops))
                if len(items) == k:
                    break
        return items

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        mode: Union[RetrievalMode, str] = RetrievalMode.HYBRID,
    ) -> RetrievalResult:
        """
        Ranked, deduplicated context for a query.

        Raises:
            QueryTimeoutError: Store query timed out
            StoreUnavailableError: Store unreachable
        """
        mode = RetrievalMode(mode)
        k = self.config['default_k'] if k is None else k
        result = RetrievalResult(query=query, mode=mode.value)
        if k <= 0 or not query or not query.strip():
            return result

        top_m = max(k + 1, int(self.config['candidate_multiplier'] * k))
        vector_scores: Dict[str, float] = {}
        if mode is not RetrievalMode.GRAPH:
            try:
                vector_scores = self._vector_channel(query, top_m)
            except (IndexUnavailableError, EmbeddingError) as e:
                result.degraded = True
                result.warnings.append(f"Vector channel unavailable, using name-matched seeds: {e}")
                logger.warning(f"Degraded retrieval for {query!r}: {e}")

        if mode is RetrievalMode.GRAPH or result.degraded:
            seeds = {entity.id: score for entity, score in self.name_matcher.match(query)}
            if not seeds:
                result.warnings.append("No entity names matched the query")
            graph_scores = self._graph_channel(seeds, seeds_at_hop_zero=True)
            ranked = self._single_channel({}, graph_scores)
        elif mode is RetrievalMode.SEMANTIC:
            graph_scores = {}
            ranked = self._single_channel(vector_scores, {})
        else:
            graph_scores = self._graph_channel(vector_scores, seeds_at_hop_zero=False)
            ranked = self.fuse(vector_scores, graph_scores)

        result.items = self._materialize(ranked, k)
        logger.info(
            f"Retrieved {len(result.items)}/{k} items for {query!r} "
            f"(mode={mode.value}, vector={len(vector_scores)}, graph={len(graph_scores)}, "
            f"degraded={result.degraded})"
        )
        return result
