# -*- coding: utf-8 -*-
"""
Inferred relationship pass over the stored graph.

Finds entity pairs that are not directly connected but are structurally
close, asks the LLM to label the pattern, and writes the labeled pairs back
through the Graph Upsert Layer as Inferred edges.

Candidate pairs (explicit edges only, within the selected scope):
    - at least min_common_neighbors shared neighbors, or
    - a 2-edge path whose two edge kinds are both in allowed_intermediate_kinds
Pairs joined by any direct edge (Explicit or Inferred) are never candidates,
so re-running over an unchanged graph proposes nothing new.

Example:
    engine = InferenceEngine(store, upserter, llm)
    inferred = engine.infer(SubgraphSelector(source_ids=["org_chart.xlsx"]))
    print(f"{len(inferred)} inferred edges")
"""
# Standard library
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, FrozenSet, List, Optional, Set

# Third-party
from pydantic import BaseModel, Field, ValidationError, field_validator

# Config imports (direct)
from config.retrieval_config import INFERENCE_CONFIG

# Local
from kgforge.prompts.prompts import INFERENCE_PROMPT
from kgforge.utils.dataclasses import (
    Entity,
    RelationOrigin,
    Relationship,
    Subgraph,
    SubgraphSelector,
)
from kgforge.utils.errors import ExtractionError, SchemaViolationError
from kgforge.utils.io import parse_json_response

logger = logging.getLogger(__name__)


class InferenceOutput(BaseModel):
    """Output format for inferred relationship labeling"""
    has_relation: bool = Field(description="Whether a direct relationship is implied")
    relation: Optional[str] = Field(default=None, description="snake_case relationship label")
    direction: str = Field(default="a_to_b", pattern="^(a_to_b|b_to_a)$")
    confidence: float = Field(default=0.5, description="0.0-1.0, clamped")
    reasoning: str = Field(default="", description="One short sentence")

    @field_validator('confidence')
    @classmethod
    def clamp_confidence(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


@dataclass
class CandidatePair:
    """Unconnected entity pair with the intermediates that link them."""
    source: Entity
    target: Entity
    common_neighbors: List[str] = field(default_factory=list)
    allowed_path: bool = False
    paths: List[str] = field(default_factory=list)


class InferenceEngine:
    """
    Propose and persist Inferred relationships.

    Args:
        store: GraphStore to read the scoped subgraph from
        upserter: GraphUpserter used for all writes (None = never persist)
        llm: Object with generate(prompt, schema_hint=None) -> str
        config: Overrides for INFERENCE_CONFIG
    """

    def __init__(self, store, upserter, llm, config: Optional[Dict] = None):
        self.store = store
        self.upserter = upserter
        self.llm = llm
        self.config = {**INFERENCE_CONFIG, **(config or {})}
        self.allowed_kinds = set(self.config['allowed_intermediate_kinds'])

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------

    def find_candidates(self, subgraph: Subgraph) -> List[CandidatePair]:
        """
        Structural candidates, ordered by common-neighbor count desc then
        ids, capped at max_candidates.
        """
        connected: Set[FrozenSet[str]] = set()
        neighbors: Dict[str, Set[str]] = {}
        edges: Dict[FrozenSet[str], List[Relationship]] = {}

        for rel in subgraph.relationships:
            pair = frozenset((rel.source_entity_id, rel.target_entity_id))
            connected.add(pair)
            if rel.origin is not RelationOrigin.EXPLICIT:
                continue
            neighbors.setdefault(rel.source_entity_id, set()).add(rel.target_entity_id)
            neighbors.setdefault(rel.target_entity_id, set()).add(rel.source_entity_id)
            edges.setdefault(pair, []).append(rel)

        common: Dict[tuple, List[str]] = {}
        for middle in sorted(neighbors):
            for a, b in combinations(sorted(neighbors[middle]), 2):
                if frozenset((a, b)) in connected:
                    continue
                common.setdefault((a, b), []).append(middle)

        candidates = []
        for (a, b), middles in common.items():
            allowed_path = any(
                self._allowed(edges[frozenset((a, m))]) and self._allowed(edges[frozenset((m, b))])
                for m in middles
            )
            if len(middles) < self.config['min_common_neighbors'] and not allowed_path:
                continue
            source, target = subgraph.entities[a], subgraph.entities[b]
            candidates.append(CandidatePair(
                source=source,
                target=target,
                common_neighbors=middles,
                allowed_path=allowed_path,
                paths=self._describe_paths(source, target, middles, subgraph, edges),
            ))

        candidates.sort(key=lambda c: (-len(c.common_neighbors), c.source.id, c.target.id))
        if len(candidates) > self.config['max_candidates']:
            logger.info(
                f"Capping {len(candidates)} candidate pairs at {self.config['max_candidates']}"
            )
        return candidates[:self.config['max_candidates']]

    def _allowed(self, relationships: List[Relationship]) -> bool:
        return any(rel.kind in self.allowed_kinds for rel in relationships)

    @staticmethod
    def _describe_paths(
        source: Entity,
        target: Entity,
        middles: List[str],
        subgraph: Subgraph,
        edges: Dict[FrozenSet[str], List[Relationship]],
    ) -> List[str]:
        names = {eid: e.name for eid, e in subgraph.entities.items()}

        def render(rel: Relationship) -> str:
            return f"{names[rel.source_entity_id]} --{rel.kind}--> {names[rel.target_entity_id]}"

        lines = []
        for middle in middles:
            left = sorted(edges[frozenset((source.id, middle))], key=lambda r: r.key)
            right = sorted(edges[frozenset((middle, target.id))], key=lambda r: r.key)
            for first in left:
                for second in right:
                    lines.append(f"{render(first)}; {render(second)}")
        return lines

    # ------------------------------------------------------------------
    # Labeling
    # ------------------------------------------------------------------

    def _label_once(self, candidate: CandidatePair) -> InferenceOutput:
        prompt = INFERENCE_PROMPT.format(
            source_name=candidate.source.name,
            source_type=candidate.source.type.value,
            target_name=candidate.target.name,
            target_type=candidate.target.type.value,
            paths='\n'.join(f"- {line}" for line in candidate.paths),
        )
        content = self.llm.generate(prompt, schema_hint=InferenceOutput)
        payload = parse_json_response(content, required_keys=['has_relation'])
        try:
            return InferenceOutput.model_validate(payload)
        except ValidationError as e:
            raise SchemaViolationError(f"Invalid inference output: {e}") from e

    def label(self, candidate: CandidatePair) -> Optional[Relationship]:
        """
        Ask the LLM about one pair.

        Returns:
            Inferred relationship, or None when the model sees no relation

        Raises:
            ExtractionError: All attempts failed
        """
        max_retries = self.config['max_retries']
        for attempt in range(max_retries + 1):
            try:
                output = self._label_once(candidate)
                break
            except ExtractionError as e:
                if attempt == max_retries:
                    raise
                logger.warning(
                    f"Labeling {candidate.source.name} / {candidate.target.name} "
                    f"failed (attempt {attempt + 1}): {e}"
                )
                time.sleep(self.config['backoff_base'] * 2 ** attempt)

        if not output.has_relation or not output.relation:
            return None
        if output.confidence < self.config['min_confidence']:
            return None

        source, target = candidate.source, candidate.target
        if output.direction == 'b_to_a':
            source, target = target, source
        return Relationship(
            source_entity_id=source.id,
            target_entity_id=target.id,
            kind=output.relation,
            confidence=output.confidence,
            origin=RelationOrigin.INFERRED,
            rationale=output.reasoning or None,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def infer(
        self, scope: Optional[SubgraphSelector] = None, dry_run: bool = False
    ) -> List[Relationship]:
        """
        Run one inference pass.

        Args:
            scope: Entities to consider (whole graph, up to max_entities, if None)
            dry_run: Label candidates without writing them

        Returns:
            Inferred relationships, ordered by key
        """
        subgraph = self.store.fetch_subgraph(scope)
        candidates = self.find_candidates(subgraph)
        logger.info(
            f"Inference scope: {len(subgraph.entities)} entities, "
            f"{len(subgraph.relationships)} edges, {len(candidates)} candidate pairs"
        )
        if not candidates:
            return []

        inferred: Dict[tuple, Relationship] = {}
        skipped = 0
        with ThreadPoolExecutor(max_workers=self.config['max_workers']) as executor:
            futures = {executor.submit(self.label, c): c for c in candidates}
            for future in as_completed(futures):
                candidate = futures[future]
                try:
                    relationship = future.result()
                except Exception as e:
                    skipped += 1
                    logger.warning(
                        f"Skipping pair {candidate.source.id} / {candidate.target.id}: {e}"
                    )
                    continue
                if relationship is not None:
                    inferred[relationship.key] = relationship

        relationships = [inferred[key] for key in sorted(inferred)]
        logger.info(
            f"Labeled {len(candidates)} pairs: {len(relationships)} inferred, "
            f"{skipped} failed"
        )

        if relationships and not dry_run and self.upserter is not None:
            report = self.upserter.upsert([], relationships)
            for error in report.errors:
                logger.warning(f"Inferred edge not written: {error}")
        return relationships
