# -*- coding: utf-8 -*-
"""
Retrieval and Reasoning Config

Fusion constants for hybrid retrieval and candidate rules for the
inferred-relationship pass.

Scoring (see HybridRetriever):
    vector channel : max(0, cosine) of the top m = candidate_multiplier * k hits
    graph channel  : max over seeds of seed_similarity * decay ** hops
                     (x inferred_edge_weight when the path used an inferred edge)
    fused          : vector_weight * v + graph_weight * g for nodes in both,
                     otherwise the single channel score times its weight
"""
from enum import Enum
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# RETRIEVAL MODE
# ============================================================================

class RetrievalMode(Enum):
    """
    Retrieval strategy.

    SEMANTIC: Vector channel only
    GRAPH: Name-matched seeds + traversal only
    HYBRID: Both channels fused (default)
    """
    SEMANTIC = "semantic"
    GRAPH = "graph"
    HYBRID = "hybrid"


# ============================================================================
# HYBRID RETRIEVAL
# ============================================================================

RETRIEVAL_CONFIG = {
    # Fusion weights (must sum to 1.0)
    'vector_weight': 0.7,
    'graph_weight': 0.3,

    # Traversal
    'max_hops': 2,
    'decay': 0.5,                    # Per-hop multiplier, in (0, 1)
    'include_inferred': True,        # Traverse inferred edges
    'inferred_edge_weight': 0.5,     # Down-weight for paths over inferred edges

    # Candidate pool
    'candidate_multiplier': 3,       # m = multiplier * k vector candidates
    'default_k': 10,

    # Degraded mode / GRAPH mode seed matching
    'fuzzy_threshold': 80,           # rapidfuzz score (0-100) for a name match
    'max_name_seeds': 10,
    'min_term_length': 3,
    'stopwords': [
        'the', 'and', 'for', 'who', 'what', 'which', 'where', 'when', 'how',
        'does', 'did', 'with', 'from', 'about', 'that', 'this', 'are', 'was',
        'is', 'of', 'in', 'to', 'a', 'an', 'on', 'at', 'by',
    ],
}


# ============================================================================
# INFERRED REASONING
# ============================================================================

INFERENCE_CONFIG = {
    'min_common_neighbors': 2,       # Shared explicit neighbors for a candidate pair
    # Relationship kinds a 2-hop path may pass through (both edges)
    'allowed_intermediate_kinds': [
        'works_at', 'works_for', 'employed_by', 'member_of', 'part_of',
        'located_in', 'manager', 'reports_to', 'department', 'company',
        'subsidiary_of', 'owns', 'founded',
    ],
    'max_candidates': 200,           # LLM calls per pass
    'max_workers': 4,
    'max_retries': 2,                # Extra attempts per pair after the first
    'backoff_base': 0.5,
    'min_confidence': 0.0,           # Drop labeled edges below this
}


# ============================================================================
# VALIDATION
# ============================================================================

def validate_fusion_config(config: Dict) -> None:
    """
    Reject fusion settings that break score bounds.

    Raises:
        ValueError: Weights not summing to 1, decay outside (0, 1), negative hops,
            candidate_multiplier not above 1
    """
    total = config['vector_weight'] + config['graph_weight']
    if abs(total - 1.0) > 1e-9:
        raise ValueError(f"vector_weight + graph_weight must be 1.0, got {total}")
    if min(config['vector_weight'], config['graph_weight']) < 0:
        raise ValueError("Fusion weights must be non-negative")
    if not 0.0 < config['decay'] < 1.0:
        raise ValueError(f"decay must be in (0, 1), got {config['decay']}")
    if config['max_hops'] < 0:
        raise ValueError("max_hops must be >= 0")
    if not 0.0 <= config['inferred_edge_weight'] <= 1.0:
        raise ValueError("inferred_edge_weight must be in [0, 1]")
    if config['candidate_multiplier'] <= 1:
        raise ValueError(f"candidate_multiplier must be > 1 (m > k), got {config['candidate_multiplier']}")


# ============================================================================
# ANSWER GENERATION
# ============================================================================

ANSWER_CONFIG = {
    'max_items': 10,                 # Retrieved items formatted into the prompt
    'max_context_chars': 12_000,     # Context budget across all items
    'truncate_fragment_chars': 1000,
}
