#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: run_inference.py
Package: scripts
Purpose: Run the inferred-relationship pass over (part of) the graph

Usage:
    python scripts/run_inference.py
    python scripts/run_inference.py --source org_chart.xlsx --type Person
    python scripts/run_inference.py --memory data/graph --dry-run --output inferred.json
"""

import argparse
import sys
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Local imports
from kgforge.graph.memory_store import InMemoryGraphStore
from kgforge.graph.upserter import GraphUpserter
from kgforge.reasoning.inference_engine import InferenceEngine
from kgforge.services import build_embedder, build_llm, build_store
from kgforge.utils.dataclasses import EntityType, SubgraphSelector
from kgforge.utils.io import save_json
from kgforge.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Infer relationships from graph structure")
    parser.add_argument('--source', action='append', help='Limit scope to entities from this source (repeatable)')
    parser.add_argument('--type', action='append', choices=[t.value for t in EntityType],
                        help='Limit scope to this entity type (repeatable)')
    parser.add_argument('--max-entities', type=int, default=500, help='Scope size cap (default: 500)')
    parser.add_argument('--memory', type=str, help='Use the in-memory store saved in this directory')
    parser.add_argument('--dry-run', action='store_true', help='Label candidates without writing')
    parser.add_argument('--output', type=str, help='Save inferred edges to JSON file (optional)')
    return parser.parse_args()


# ============================================================================
# MAIN
# ============================================================================

def main():
    args = parse_args()
    setup_logging()

    scope = SubgraphSelector(
        entity_types=[EntityType(t) for t in args.type] if args.type else None,
        source_ids=args.source,
        max_entities=args.max_entities,
    )

    store = build_store(args.memory)
    embedder = build_embedder()
    try:
        engine = InferenceEngine(store, GraphUpserter(store, embedder), build_llm())
        inferred = engine.infer(scope, dry_run=args.dry_run)
        if args.memory and not args.dry_run and isinstance(store, InMemoryGraphStore):
            store.save(args.memory)
        names = {e.id: e.name for e in store.fetch_subgraph(scope).entities.values()}
    finally:
        embedder.shutdown()
        store.close()

    print(f"\n{len(inferred)} inferred relationships" + (" (dry run)" if args.dry_run else ""))
    for rel in inferred:
        source = names.get(rel.source_entity_id, rel.source_entity_id)
        target = names.get(rel.target_entity_id, rel.target_entity_id)
        print(f"  {source} --{rel.kind}--> {target}  ({rel.confidence:.2f})  {rel.rationale or ''}")

    if args.output:
        save_json(
            [
                {'source': r.source_entity_id, 'target': r.target_entity_id, 'kind': r.kind,
                 'confidence': r.confidence, 'origin': r.origin.value, 'rationale': r.rationale}
                for r in inferred
            ],
            args.output,
        )
    return 0


if __name__ == '__main__':
    sys.exit(main())
