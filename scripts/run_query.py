#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: run_query.py
Package: scripts
Purpose: CLI interface for hybrid retrieval (and optional grounded answer)

Usage:
    python scripts/run_query.py "Who manages Alice?"
    python scripts/run_query.py "contract signatory" --k 5 --mode graph
    python scripts/run_query.py "Acme suppliers" --memory data/graph --output results.json
    python scripts/run_query.py "Acme suppliers" --answer
"""

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Local imports
from config.retrieval_config import RetrievalMode
from kgforge.retrieval.answer_generator import AnswerGenerator
from kgforge.retrieval.hybrid_retriever import HybridRetriever
from kgforge.services import build_embedder, build_llm, build_store
from kgforge.utils.dataclasses import Entity
from kgforge.utils.io import save_json
from kgforge.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Hybrid vector + graph retrieval over the knowledge store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_query.py "Who manages Alice?"
  python scripts/run_query.py "contract signatory" --mode graph --k 5
  python scripts/run_query.py "Acme suppliers" --answer --output results.json
        """
    )

    parser.add_argument('query', type=str, help='Query string to process')
    parser.add_argument('--k', type=int, default=None, help='Number of results (default: config default_k)')
    parser.add_argument(
        '--mode',
        type=str,
        choices=[m.value for m in RetrievalMode],
        default=RetrievalMode.HYBRID.value,
        help='Retrieval mode (default: hybrid)'
    )
    parser.add_argument('--memory', type=str, help='Use the in-memory store saved in this directory')
    parser.add_argument('--answer', action='store_true', help='Generate a grounded answer with the LLM')
    parser.add_argument('--output', type=str, help='Save results to JSON file (optional)')
    parser.add_argument('--verbose', action='store_true', help='Show per-channel scores')

    return parser.parse_args()


# ============================================================================
# DISPLAY
# ============================================================================

def print_results(result, verbose: bool) -> None:
    print(f"\n{'='*80}")
    print(f"QUERY: {result.query}")
    print(f"MODE:  {result.mode}" + ("  (DEGRADED)" if result.degraded else ""))
    print(f"{'='*80}")
    for warning in result.warnings:
        print(f"  ! {warning}")

    for i, item in enumerate(result.items, 1):
        node = item.node
        if isinstance(node, Entity):
            label = f"{node.name} ({node.type.value})"
        else:
            label = f"{node.source_id} @ {node.locator.to_key()}: {node.text[:120]}"
        print(f"  [{i}] {item.score:.3f}  {label}")
        if verbose:
            print(
                f"        vector={item.vector_score} graph={item.graph_score} "
                f"hops={item.hops} id={item.node_id}"
            )
    print()


# ============================================================================
# MAIN
# ============================================================================

def main():
    args = parse_args()
    setup_logging()
    start_time = datetime.now()

    store = build_store(args.memory)
    embedder = build_embedder()
    try:
        retriever = HybridRetriever(store, embedder)
        result = retriever.retrieve(args.query, k=args.k, mode=RetrievalMode(args.mode))
        print_results(result, args.verbose)

        output = result.to_dict()
        if args.answer:
            generated = AnswerGenerator(build_llm(), store).generate(result)
            print(f"{'='*80}\nANSWER\n{'='*80}")
            print(generated.answer)
            print(f"\nReferences: {', '.join(generated.references) or 'none'}")
            output['answer'] = generated.answer
            output['references'] = generated.references
    finally:
        embedder.shutdown()
        store.close()

    elapsed = (datetime.now() - start_time).total_seconds()
    output['elapsed_seconds'] = elapsed
    print(f"\nTotal time: {elapsed:.2f}s")

    if args.output:
        save_json(output, args.output)
        logger.info(f"Results saved to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
