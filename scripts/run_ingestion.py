#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Script: run_ingestion.py
Package: scripts
Purpose: Ingest files and directories into the knowledge store

Formats are detected from extension and content unless --format is given.
Every file becomes one IngestionJob; jobs run concurrently through the
parse / extract / upsert pools and a summary is printed at the end.

Usage:
    python scripts/run_ingestion.py data/raw/
    python scripts/run_ingestion.py org_chart.xlsx handbook.pdf --memory data/graph
    python scripts/run_ingestion.py notes/ --format markdown --summary-json jobs.json
    python scripts/run_ingestion.py data/raw/ --backfill
    python scripts/run_ingestion.py data/raw/ --reset          # rebuild from scratch
"""

import argparse
import sys
from pathlib import Path
from typing import List

# Third-party
from tqdm import tqdm

# Project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Local imports
from kgforge.ingestion.format_detection import EXTENSION_FORMATS
from kgforge.pipeline.ingestion_job import JobStatus
from kgforge.services import build_services
from kgforge.utils.dataclasses import UpsertReport
from kgforge.utils.io import save_json
from kgforge.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


# ============================================================================
# ARGUMENT PARSING
# ============================================================================

def parse_args():
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the knowledge graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('paths', nargs='+', help='Files or directories (searched recursively)')
    parser.add_argument('--format', type=str, help='Declared format for every file (default: detect)')
    parser.add_argument('--memory', type=str, help='Use an in-memory store saved in this directory')
    parser.add_argument('--reset', action='store_true', help='Delete the existing graph before ingesting')
    parser.add_argument('--backfill', action='store_true', help='Backfill missing embeddings afterwards')
    parser.add_argument('--summary-json', type=str, help='Write per-job summaries to this JSON file')
    parser.add_argument('--log-file', type=str, help='Also log to this file')
    return parser.parse_args()


def collect_files(paths: List[str], any_extension: bool) -> List[Path]:
    """Expand directories; without --format only known extensions are kept."""
    files = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            for child in sorted(path.rglob('*')):
                if child.is_file() and (any_extension or child.suffix.lower() in EXTENSION_FORMATS):
                    files.append(child)
        elif path.is_file():
            files.append(path)
        else:
            logger.warning(f"Not found: {path}")
    return files


# ============================================================================
# MAIN
# ============================================================================

def main():
    args = parse_args()
    setup_logging(log_file=args.log_file)

    files = collect_files(args.paths, any_extension=bool(args.format))
    if not files:
        logger.error("No input files")
        return 1
    logger.info(f"Ingesting {len(files)} files")

    services = build_services(memory_dir=args.memory)
    try:
        if args.reset:
            deleted = services.store.clear()
            logger.warning(f"Reset store: {deleted} nodes removed")
        jobs = [services.ingestion.submit_file(path, args.format) for path in files]
        for job in tqdm(jobs, desc="Ingesting", unit="doc"):
            job.wait()

        if args.backfill:
            services.upserter.backfill_embeddings(scan_store=True)
        stats = services.store.stats()
    finally:
        services.close()

    totals = UpsertReport()
    counts = {status: 0 for status in JobStatus}
    for job in jobs:
        counts[job.status] += 1
        if job.report is not None:
            totals.absorb(job.report)

    print(f"\n{'='*80}")
    print("INGESTION SUMMARY")
    print(f"{'='*80}")
    for job in jobs:
        line = f"  {job.status.value:<10} {job.source_id} ({job.blocks_parsed} blocks"
        line += f", {len(job.warnings)} warnings)"
        if job.error:
            line += f"  {job.error}"
        print(line)
    print(f"{'-'*80}")
    print("  " + ", ".join(f"{s.value}={n}" for s, n in counts.items() if n))
    print(
        f"  entities +{totals.entities_created} ~{totals.entities_merged}, "
        f"relationships +{totals.relationships_created} ~{totals.relationships_merged}, "
        f"fragments {totals.fragments_written}"
    )
    print(f"  store: {stats}")

    if args.summary_json:
        save_json([job.summary() for job in jobs], args.summary_json)

    return 0 if counts[JobStatus.FAILED] == 0 else 2


if __name__ == '__main__':
    sys.exit(main())
