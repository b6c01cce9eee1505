# -*- coding: utf-8 -*-
"""
Extraction Engine: CanonicalDocument -> candidate graph deltas.

Table rows under a header are extracted deterministically (TableExtractor);
paragraphs and header-less rows go to the LLM (LLMExtractor) in a bounded
ThreadPoolExecutor. Each LLM block is retried with exponential backoff and,
if it still fails, recorded as skipped; a failing block never fails the
document.

Per-block results are merged by entity id (provenance union) and by
relationship key (max confidence, provenance union). The merge is
commutative, so the worker completion order does not change the result.

Example:
    engine = ExtractionEngine(llm)
    result = engine.extract(doc)
    print(len(result.entities), len(result.skipped_blocks))
"""
# Standard library
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

# Config imports (direct)
from config.pipeline_config import EXTRACTION_CONFIG, validate_retry_config

# Local
from kgforge.ingestion.parsers.base import split_text
from kgforge.processing.llm_extractor import BlockExtraction, LLMExtractor
from kgforge.processing.table_extractor import TableExtractor
from kgforge.utils.dataclasses import (
    CanonicalDocument,
    DocumentFragment,
    Entity,
    ExtractionResult,
    Heading,
    Locator,
    Paragraph,
    Relationship,
    SkippedBlock,
    TableRow,
)
from kgforge.utils.id_generator import generate_fragment_id

logger = logging.getLogger(__name__)


@dataclass
class _TextWork:
    """One LLM extraction unit."""
    text: str
    locator: Locator
    section: str


# ============================================================================
# MERGING
# ============================================================================

def merge_entities(entities: Iterable[Entity]) -> List[Entity]:
    """
    Collapse entities sharing an id.

    Provenance is unioned; the display name is the lexicographically smallest
    surface form and the first non-empty embedding is kept, so the outcome
    does not depend on input order. Output is sorted by id.
    """
    merged: Dict[str, Entity] = {}
    for entity in entities:
        current = merged.get(entity.id)
        if current is None:
            merged[entity.id] = Entity(
                id=entity.id,
                name=entity.name,
                type=entity.type,
                embedding=entity.embedding,
                provenance=frozenset(entity.provenance),
            )
            continue
        current.provenance = current.provenance | entity.provenance
        current.name = min(current.name, entity.name)
        if current.embedding is None and entity.embedding is not None:
            current.embedding = entity.embedding
    return [merged[key] for key in sorted(merged)]


def merge_relationships(relationships: Iterable[Relationship]) -> List[Relationship]:
    """Collapse relationships by key: max confidence, provenance union. Sorted by key."""
    merged: Dict[Tuple[str, str, str, str], Relationship] = {}
    for rel in relationships:
        current = merged.get(rel.key)
        if current is None:
            merged[rel.key] = Relationship(
                source_entity_id=rel.source_entity_id,
                target_entity_id=rel.target_entity_id,
                kind=rel.kind,
                confidence=rel.confidence,
                origin=rel.origin,
                provenance=frozenset(rel.provenance),
                rationale=rel.rationale,
            )
            continue
        current.confidence = max(current.confidence, rel.confidence)
        current.provenance = current.provenance | rel.provenance
        if current.rationale is None:
            current.rationale = rel.rationale
    return [merged[key] for key in sorted(merged)]


# ============================================================================
# ENGINE
# ============================================================================

class ExtractionEngine:
    """
    Extract entities, relationships and fragments from canonical documents.

    Thread-safe: holds no per-document state between extract() calls.
    """

    def __init__(
        self,
        llm,
        config: Optional[Dict] = None,
        table_extractor: Optional[TableExtractor] = None,
        llm_extractor: Optional[LLMExtractor] = None,
    ):
        self.config = {**EXTRACTION_CONFIG, **(config or {})}
        validate_retry_config(self.config)
        self.table_extractor = table_extractor or TableExtractor(self.config)
        self.llm_extractor = llm_extractor or LLMExtractor(llm, self.config)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(
        self, doc: CanonicalDocument
    ) -> Tuple[List[_TextWork], List[Entity], List[Relationship], List[DocumentFragment]]:
        """
        Walk blocks in reading order.

        Returns LLM work items plus the deterministic table results and the
        fragments, which need no model call.
        """
        work: List[_TextWork] = []
        entities: List[Entity] = []
        relationships: List[Relationship] = []
        fragments: List[DocumentFragment] = []

        headings: List[Heading] = []
        headers: Dict[Tuple, TableRow] = {}
        fragment_parts: Dict[str, int] = {}
        depth = self.config['heading_context_depth']

        for block in doc.blocks:
            if isinstance(block, Heading):
                while headings and headings[-1].level >= block.level:
                    headings.pop()
                headings.append(block)
                continue

            section = ' > '.join(h.text for h in headings[-depth:]) if depth else ''

            if isinstance(block, TableRow):
                table_key = (block.locator.sheet, block.locator.table)
                if block.is_header:
                    headers[table_key] = block
                    continue
                header = headers.get(table_key)
                if header is not None:
                    row_entities, row_relationships = self.table_extractor.extract_row(
                        block, header, doc.source_id
                    )
                    entities.extend(row_entities)
                    relationships.extend(row_relationships)
                else:
                    text = ' | '.join(cell for cell in block.cells if cell)
                    work.append(_TextWork(text, block.locator, section))
                continue

            if isinstance(block, Paragraph):
                work.append(_TextWork(block.text, block.locator, section))
                locator_key = block.locator.to_key()
                for piece in split_text(block.text, self.config['max_fragment_chars']):
                    part = fragment_parts.get(locator_key, 0)
                    fragment_parts[locator_key] = part + 1
                    fragments.append(DocumentFragment(
                        id=generate_fragment_id(doc.source_id, locator_key, part),
                        source_id=doc.source_id,
                        locator=block.locator,
                        text=piece,
                    ))

        return work, entities, relationships, fragments

    # ------------------------------------------------------------------
    # LLM blocks
    # ------------------------------------------------------------------

    def _extract_with_retries(self, item: _TextWork, source_id: str) -> BlockExtraction:
        max_retries = self.config['max_retries']
        for attempt in range(max_retries):
            try:
                return self.llm_extractor.extract_block(
                    item.text, item.locator, source_id, item.section
                )
            except Exception as e:
                logger.warning(
                    f"Attempt {attempt + 1}/{max_retries} failed for "
                    f"{source_id} [{item.locator.to_key()}]: {e}"
                )
                if attempt < max_retries - 1:
                    time.sleep(self.config['backoff_base'] * 2 ** attempt)
                else:
                    raise

    def extract(self, doc: CanonicalDocument) -> ExtractionResult:
        """
        Extract graph deltas from one document.

        Returns:
            ExtractionResult with merged entities/relationships, fragments,
            skipped blocks and warnings
        """
        work, entities, relationships, fragments = self._plan(doc)
        skipped: List[SkippedBlock] = []
        warnings: List[str] = []
        discarded = 0

        if work:
            workers = max(1, min(self.config['max_block_workers'], len(work)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(self._extract_with_retries, item, doc.source_id): item
                    for item in work
                }
                for future in as_completed(futures):
                    item = futures[future]
                    try:
                        block_result = future.result()
                    except Exception as e:
                        logger.error(f"Skipping {doc.source_id} [{item.locator.to_key()}]: {e}")
                        skipped.append(SkippedBlock(item.locator, str(e)))
                        continue
                    entities.extend(block_result.entities)
                    relationships.extend(block_result.relationships)
                    discarded += block_result.discarded

        skipped.sort(key=lambda s: s.locator.to_key())
        for block in skipped:
            warnings.append(f"Skipped block [{block.locator.to_key()}]: {block.reason}")
        if discarded:
            warnings.append(f"Discarded {discarded} malformed extraction entries")

        result = ExtractionResult(
            entities=merge_entities(entities),
            relationships=merge_relationships(relationships),
            fragments=fragments,
            skipped_blocks=skipped,
            warnings=warnings,
        )
        logger.info(
            f"Extracted {doc.source_id}: {len(result.entities)} entities, "
            f"{len(result.relationships)} relationships, {len(fragments)} fragments, "
            f"{len(skipped)} skipped blocks"
        )
        return result
