# -*- coding: utf-8 -*-
"""
LLM-based entity and relationship extraction for text blocks.

The model is asked for {"entities": [{name, category}], "relations":
[{source, target, relation_type, confidence}]} with the pydantic schema below
as schema_hint. Answers are validated entry by entry: one malformed entity or
relation is discarded and counted, the rest of the block survives. A response
that is not a JSON object at all raises SchemaViolationError so the engine can
retry the block.
"""
# Standard library
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Third-party
from pydantic import BaseModel, Field, ValidationError

# Config imports (direct)
from config.pipeline_config import EXTRACTION_CONFIG

# Local
from kgforge.prompts.prompts import EXTRACTION_PROMPT
from kgforge.utils.dataclasses import (
    Entity,
    EntityType,
    Locator,
    Provenance,
    RelationOrigin,
    Relationship,
)
from kgforge.utils.id_generator import normalize_name
from kgforge.utils.io import parse_json_response

logger = logging.getLogger(__name__)


# ============================================================================
# OUTPUT SCHEMA
# ============================================================================

class ExtractedEntity(BaseModel):
    """Single entity mention"""
    name: str = Field(min_length=1, description="Entity name exactly as written")
    category: str = Field(default="Other", description="One of the allowed entity types")


class ExtractedRelation(BaseModel):
    """Single relationship between two extracted entities"""
    source: str = Field(min_length=1, description="Source entity name")
    target: str = Field(min_length=1, description="Target entity name")
    relation_type: str = Field(min_length=1, description="snake_case relationship label")
    confidence: Optional[float] = Field(default=None, description="0.0-1.0")


class ExtractionOutput(BaseModel):
    """Output format for block extraction"""
    entities: List[ExtractedEntity] = Field(default_factory=list)
    relations: List[ExtractedRelation] = Field(default_factory=list)


@dataclass
class BlockExtraction:
    entities: List[Entity] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    discarded: int = 0


# ============================================================================
# EXTRACTOR
# ============================================================================

class LLMExtractor:
    """
    Extract entities/relationships from one text block via the LLM capability.

    Example:
        extractor = LLMExtractor(llm)
        result = extractor.extract_block(text, Locator(page=2), "report.pdf")
    """

    def __init__(self, llm, config: Optional[Dict] = None):
        self.llm = llm
        self.config = {**EXTRACTION_CONFIG, **(config or {})}

    def _confidence(self, reported: Optional[float], source: str, target: str, text: str) -> float:
        if reported is not None:
            return min(1.0, max(0.0, float(reported)))
        lowered = text.casefold()
        if source.casefold() in lowered and target.casefold() in lowered:
            return self.config['confidence_both_in_text']
        return self.config['confidence_default']

    def extract_block(
        self,
        text: str,
        locator: Locator,
        source_id: str,
        section: str = '',
    ) -> BlockExtraction:
        """
        Run extraction on one block.

        Raises:
            SchemaViolationError: Response is not a JSON object with "entities"
            ExtractionError / ModelTimeoutError: From the LLM capability
        """
        prompt = EXTRACTION_PROMPT.format(section=section or '(none)', text=text)
        content = self.llm.generate(prompt, schema_hint=ExtractionOutput)
        payload = parse_json_response(content, required_keys=['entities'])

        result = BlockExtraction()
        provenance = frozenset([Provenance(source_id, locator)])
        by_name: Dict[str, Entity] = {}

        raw_entities = payload.get('entities') or []
        if not isinstance(raw_entities, list):
            raw_entities = []
            result.discarded += 1
        for raw in raw_entities:
            try:
                item = ExtractedEntity.model_validate(raw)
            except ValidationError:
                result.discarded += 1
                continue
            if not item.name.strip():
                result.discarded += 1
                continue
            entity = Entity.create(item.name, EntityType.parse(item.category), provenance)
            key = normalize_name(item.name)
            if key not in by_name:
                by_name[key] = entity
                result.entities.append(entity)

        raw_relations = payload.get('relations') or []
        if not isinstance(raw_relations, list):
            raw_relations = []
            result.discarded += 1
        for raw in raw_relations:
            try:
                item = ExtractedRelation.model_validate(raw)
            except ValidationError:
                result.discarded += 1
                continue
            source = by_name.get(normalize_name(item.source))
            target = by_name.get(normalize_name(item.target))
            if source is None or target is None or source.id == target.id:
                result.discarded += 1
                continue
            result.relationships.append(Relationship(
                source_entity_id=source.id,
                target_entity_id=target.id,
                kind=item.relation_type,
                confidence=self._confidence(item.confidence, source.name, target.name, text),
                origin=RelationOrigin.EXPLICIT,
                provenance=provenance,
            ))

        if result.discarded:
            logger.debug(f"{source_id} {locator.to_key()}: discarded {result.discarded} entries")
        return result
