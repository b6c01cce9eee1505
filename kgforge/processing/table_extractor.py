# -*- coding: utf-8 -*-
"""
Deterministic extraction for table rows with a known header.

A row under the header [Name, Manager, City] with cells [Alice, Bob, Paris]
yields the key entity Alice plus Bob and Paris, and the relationships
Alice -manager-> Bob and Alice -city-> Paris, each with confidence 1.0 and
origin Explicit. No model call is involved.

Example:
    extractor = TableExtractor()
    entities, relationships = extractor.extract_row(row, header, "people.xlsx")
"""
# Standard library
import logging
from typing import Dict, List, Optional, Tuple

# Config imports (direct)
from config.pipeline_config import EXTRACTION_CONFIG

# Local
from kgforge.utils.dataclasses import (
    Entity,
    EntityType,
    Provenance,
    RelationOrigin,
    Relationship,
    TableRow,
)
from kgforge.utils.id_generator import normalize_relation_kind

logger = logging.getLogger(__name__)


class TableExtractor:
    """Column-to-relationship mapping for header-backed table rows."""

    def __init__(self, config: Optional[Dict] = None):
        self.config = {**EXTRACTION_CONFIG, **(config or {})}
        self.key_columns = [normalize_relation_kind(c) for c in self.config['key_columns']]
        self._keyword_types: Dict[str, EntityType] = {}
        for type_name, keywords in self.config['column_type_hints'].items():
            entity_type = EntityType.parse(type_name)
            for keyword in keywords:
                self._keyword_types.setdefault(normalize_relation_kind(keyword), entity_type)

    def column_names(self, header: TableRow) -> List[str]:
        """snake_case column names; blank headers become column_<i>."""
        names = []
        for index, cell in enumerate(header.cells):
            names.append(normalize_relation_kind(cell) if cell.strip() else f"column_{index}")
        return names

    def key_column_index(self, columns: List[str]) -> int:
        for preferred in self.key_columns:
            if preferred in columns:
                return columns.index(preferred)
        return 0

    def type_for_column(self, column: str) -> EntityType:
        """
        Entity type hinted by a column name.

        Exact keyword match first, then the first snake_case token that is a
        keyword ("company_name" -> Organization, "manager_name" -> Person).
        """
        if column in self._keyword_types:
            return self._keyword_types[column]
        for token in column.split('_'):
            if token in self._keyword_types:
                return self._keyword_types[token]
        return EntityType.OTHER

    def extract_row(
        self, row: TableRow, header: TableRow, source_id: str
    ) -> Tuple[List[Entity], List[Relationship]]:
        columns = self.column_names(header)
        cells = list(row.cells) + [''] * max(0, len(columns) - len(row.cells))
        key_index = self.key_column_index(columns)

        key_value = cells[key_index].strip() if key_index < len(cells) else ''
        if not key_value:
            return [], []

        provenance = frozenset([Provenance(source_id, row.locator)])
        key_entity = Entity.create(
            key_value, self.type_for_column(columns[key_index]), provenance
        )
        entities = [key_entity]
        relationships = []

        for index, column in enumerate(columns):
            if index == key_index:
                continue
            value = cells[index].strip()
            if not value:
                continue
            value_entity = Entity.create(value, self.type_for_column(column), provenance)
            if value_entity.id == key_entity.id:
                continue
            entities.append(value_entity)
            relationships.append(Relationship(
                source_entity_id=key_entity.id,
                target_entity_id=value_entity.id,
                kind=column,
                confidence=1.0,
                origin=RelationOrigin.EXPLICIT,
                provenance=provenance,
            ))

        return entities, relationships
