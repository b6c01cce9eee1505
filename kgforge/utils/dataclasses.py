# -*- coding: utf-8 -*-
"""
Core data structures for the kgforge pipeline.

Single source of truth for the canonical document model, graph records, and
retrieval results. Import from this module rather than redefining shapes in
individual stages.

Examples:
    from kgforge.utils.dataclasses import (
        CanonicalDocument, Paragraph, Locator, Entity, EntityType, Provenance,
    )

    doc = CanonicalDocument(
        source_id="handbook.md",
        format=DocumentFormat.MARKDOWN,
        blocks=[Paragraph(text="Alice works at Acme.", locator=Locator(line=3))],
    )

    entity = Entity.create(
        "Acme", EntityType.ORGANIZATION,
        provenance=[Provenance("handbook.md", Locator(line=3))],
    )

"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union
from urllib.parse import unquote

import numpy as np

from kgforge.utils.id_generator import (
    generate_entity_id,
    normalize_relation_kind,
    relationship_key,
)


# ============================================================================
# ENUMS
# ============================================================================

class DocumentFormat(Enum):
    """Format tags accepted by the parser dispatch table."""
    PDF = "pdf"
    DOCX = "docx"
    SPREADSHEET = "spreadsheet"
    CSV = "csv"
    HTML = "html"
    JSON = "json"
    XML = "xml"
    MARKDOWN = "markdown"
    TEXT = "text"

    @classmethod
    def from_tag(cls, tag: Union[str, 'DocumentFormat']) -> 'DocumentFormat':
        """Resolve a format from its tag or a common alias (xlsx, md, htm...)."""
        if isinstance(tag, cls):
            return tag
        value = str(tag).strip().lower().lstrip('.')
        value = FORMAT_ALIASES.get(value, value)
        return cls(value)


FORMAT_ALIASES = {
    'xlsx': 'spreadsheet',
    'xlsm': 'spreadsheet',
    'xls': 'spreadsheet',
    'excel': 'spreadsheet',
    'tsv': 'csv',
    'htm': 'html',
    'md': 'markdown',
    'txt': 'text',
}


class EntityType(Enum):
    """Closed set of entity types. Unknown labels map to OTHER."""
    PERSON = "Person"
    ORGANIZATION = "Organization"
    CONCEPT = "Concept"
    DOCUMENT = "Document"
    LOCATION = "Location"
    OTHER = "Other"

    @classmethod
    def parse(cls, label: Optional[str]) -> 'EntityType':
        if not label:
            return cls.OTHER
        wanted = str(label).strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return cls.OTHER


class RelationOrigin(Enum):
    """Whether a relationship was read from a source or inferred by the model."""
    EXPLICIT = "Explicit"
    INFERRED = "Inferred"


# ============================================================================
# CANONICAL DOCUMENT MODEL
# ============================================================================

# Key separators percent-encoded inside free-text key values (sheet names, source ids)
_KEY_ESCAPES = [('%', '%25'), (';', '%3B'), ('=', '%3D'), ('#', '%23')]


def _escape_key_part(value: str) -> str:
    for char, code in _KEY_ESCAPES:
        value = value.replace(char, code)
    return value


@dataclass(frozen=True)
class Locator:
    """
    Position of a block inside its source document.

    Only the coordinates meaningful for the format are set: page for PDF,
    sheet/row for spreadsheets, line for text formats, table/row for tables.
    """
    page: Optional[int] = None
    row: Optional[int] = None
    line: Optional[int] = None
    table: Optional[int] = None
    sheet: Optional[str] = None

    _FIELDS = ('page', 'sheet', 'table', 'row', 'line')

    def to_key(self) -> str:
        """
        Stable string form, e.g. "sheet=People;row=2". Separator characters
        inside the sheet name are percent-encoded.

        Used inside provenance strings and fragment ids.
        """
        parts = []
        for name in self._FIELDS:
            value = getattr(self, name)
            if value is not None:
                if name == 'sheet':
                    value = _escape_key_part(value)
                parts.append(f"{name}={value}")
        return ';'.join(parts)

    @classmethod
    def from_key(cls, key: str) -> 'Locator':
        values = {}
        for part in filter(None, key.split(';')):
            name, _, raw = part.partition('=')
            if name == 'sheet':
                values[name] = unquote(raw)
            elif name in cls._FIELDS:
                values[name] = int(raw)
        return cls(**values)


@dataclass(frozen=True)
class Paragraph:
    text: str
    locator: Locator = field(default_factory=Locator)


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    locator: Locator = field(default_factory=Locator)


@dataclass(frozen=True)
class TableRow:
    """One table row. is_header marks the row whose cells name the columns."""
    cells: Tuple[str, ...]
    is_header: bool = False
    locator: Locator = field(default_factory=Locator)


Block = Union[Paragraph, Heading, TableRow]


@dataclass
class CanonicalDocument:
    """
    Format-independent representation of one parsed source.

    blocks preserve reading order. warnings collect non-fatal problems hit
    while parsing (unreadable pages, skipped CSV lines, truncated JSON).
    """
    source_id: str
    format: DocumentFormat
    blocks: List[Block] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def block_counts(self) -> Dict[str, int]:
        counts = {'paragraph': 0, 'heading': 0, 'table_row': 0}
        for block in self.blocks:
            if isinstance(block, Paragraph):
                counts['paragraph'] += 1
            elif isinstance(block, Heading):
                counts['heading'] += 1
            else:
                counts['table_row'] += 1
        return counts


# ============================================================================
# GRAPH RECORDS
# ============================================================================

@dataclass(frozen=True)
class Provenance:
    """Where a fact was read: source document plus block locator."""
    source_id: str
    locator: Locator = field(default_factory=Locator)

    def to_key(self) -> str:
        return f"{_escape_key_part(self.source_id)}#{self.locator.to_key()}"

    @classmethod
    def from_key(cls, key: str) -> 'Provenance':
        source_id, _, locator_key = key.rpartition('#')
        return cls(source_id=unquote(source_id), locator=Locator.from_key(locator_key))


@dataclass
class Entity:
    """
    Graph node for a named thing.

    id is derived from (name, type), so two entities with the same id are the
    same node and merge by provenance union.
    """
    id: str
    name: str
    type: EntityType
    embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)
    provenance: FrozenSet[Provenance] = field(default_factory=frozenset)

    @classmethod
    def create(
        cls,
        name: str,
        entity_type: EntityType,
        provenance: Iterable[Provenance] = (),
        embedding: Optional[np.ndarray] = None,
    ) -> 'Entity':
        clean_name = ' '.join(name.split())
        return cls(
            id=generate_entity_id(clean_name, entity_type.value),
            name=clean_name,
            type=entity_type,
            embedding=embedding,
            provenance=frozenset(provenance),
        )

    @property
    def source_ids(self) -> FrozenSet[str]:
        return frozenset(p.source_id for p in self.provenance)

    def embedding_text(self) -> str:
        return f"{self.name} ({self.type.value})"


@dataclass
class Relationship:
    """
    Directed, typed edge between two entities.

    Merge key is (source, target, kind, origin): an Explicit and an Inferred
    edge over the same triple are distinct edges.
    """
    source_entity_id: str
    target_entity_id: str
    kind: str
    confidence: float
    origin: RelationOrigin = RelationOrigin.EXPLICIT
    provenance: FrozenSet[Provenance] = field(default_factory=frozenset)
    rationale: Optional[str] = None

    def __post_init__(self):
        self.kind = normalize_relation_kind(self.kind)
        self.confidence = min(1.0, max(0.0, float(self.confidence)))
        if self.origin is RelationOrigin.INFERRED:
            self.provenance = frozenset()

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return relationship_key(
            self.source_entity_id, self.target_entity_id, self.kind, self.origin.value
        )


@dataclass
class DocumentFragment:
    """Text passage of a paragraph block, embedded for vector search."""
    id: str
    source_id: str
    locator: Locator
    text: str
    embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    @property
    def provenance(self) -> Provenance:
        return Provenance(self.source_id, self.locator)


GraphNode = Union[Entity, DocumentFragment]


# ============================================================================
# STAGE RESULTS
# ============================================================================

@dataclass
class SkippedBlock:
    """Block the extraction engine gave up on after retries."""
    locator: Locator
    reason: str


@dataclass
class ExtractionResult:
    entities: List[Entity] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    fragments: List[DocumentFragment] = field(default_factory=list)
    skipped_blocks: List[SkippedBlock] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class UpsertReport:
    """Counters for one upsert call. Merged = existed before this call."""
    entities_created: int = 0
    entities_merged: int = 0
    relationships_created: int = 0
    relationships_merged: int = 0
    fragments_written: int = 0
    embeddings_computed: int = 0
    embeddings_queued: int = 0
    errors: List[str] = field(default_factory=list)

    def absorb(self, other: 'UpsertReport') -> None:
        self.entities_created += other.entities_created
        self.entities_merged += other.entities_merged
        self.relationships_created += other.relationships_created
        self.relationships_merged += other.relationships_merged
        self.fragments_written += other.fragments_written
        self.embeddings_computed += other.embeddings_computed
        self.embeddings_queued += other.embeddings_queued
        self.errors.extend(other.errors)


# ============================================================================
# STORE QUERY RESULTS
# ============================================================================

@dataclass(frozen=True)
class VectorHit:
    """Vector search hit. similarity is clamped to [0, 1]."""
    node_id: str
    similarity: float


@dataclass(frozen=True)
class TraversalHit:
    """
    Node reached from a seed by graph traversal.

    hops is the length of the shortest path found; via_inferred is True when
    the best path used at least one inferred edge.
    """
    node_id: str
    seed_id: str
    hops: int
    via_inferred: bool = False


@dataclass
class SubgraphSelector:
    """
    Scope for the reasoning pass.

    Entities match when they satisfy every filter that is set; max_entities
    caps the scope deterministically (by id).
    """
    entity_ids: Optional[List[str]] = None
    entity_types: Optional[List[EntityType]] = None
    source_ids: Optional[List[str]] = None
    max_entities: int = 500

    def matches(self, entity: Entity) -> bool:
        if self.entity_ids is not None and entity.id not in self.entity_ids:
            return False
        if self.entity_types is not None and entity.type not in self.entity_types:
            return False
        if self.source_ids is not None and not entity.source_ids & set(self.source_ids):
            return False
        return True


@dataclass
class Subgraph:
    """Entities in scope plus the explicit and inferred edges among them."""
    entities: Dict[str, Entity] = field(default_factory=dict)
    relationships: List[Relationship] = field(default_factory=list)


# ============================================================================
# RETRIEVAL
# ============================================================================

@dataclass
class ScoredItem:
    """
    One retrieval result.

    vector_score / graph_score keep the per-channel evidence; hops is None for
    nodes that only came from vector search.
    """
    node: GraphNode
    score: float
    vector_score: Optional[float] = None
    graph_score: Optional[float] = None
    hops: Optional[int] = None

    @property
    def node_id(self) -> str:
        return self.node.id

    @property
    def kind(self) -> str:
        return 'entity' if isinstance(self.node, Entity) else 'fragment'


@dataclass
class RetrievalResult:
    query: str
    items: List[ScoredItem] = field(default_factory=list)
    mode: str = "hybrid"
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """JSON-friendly view (no embeddings)."""
        items = []
        for item in self.items:
            node = item.node
            entry = {
                'id': node.id,
                'kind': item.kind,
                'score': round(item.score, 6),
                'vector_score': item.vector_score,
                'graph_score': item.graph_score,
                'hops': item.hops,
            }
            if isinstance(node, Entity):
                entry['name'] = node.name
                entry['type'] = node.type.value
                entry['sources'] = sorted(node.source_ids)
            else:
                entry['text'] = node.text
                entry['source'] = node.source_id
            items.append(entry)
        return {
            'query': self.query,
            'mode': self.mode,
            'degraded': self.degraded,
            'warnings': list(self.warnings),
            'items': items,
        }
