# -*- coding: utf-8 -*-
"""
Answer generator over hybrid retrieval results.

Formats the ranked entities, the relations among them and the retrieved
passages into a character-budgeted context, asks the LLM capability for a
grounded answer, and extracts the [[Entity]] and (Ref: FRAGMENT_ID) markers
the prompt asks for.
"""

# Standard library
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# Config imports (direct)
from config.retrieval_config import ANSWER_CONFIG

# Dataclass imports (direct)
from kgforge.utils.dataclasses import (
    DocumentFragment,
    Entity,
    RetrievalResult,
    SubgraphSelector,
)

# Prompts
from kgforge.prompts.prompts import ANSWER_SYSTEM_PROMPT, ANSWER_USER_PROMPT

logger = logging.getLogger(__name__)

_ENTITY_MARK = re.compile(r'\[\[([^\]]+)\]\]')
_REF_MARK = re.compile(r'\(Ref:\s*([\w\-]+)\)')


@dataclass
class GeneratedAnswer:
    """LLM-generated answer with the context it cited."""
    answer: str
    query: str
    references: List[str] = field(default_factory=list)
    entities: List[str] = field(default_factory=list)
    items_used: int = 0
    degraded: bool = False


class AnswerGenerator:
    """
    Generate grounded answers from RetrievalResult objects.

    Args:
        llm: Object with generate(prompt, schema_hint=None) -> str
        store: Optional GraphStore, used to add relations among the
            retrieved entities to the context
        config: Overrides for ANSWER_CONFIG
    """

    def __init__(self, llm, store=None, config: Optional[Dict] = None):
        self.llm = llm
        self.store = store
        self.config = {**ANSWER_CONFIG, **(config or {})}

    def generate(self, retrieval_result: RetrievalResult) -> GeneratedAnswer:
        """
        Answer retrieval_result.query from its items.

        Raises:
            ExtractionError: LLM call failed (ModelTimeoutError on timeout)
        """
        logger.info(f"Generating answer for query: {retrieval_result.query}")

        context, used = self.format_context(retrieval_result)
        prompt = ANSWER_SYSTEM_PROMPT + "\n\n" + ANSWER_USER_PROMPT.format(
            context=context, query=retrieval_result.query
        )
        answer = self.llm.generate(prompt).strip()

        fragment_ids = {item.node_id for item in retrieval_result.items if item.kind == 'fragment'}
        references = []
        for ref in _REF_MARK.findall(answer):
            if ref in fragment_ids and ref not in references:
                references.append(ref)
        entities = []
        for name in _ENTITY_MARK.findall(answer):
            if name not in entities:
                entities.append(name)

        if len(references) < len(_REF_MARK.findall(answer)):
            logger.warning("Answer cites fragments that were not in the context")

        return GeneratedAnswer(
            answer=answer,
            query=retrieval_result.query,
            references=references,
            entities=entities,
            items_used=used,
            degraded=retrieval_result.degraded,
        )

    # ------------------------------------------------------------------
    # Context formatting
    # ------------------------------------------------------------------

    def format_context(self, retrieval_result: RetrievalResult) -> Tuple[str, int]:
        """
        Render retrieved items within config['max_context_chars'].

        Returns:
            (context text, number of items included)
        """
        if not retrieval_result.items:
            return "No context retrieved.", 0

        budget = self.config['max_context_chars']
        max_chars = self.config['truncate_fragment_chars']
        sections = []
        used_chars = 0
        used = 0

        for item in retrieval_result.items[:self.config['max_items']]:
            node = item.node
            if isinstance(node, Entity):
                sources = ', '.join(sorted(node.source_ids)) or 'n/a'
                block = f"- [[{node.name}]] ({node.type.value}) sources: {sources}"
            elif isinstance(node, DocumentFragment):
                text = node.text
                if len(text) > max_chars:
                    text = text[:max_chars] + "..."
                block = f"[{node.id}] {node.source_id} @ {node.locator.to_key() or 'document'}\n{text}"
            else:
                continue

            if used_chars + len(block) > budget:
                break
            sections.append(block)
            used_chars += len(block)
            used += 1

        relations = self._format_relations(retrieval_result, budget - used_chars)
        if relations:
            sections.append(relations)
        return "\n\n".join(sections), used

    def _format_relations(self, retrieval_result: RetrievalResult, budget: int) -> str:
        if self.store is None or budget <= 0:
            return ""
        entity_ids = [item.node_id for item in retrieval_result.items if item.kind == 'entity']
        if len(entity_ids) < 2:
            return ""

        subgraph = self.store.fetch_subgraph(SubgraphSelector(entity_ids=entity_ids))
        lines = []
        used = 0
        for rel in subgraph.relationships:
            source = subgraph.entities.get(rel.source_entity_id)
            target = subgraph.entities.get(rel.target_entity_id)
            if source is None or target is None:
                continue
            line = f"- [[{source.name}]] --{rel.kind}--> [[{target.name}]] ({rel.origin.value}, {rel.confidence:.2f})"
            if used + len(line) > budget:
                break
            lines.append(line)
            used += len(line)
        return "RELATIONS:\n" + "\n".join(lines) if lines else ""
