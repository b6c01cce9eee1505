# -*- coding: utf-8 -*-
"""
LLM prompt templates.

Templates are str.format() strings; literal JSON braces are doubled. Every
prompt that expects structured output is paired with a pydantic schema in the
module that sends it (passed to the model as schema_hint).
"""

from kgforge.utils.dataclasses import EntityType

ENTITY_TYPE_DESCRIPTIONS = {
    EntityType.PERSON: "named individual people",
    EntityType.ORGANIZATION: "companies, institutions, teams, departments, agencies",
    EntityType.CONCEPT: "ideas, products, technologies, skills, topics",
    EntityType.DOCUMENT: "named documents, laws, reports, contracts, policies",
    EntityType.LOCATION: "cities, countries, regions, sites, addresses",
    EntityType.OTHER: "named things that fit none of the above",
}

_TYPE_LIST = "\n".join(f"- {t.value}: {desc}" for t, desc in ENTITY_TYPE_DESCRIPTIONS.items())


# ============================================================================
# ENTITY + RELATIONSHIP EXTRACTION
# ============================================================================

EXTRACTION_PROMPT = """# Task
Extract named entities and the relationships stated between them.

# Entity types (use ONLY these)
""" + _TYPE_LIST + """

# Rules
- Extract only what the text states; never add outside knowledge
- Entity names exactly as written in the text, no pronouns
- relation_type: short snake_case verb phrase (works_at, located_in, reports_to)
- source and target MUST be names from your entities list
- confidence: 0.0-1.0, how explicitly the text states the relationship

# Example
Input: "Alice Smith leads the data team at Acme Corp in Berlin."
Output: {{"entities": [{{"name": "Alice Smith", "category": "Person"}}, {{"name": "Acme Corp", "category": "Organization"}}, {{"name": "Berlin", "category": "Location"}}], "relations": [{{"source": "Alice Smith", "target": "Acme Corp", "relation_type": "works_at", "confidence": 0.9}}, {{"source": "Acme Corp", "target": "Berlin", "relation_type": "located_in", "confidence": 0.8}}]}}

# Section
{section}

# Text
{text}

# Output
JSON only: {{"entities": [{{"name": "...", "category": "..."}}], "relations": [{{"source": "...", "target": "...", "relation_type": "...", "confidence": 0.0}}]}}"""


# ============================================================================
# INFERRED RELATIONSHIP LABELING
# ============================================================================

INFERENCE_PROMPT = """# Task
Two entities in a knowledge graph are not directly connected. Decide whether
the connections below imply a direct relationship between them.

# Entities
A: {source_name} ({source_type})
B: {target_name} ({target_type})

# Known connections
{paths}

# Rules
- Use ONLY the connections listed; do not invent entities or facts
- If no direct relationship is clearly implied, answer has_relation false
- relation: short snake_case label (colleague_of, competes_with, part_of)
- direction: "a_to_b" or "b_to_a" (for symmetric relations use "a_to_b")
- confidence: 0.0-1.0
- reasoning: one short sentence

# Output
JSON only: {{"has_relation": true, "relation": "...", "direction": "a_to_b", "confidence": 0.0, "reasoning": "..."}}"""


# ============================================================================
# GROUNDED ANSWERS
# ============================================================================

ANSWER_SYSTEM_PROMPT = """Answer ONLY from the context below.
Rules:
1. Mark graph entities as [[Entity Name]].
2. Cite passages as (Ref: FRAGMENT_ID).
3. If the context does not contain the answer, say so.
4. Be concise."""

ANSWER_USER_PROMPT = """CONTEXT:
{context}

QUESTION: {query}

ANSWER:"""
