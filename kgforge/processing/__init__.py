# -*- coding: utf-8 -*-
"""
Extraction of entities, relationships and fragments from canonical documents.

Contains table_extractor (deterministic header/column mapping), llm_extractor
(schema-constrained model extraction per text block) and extraction_engine
(block planning, worker pool, retries and merging).
"""
