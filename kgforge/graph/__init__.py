# -*- coding: utf-8 -*-
"""
Graph storage package.

Contains graph_store (store interface with atomic merge primitives),
memory_store (dicts + FAISS, for local runs and tests), neo4j_store (Cypher
MERGE + native vector index) and upserter (the single write path).
"""
