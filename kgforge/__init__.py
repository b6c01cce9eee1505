# -*- coding: utf-8 -*-
"""
kgforge: multi-format documents to a hybrid graph/vector knowledge store.

Packages: ingestion (format parsers into a canonical document), processing
(entity/relationship extraction), graph (stores and the upsert layer),
retrieval (hybrid vector + graph retrieval, answers), reasoning (inferred
relationships) and pipeline (ingestion jobs and worker pools).
"""

__version__ = "0.1.0"
