# -*- coding: utf-8 -*-
"""
Component wiring shared by the CLI scripts.

build_services() assembles store, capabilities, upserter, extraction engine,
retriever and inference engine from the config dicts. The store is Neo4j by
default; pass memory_dir to use an InMemoryGraphStore persisted in a
directory (loaded if it already holds a graph).

Example:
    services = build_services(memory_dir="data/graph")
    job = services.ingestion.ingest(raw, "markdown", "notes.md")
    services.close()
"""
# Standard library
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

# Config imports (direct)
from config.pipeline_config import EMBEDDING_CONFIG, LLM_CONFIG, NEO4J_CONFIG

# Local
from kgforge.graph.graph_store import GraphStore
from kgforge.graph.memory_store import InMemoryGraphStore
from kgforge.graph.neo4j_store import Neo4jGraphStore
from kgforge.graph.upserter import GraphUpserter
from kgforge.pipeline.ingestion_service import IngestionService
from kgforge.processing.extraction_engine import ExtractionEngine
from kgforge.reasoning.inference_engine import InferenceEngine
from kgforge.retrieval.answer_generator import AnswerGenerator
from kgforge.retrieval.hybrid_retriever import HybridRetriever
from kgforge.utils.embedder import BGEEmbedder, TimeoutEmbedder
from kgforge.utils.llm_client import TogetherLLM

logger = logging.getLogger(__name__)


def build_store(memory_dir: Optional[Union[str, Path]] = None) -> GraphStore:
    """Neo4j store from NEO4J_CONFIG, or a directory-backed in-memory store."""
    dimension = EMBEDDING_CONFIG['dimension']
    if memory_dir is not None:
        memory_dir = Path(memory_dir)
        if (memory_dir / 'graph.json').exists():
            logger.info(f"Loading in-memory graph from {memory_dir}")
            return InMemoryGraphStore.load(memory_dir)
        return InMemoryGraphStore(dimension=dimension)

    store = Neo4jGraphStore(
        NEO4J_CONFIG['uri'], NEO4J_CONFIG['user'], NEO4J_CONFIG['password']
    )
    store.ensure_schema(dimension)
    return store


def build_embedder() -> TimeoutEmbedder:
    return TimeoutEmbedder(BGEEmbedder(), timeout=EMBEDDING_CONFIG['timeout'])


def build_llm() -> TogetherLLM:
    return TogetherLLM(api_key=LLM_CONFIG['api_key'])


@dataclass
class Services:
    store: GraphStore
    llm: object
    embedder: object
    upserter: GraphUpserter
    engine: ExtractionEngine
    ingestion: IngestionService
    retriever: HybridRetriever
    inference: InferenceEngine
    answers: AnswerGenerator
    memory_dir: Optional[Path] = None

    def close(self) -> None:
        """Drain the ingestion pools, persist a memory store, release the store."""
        self.ingestion.shutdown(wait=True)
        if isinstance(self.embedder, TimeoutEmbedder):
            self.embedder.shutdown()
        if self.memory_dir is not None and isinstance(self.store, InMemoryGraphStore):
            self.store.save(self.memory_dir)
        self.store.close()


def build_services(
    memory_dir: Optional[Union[str, Path]] = None,
    store: Optional[GraphStore] = None,
    llm=None,
    embedder=None,
) -> Services:
    """
    Wire every component.

    Args:
        memory_dir: Directory for an in-memory store (Neo4j when None)
        store / llm / embedder: Prebuilt components, built from config if None
    """
    store = store or build_store(memory_dir)
    llm = llm or build_llm()
    embedder = embedder or build_embedder()

    upserter = GraphUpserter(store, embedder)
    engine = ExtractionEngine(llm)
    return Services(
        store=store,
        llm=llm,
        embedder=embedder,
        upserter=upserter,
        engine=engine,
        ingestion=IngestionService(engine, upserter),
        retriever=HybridRetriever(store, embedder),
        inference=InferenceEngine(store, upserter, llm),
        answers=AnswerGenerator(llm, store),
        memory_dir=Path(memory_dir) if memory_dir is not None else None,
    )
