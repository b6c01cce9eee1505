# -*- coding: utf-8 -*-
"""
BGE-M3 embedding capability.

Implements embed(text) -> float32 vector for entities ("name (Type)"),
document fragments and queries. Any model failure or dimension mismatch
surfaces as EmbeddingError so callers can degrade (queue a backfill, switch
retrieval to name-matched seeds) instead of crashing.

Example:
    embedder = BGEEmbedder(device='cpu')
    vector = embedder.embed("Acme Corp (Organization)")   # shape (1024,)
"""
# Standard library
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import List, Optional

# Third-party
import numpy as np
from sentence_transformers import SentenceTransformer

# Config imports (direct)
from config.pipeline_config import EMBEDDING_CONFIG

# Local
from kgforge.utils.errors import EmbeddingError

logger = logging.getLogger(__name__)


class BGEEmbedder:
    """
    sentence-transformers wrapper returning float32 numpy vectors.

    Model: BAAI/bge-m3 (1024 dimensions, multilingual) unless configured
    otherwise. Vectors are L2-normalized when config['normalize'] is set.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        device: Optional[str] = None,
        dimension: Optional[int] = None,
        config: Optional[dict] = None,
    ):
        self.config = {**EMBEDDING_CONFIG, **(config or {})}
        self.model_name = model_name or self.config['model_name']
        self.embedding_dim = dimension or self.config['dimension']

        logger.info(f"Loading embedding model: {self.model_name}")
        self.model = SentenceTransformer(
            self.model_name, device=device or self.config['device']
        )
        logger.info(f"Model loaded on device: {self.model.device}")

    def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Raises:
            EmbeddingError: Empty text, model failure, or wrong dimension
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str], batch_size: int = 32) -> np.ndarray:
        """
        Embed several texts at once.

        Returns:
            Array of shape (len(texts), dimension), dtype float32
        """
        try:
            vectors = self.model.encode(
                texts,
                batch_size=batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config['normalize'],
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding model failed: {e}") from e

        vectors = np.asarray(vectors, dtype=np.float32)
        if vectors.ndim != 2 or vectors.shape[1] != self.embedding_dim:
            raise EmbeddingError(
                f"Expected {self.embedding_dim}-dim vectors, got shape {vectors.shape}"
            )
        return vectors


class TimeoutEmbedder:
    """
    Bound the wall-clock time of any embed(text) capability.

    The wrapped call runs on a small worker pool; when it does not finish in
    time the caller gets EmbeddingError and moves on (the worker finishes in
    the background and its result is dropped).

    Example:
        embedder = TimeoutEmbedder(BGEEmbedder(), timeout=30.0)
    """

    def __init__(self, embedder, timeout: Optional[float] = None, max_workers: int = 4):
        self.embedder = embedder
        self.timeout = timeout if timeout is not None else EMBEDDING_CONFIG['timeout']
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='embed')

    def embed(self, text: str) -> np.ndarray:
        future = self._pool.submit(self.embedder.embed, text)
        try:
            return future.result(timeout=self.timeout)
        except FuturesTimeoutError as e:
            future.cancel()
            raise EmbeddingError(f"Embedding timed out after {self.timeout}s") from e

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False)
