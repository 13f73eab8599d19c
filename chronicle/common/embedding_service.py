"""
Embedding Service

Produces query embeddings through the configured language-model provider and
scores them against stored entry vectors with numpy.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .errors import UpstreamUnavailable
from .llm_client import LLMClient

logger = logging.getLogger("chronicle.common.embedding_service")


def to_blob(vector: Sequence[float]) -> bytes:
    """Serialize an embedding as a float32 blob for SQLite storage."""
    return np.asarray(vector, dtype=np.float32).tobytes()


def from_blob(blob: Optional[bytes]) -> Optional[List[float]]:
    if not blob:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


def cosine_similarities(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of one query vector against each row of matrix.

    Negative similarities are clipped to 0 so scores stay on a unit scale.
    Rows with zero norm (or a dimension mismatch) score 0.
    """
    q = np.asarray(query, dtype=np.float32)
    if matrix.size == 0 or q.size == 0 or matrix.shape[1] != q.shape[0]:
        return np.zeros(matrix.shape[0] if matrix.ndim == 2 else 0, dtype=np.float32)

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(matrix, axis=1)
    denom = row_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, matrix @ q / denom, 0.0)
    return np.clip(sims, 0.0, 1.0)


class EmbeddingService:
    """
    Query embedding for semantic retrieval.

    Entry embeddings are built by the external indexer; this service only
    embeds the incoming question with the same model.
    """

    def __init__(self, client: LLMClient, model: str):
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_available(self) -> bool:
        return self._client.is_available

    def embed(self, texts: List[str]) -> List[List[float]]:
        return self._client.embed(texts, model=self._model)

    def embed_single(self, text: str) -> List[float]:
        vectors = self.embed([text])
        if not vectors:
            raise UpstreamUnavailable("Embedding provider returned no vector")
        return vectors[0]
