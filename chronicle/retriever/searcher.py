"""
Searcher

Retriever contract consumed by the context composer, plus the store-backed
reference retriever. A retriever returns candidate entries with a raw
relevance score; ranking, normalization and budgeting happen downstream.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol

import numpy as np

from ..common.embedding_service import EmbeddingService, cosine_similarities
from ..common.errors import UpstreamUnavailable
from ..common.schemas import ContextFilters, Entry
from ..common.store import JournalStore
from .query_processor import QueryProcessor, tokenize

logger = logging.getLogger("chronicle.retriever.searcher")


class SearchMode(str, Enum):
    """Retrieval mode"""
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


@dataclass
class RetrievalHit:
    """A candidate entry with the retriever's raw score"""
    entry: Entry
    raw_score: float


class Retriever(Protocol):
    """Anything that can rank journal entries for a query."""

    @property
    def supports_semantic(self) -> bool:
        ...

    def search(
        self,
        query_text: str,
        filters: Optional[ContextFilters],
        limit: int,
        mode: SearchMode = SearchMode.LEXICAL,
    ) -> List[RetrievalHit]:
        ...


class StoreRetriever:
    """
    Reference retriever over the journal store.

    Lexical score per entry:
        0.6 * keyword coverage + 0.4 * mean saturating term frequency
    where term frequency is tf / (tf + 1) and a title hit counts double.
    Semantic score is the cosine similarity of the query embedding to the
    entry's stored embedding.
    """

    COVERAGE_WEIGHT = 0.6
    FREQUENCY_WEIGHT = 0.4
    TITLE_WEIGHT = 2

    def __init__(
        self,
        store: JournalStore,
        embedding_service: Optional[EmbeddingService] = None,
        query_processor: Optional[QueryProcessor] = None,
    ):
        self._store = store
        self._embedding = embedding_service
        self._processor = query_processor or QueryProcessor()

    @property
    def supports_semantic(self) -> bool:
        return self._embedding is not None and self._embedding.is_available

    def search(
        self,
        query_text: str,
        filters: Optional[ContextFilters],
        limit: int,
        mode: SearchMode = SearchMode.LEXICAL,
    ) -> List[RetrievalHit]:
        """
        Rank entries for a query.

        Args:
            query_text: Question or free text
            filters: Date range / tag restrictions applied before ranking
            limit: Maximum hits returned
            mode: Lexical keyword scoring or semantic embedding similarity

        Returns:
            Hits sorted by raw_score descending; zero-score entries omitted
        """
        if limit <= 0:
            return []

        if mode == SearchMode.SEMANTIC:
            hits = self._search_semantic(query_text, filters)
        else:
            hits = self._search_lexical(query_text, filters)

        hits.sort(key=lambda h: (-h.raw_score, -h.entry.entry_date.timestamp()))
        return hits[:limit]

    def _search_lexical(self, query_text: str, filters: Optional[ContextFilters]) -> List[RetrievalHit]:
        keywords = self._processor.parse(query_text).keywords
        if not keywords:
            return []

        hits = []
        for entry in self._store.list_entries(filters):
            body_counts = Counter(tokenize(entry.body))
            title_counts = Counter(tokenize(entry.title or ""))

            matched = 0
            saturation = 0.0
            for keyword in keywords:
                tf = body_counts.get(keyword, 0) + self.TITLE_WEIGHT * title_counts.get(keyword, 0)
                if tf:
                    matched += 1
                    saturation += tf / (tf + 1)

            if not matched:
                continue
            score = (
                self.COVERAGE_WEIGHT * matched / len(keywords)
                + self.FREQUENCY_WEIGHT * saturation / len(keywords)
            )
            hits.append(RetrievalHit(entry=entry, raw_score=round(score, 6)))
        return hits

    def _search_semantic(self, query_text: str, filters: Optional[ContextFilters]) -> List[RetrievalHit]:
        if not self.supports_semantic:
            raise UpstreamUnavailable("Semantic search is not available")

        entries = [e for e in self._store.list_entries(filters, with_embeddings=True) if e.embedding]
        if not entries:
            return []

        query_vector = self._embedding.embed_single(query_text)
        dim = len(query_vector)
        entries = [e for e in entries if len(e.embedding) == dim]
        if not entries:
            logger.warning("No stored embeddings match query dimension %d", dim)
            return []

        matrix = np.asarray([e.embedding for e in entries], dtype=np.float32)
        scores = cosine_similarities(query_vector, matrix)
        return [
            RetrievalHit(entry=entry, raw_score=float(score))
            for entry, score in zip(entries, scores)
            if score > 0
        ]
