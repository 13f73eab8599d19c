"""
Context Composer

Turns ranked retriever candidates into the bounded, ordered context set for
one question.

Ranking rule:
    lexical and semantic scores are each normalized to [0, 1] within their own
    result set, then combined as
        combined = w * semantic + (1 - w) * lexical        (w = 0.6 by default)
    Semantic retrieval is only used when an IndexState exists whose embedding
    model and version match the configured ones and the retriever supports it;
    otherwise the lexical score alone is used.

Candidates under the relevance floor are dropped. The rest are sorted by
score descending, ties broken by most recent entry_date, and truncated to
max_entries.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from ..common.errors import InvalidInput, UpstreamUnavailable
from ..common.schemas import ContextEntry, ContextFilters, IndexState
from .query_processor import QueryProcessor, normalize_token
from .searcher import RetrievalHit, Retriever, SearchMode

logger = logging.getLogger("chronicle.retriever.composer")

ELLIPSIS = "..."
_EDGE_PUNCT_RE = re.compile(r"^\W+|\W+$", re.UNICODE)


def normalize_scores(hits: Sequence[RetrievalHit]) -> Dict[str, float]:
    """
    Map entry id -> score on [0, 1] within one result set.

    Scores already on a unit scale are kept as-is so weak matches stay weak;
    a set whose maximum exceeds 1.0 is divided by that maximum.
    """
    if not hits:
        return {}
    top = max(h.raw_score for h in hits)
    scale = top if top > 1.0 else 1.0
    result: Dict[str, float] = {}
    for hit in hits:
        score = min(max(hit.raw_score / scale, 0.0), 1.0)
        # A retriever may return an entry twice; keep its best score
        result[hit.entry.id] = max(score, result.get(hit.entry.id, 0.0))
    return result


def build_snippet(text: str, keywords: Sequence[str], budget: int) -> str:
    """
    Cut the window of text with the most keyword hits, within budget characters.

    Never splits a word. Elided text on either side is marked with "...",
    and the markers count toward the budget. With no keyword hits the
    window starts at the beginning of the text.
    """
    words = text.split()
    flat = " ".join(words)
    if len(flat) <= budget:
        return flat

    wanted = {normalize_token(k) for k in keywords}
    hits = [
        1 if normalize_token(_EDGE_PUNCT_RE.sub("", w)) in wanted else 0
        for w in words
    ]

    best_start, best_end, best_score = 0, 0, -1
    for start in range(len(words)):
        room = budget - len(ELLIPSIS) - (len(ELLIPSIS) if start > 0 else 0)
        end, length = start, -1
        while end < len(words) and length + 1 + len(words[end]) <= room:
            length += 1 + len(words[end])
            end += 1
        score = sum(hits[start:end])
        if score > best_score:
            best_start, best_end, best_score = start, end, score
        if end == len(words):
            break

    if best_end == best_start:
        # A single word longer than the budget
        return words[best_start][: budget - len(ELLIPSIS)] + ELLIPSIS

    snippet = " ".join(words[best_start:best_end])
    if best_start > 0:
        snippet = ELLIPSIS + snippet
    if best_end < len(words):
        snippet = snippet + ELLIPSIS
    return snippet


class ContextComposer:
    """
    Builds budgeted context for the answer synthesizer.

    Calls the retriever once for lexical ranking and, when the semantic index
    is current, once more for semantic ranking.
    """

    CANDIDATE_POOL = 20

    def __init__(
        self,
        retriever: Retriever,
        *,
        index_state: Optional[Callable[[], Optional[IndexState]]] = None,
        embedding_model: str = "",
        embedding_version: str = "",
        semantic_weight: float = 0.6,
        min_relevance: float = 0.3,
        snippet_chars: int = 320,
        query_processor: Optional[QueryProcessor] = None,
    ):
        """
        Args:
            retriever: Ranked candidate source
            index_state: Reads the current IndexState (None disables semantic mode)
            embedding_model: Embedding model the semantic index must be built with
            embedding_version: Index version the semantic index must carry
            semantic_weight: Weight of the semantic score in the hybrid sum
            min_relevance: Relevance floor applied to combined scores
            snippet_chars: Character budget per snippet
        """
        if not 0.0 <= semantic_weight <= 1.0:
            raise ValueError("semantic_weight must be within [0, 1]")
        self._retriever = retriever
        self._index_state = index_state
        self._embedding_model = embedding_model
        self._embedding_version = embedding_version
        self._semantic_weight = semantic_weight
        self._min_relevance = min_relevance
        self._snippet_chars = snippet_chars
        self._processor = query_processor or QueryProcessor()

    def semantic_usable(self) -> bool:
        """True when the semantic index is present, current and supported."""
        if self._index_state is None or getattr(self._retriever, "supports_semantic", False) is not True:
            return False
        state = self._index_state()
        if state is None:
            return False
        if state.embedding_model != self._embedding_model or state.version != self._embedding_version:
            logger.warning(
                "Semantic index is stale (index=%s/%s, configured=%s/%s); using lexical ranking",
                state.embedding_model, state.version,
                self._embedding_model, self._embedding_version,
            )
            return False
        return True

    def compose(
        self,
        query: str,
        filters: Optional[ContextFilters] = None,
        max_entries: int = 8,
    ) -> List[ContextEntry]:
        """
        Select and rank context entries for a question.

        Args:
            query: The user's question
            filters: Optional date range (inclusive) and any-of tags
            max_entries: Maximum number of entries returned; 0 returns []

        Returns:
            ContextEntry list ordered by relevance, most recent first on ties.
            Empty when nothing clears the relevance floor.

        Raises:
            InvalidInput: negative max_entries, empty query or inverted date range
        """
        if max_entries < 0:
            raise InvalidInput("max_entries must be >= 0", detail={"max_entries": max_entries})
        if max_entries == 0:
            return []
        if not query or not query.strip():
            raise InvalidInput("Question must not be empty")
        if filters is not None and filters.date_range is not None:
            if filters.date_range.start > filters.date_range.end:
                raise InvalidInput("Date range start is after its end")

        pool = max(max_entries * 3, self.CANDIDATE_POOL)
        lexical = self._retriever.search(query, filters, pool, SearchMode.LEXICAL)

        semantic: Optional[List[RetrievalHit]] = None
        if self.semantic_usable():
            try:
                semantic = self._retriever.search(query, filters, pool, SearchMode.SEMANTIC)
            except UpstreamUnavailable as e:
                logger.warning("Semantic retrieval failed, using lexical ranking: %s", e)

        entries = {h.entry.id: h.entry for h in lexical}
        lexical_scores = normalize_scores(lexical)
        if semantic is None:
            combined = lexical_scores
        else:
            entries.update({h.entry.id: h.entry for h in semantic})
            semantic_scores = normalize_scores(semantic)
            w = self._semantic_weight
            combined = {
                entry_id: w * semantic_scores.get(entry_id, 0.0)
                + (1.0 - w) * lexical_scores.get(entry_id, 0.0)
                for entry_id in entries
            }

        ranked = [
            (round(score, 6), entries[entry_id])
            for entry_id, score in combined.items()
            if score >= self._min_relevance
        ]
        ranked.sort(key=lambda item: (-item[0], -item[1].entry_date.timestamp()))

        keywords = self._processor.parse(query).keywords
        context = [
            ContextEntry(
                entry_id=entry.id,
                title=entry.title,
                entry_date=entry.entry_date,
                tags=list(entry.tags),
                relevance_score=score,
                snippet=build_snippet(entry.body, keywords, self._snippet_chars),
            )
            for score, entry in ranked[:max_entries]
        ]
        logger.debug(
            "Composed %d context entries from %d candidates (semantic=%s)",
            len(context), len(entries), semantic is not None,
        )
        return context
