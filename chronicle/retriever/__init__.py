"""
Retriever - Journal Question Answering

Answers questions over journal entries with grounded, numbered citations.

Key Components:
- QueryProcessor: Cleans questions and extracts keywords
- StoreRetriever: Lexical and semantic candidate search over the store
- ContextComposer: Budgeted, ranked context selection
- ground_citations: Citation marker parsing and renumbering
- Synthesizer: LLM answer synthesis with confidence scoring
- ConversationManager: Conversation lifecycle and turn persistence

Pipeline:
1. Compose context for the question (lexical, plus semantic when the index is current)
2. Prompt the model with context numbered [1]..[n]
3. Ground citation markers back to context entries
4. Persist the question/answer turn atomically
"""

from .query_processor import QueryProcessor, ParsedQuery
from .searcher import Retriever, RetrievalHit, SearchMode, StoreRetriever
from .composer import ContextComposer, build_snippet, normalize_scores
from .citations import GroundedAnswer, ground_citations
from .synthesizer import (
    LOW_CONFIDENCE_THRESHOLD,
    Synthesizer,
    SynthesizedAnswer,
    compute_confidence,
    detect_hedging,
)
from .conversations import ConversationManager, make_title

__all__ = [
    "QueryProcessor",
    "ParsedQuery",
    "Retriever",
    "RetrievalHit",
    "SearchMode",
    "StoreRetriever",
    "ContextComposer",
    "build_snippet",
    "normalize_scores",
    "GroundedAnswer",
    "ground_citations",
    "LOW_CONFIDENCE_THRESHOLD",
    "Synthesizer",
    "SynthesizedAnswer",
    "compute_confidence",
    "detect_hedging",
    "ConversationManager",
    "make_title",
]
