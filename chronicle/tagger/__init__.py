"""
Tagger - Controlled-Vocabulary Tag Extraction

Suggests tags for journal entries from a controlled vocabulary, with
confidence and evidence for every suggestion.

Key Components:
- VocabularyStore: Canonical tags, aliases, categories and parent links
- TagMatcher: Canonical, alias and model-assisted matching tiers
- LLMTagExtractor: Model-assisted suggestions for vocabulary gaps
- BulkProcessor: Parallel extraction with per-entry isolation
"""

from .vocabulary import DEFAULT_VOCABULARY, VocabularySnapshot, VocabularyStore
from .llm_extractor import MODEL_TIER_CAP, LLMTagExtractor, ModelTagSuggestion
from .matcher import (
    ALIAS_TIER_FLOOR,
    CANONICAL_SUBSTRING,
    CANONICAL_WHOLE_WORD,
    TagMatcher,
    evidence_span,
)
from .bulk import BulkOutcome, BulkProcessor

__all__ = [
    "DEFAULT_VOCABULARY",
    "VocabularySnapshot",
    "VocabularyStore",
    "MODEL_TIER_CAP",
    "LLMTagExtractor",
    "ModelTagSuggestion",
    "ALIAS_TIER_FLOOR",
    "CANONICAL_SUBSTRING",
    "CANONICAL_WHOLE_WORD",
    "TagMatcher",
    "evidence_span",
    "BulkOutcome",
    "BulkProcessor",
]
