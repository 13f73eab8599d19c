"""
Chronicle Schemas

Persisted journal records, conversations, and the transient shapes produced
by context composition and tag extraction.
"""

from .journal import (
    Entry,
    IndexState,
    Tag,
    Alias,
    VocabularyTag,
    ControlledVocabulary,
    TagStatistic,
)
from .conversation import (
    Role,
    ConversationState,
    Citation,
    Message,
    Conversation,
    ConversationSummary,
)
from .rag import (
    DateRange,
    ContextFilters,
    ContextEntry,
    RagResponse,
    MatchTier,
    TagSuggestion,
    TagExtractionResult,
    BulkTagResult,
)
from .templates import render_context_block, render_history

__all__ = [
    "Entry",
    "IndexState",
    "Tag",
    "Alias",
    "VocabularyTag",
    "ControlledVocabulary",
    "TagStatistic",
    "Role",
    "ConversationState",
    "Citation",
    "Message",
    "Conversation",
    "ConversationSummary",
    "DateRange",
    "ContextFilters",
    "ContextEntry",
    "RagResponse",
    "MatchTier",
    "TagSuggestion",
    "TagExtractionResult",
    "BulkTagResult",
    "render_context_block",
    "render_history",
]
