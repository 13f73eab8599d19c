"""
Chronicle

Question answering and tag extraction over a personal journal.

Philosophy:
- Every answer is grounded: citation markers always resolve to context entries
- A question either fully succeeds and is recorded, or leaves nothing behind
- Tags come from a controlled vocabulary, with evidence for every suggestion

Usage:
    from chronicle.common import load_config, JournalStore
    from chronicle.engine import JournalEngine
    from chronicle.retriever import ContextComposer, Synthesizer
    from chronicle.tagger import TagMatcher, VocabularyStore
"""

__version__ = "0.1.0"
