"""
Tests for the Context Composer

Hybrid ranking, relevance floor, tie-breaks, truncation and snippets.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from chronicle.common.errors import InvalidInput, UpstreamUnavailable
from chronicle.common.schemas import ContextFilters, DateRange, Entry, IndexState
from chronicle.retriever.composer import ContextComposer, build_snippet, normalize_scores
from chronicle.retriever.searcher import RetrievalHit, SearchMode, StoreRetriever
from conftest import day


def _entry(entry_id, when, body="hiking notes"):
    return Entry(id=entry_id, body=body, entry_date=when, tags=["travel"])


def _retriever(lexical, semantic=None, supports_semantic=False):
    retriever = MagicMock()
    retriever.supports_semantic = supports_semantic

    def search(query, filters, limit, mode=SearchMode.LEXICAL):
        if mode == SearchMode.SEMANTIC:
            if isinstance(semantic, Exception):
                raise semantic
            return list(semantic or [])
        return list(lexical)

    retriever.search.side_effect = search
    return retriever


def _index(version="1"):
    return lambda: IndexState(embedding_model="nomic-embed-text", version=version, last_build=day(2024, 1, 1))


class TestNormalizeScores:
    def test_unit_scale_kept(self):
        hits = [RetrievalHit(_entry("a", day(2024, 1, 1)), 0.4)]
        assert normalize_scores(hits) == {"a": 0.4}

    def test_larger_scale_divided_by_max(self):
        hits = [
            RetrievalHit(_entry("a", day(2024, 1, 1)), 8.0),
            RetrievalHit(_entry("b", day(2024, 1, 2)), 2.0),
        ]
        assert normalize_scores(hits) == {"a": 1.0, "b": 0.25}

    def test_duplicate_ids_keep_best(self):
        entry = _entry("a", day(2024, 1, 1))
        assert normalize_scores([RetrievalHit(entry, 0.3), RetrievalHit(entry, 0.7)]) == {"a": 0.7}


class TestCompose:
    def test_tie_break_prefers_recent_entry(self):
        hits = [
            RetrievalHit(_entry("e1", day(2023, 1, 1)), 0.9),
            RetrievalHit(_entry("e2", day(2024, 6, 1)), 0.9),
            RetrievalHit(_entry("e3", day(2024, 1, 1)), 0.4),
        ]
        composer = ContextComposer(_retriever(hits))

        context = composer.compose("hiking", max_entries=2)

        assert [c.entry_id for c in context] == ["e2", "e1"]
        assert [c.relevance_score for c in context] == [0.9, 0.9]
        assert context[0].tags == ["travel"]

    def test_max_entries_zero_returns_empty(self):
        retriever = _retriever([RetrievalHit(_entry("e1", day(2024, 1, 1)), 0.9)])
        assert ContextComposer(retriever).compose("hiking", max_entries=0) == []
        retriever.search.assert_not_called()

    def test_negative_max_entries_rejected(self):
        with pytest.raises(InvalidInput):
            ContextComposer(_retriever([])).compose("hiking", max_entries=-1)

    def test_empty_query_rejected(self):
        with pytest.raises(InvalidInput):
            ContextComposer(_retriever([])).compose("   ")

    def test_inverted_date_range_rejected(self):
        filters = ContextFilters(date_range=DateRange(start=day(2024, 2, 1), end=day(2024, 1, 1)))
        with pytest.raises(InvalidInput):
            ContextComposer(_retriever([])).compose("hiking", filters)

    def test_naive_and_aware_range_ends_mix(self, store):
        inside = store.add_entry("Went hiking in January.", datetime(2024, 1, 15, 9, 0))
        store.add_entry("Went hiking in March.", day(2024, 3, 15))
        window = DateRange(start=datetime(2024, 1, 1), end=datetime(2024, 2, 1, tzinfo=timezone.utc))

        assert window.start.tzinfo == timezone.utc
        context = ContextComposer(StoreRetriever(store)).compose(
            "hiking", ContextFilters(date_range=window), 5
        )
        assert [c.entry_id for c in context] == [inside.id]

    def test_inverted_mixed_range_rejected(self):
        window = DateRange(
            start=datetime(2024, 2, 1, 12, 0, tzinfo=timezone(timedelta(hours=5))),
            end=datetime(2024, 2, 1, 6, 0),
        )
        with pytest.raises(InvalidInput):
            ContextComposer(_retriever([])).compose("hiking", ContextFilters(date_range=window))

    def test_relevance_floor(self):
        hits = [
            RetrievalHit(_entry("strong", day(2024, 1, 1)), 0.5),
            RetrievalHit(_entry("weak", day(2024, 1, 2)), 0.2),
        ]
        context = ContextComposer(_retriever(hits), min_relevance=0.3).compose("hiking")
        assert [c.entry_id for c in context] == ["strong"]

    def test_nothing_relevant_is_empty(self):
        assert ContextComposer(_retriever([])).compose("hiking") == []

    def test_hybrid_combines_both_rankings(self):
        lexical = [
            RetrievalHit(_entry("e1", day(2024, 1, 1)), 0.5),
            RetrievalHit(_entry("e2", day(2024, 1, 2)), 0.2),
        ]
        semantic = [
            RetrievalHit(_entry("e2", day(2024, 1, 2)), 0.9),
            RetrievalHit(_entry("e3", day(2024, 1, 3)), 0.8),
        ]
        composer = ContextComposer(
            _retriever(lexical, semantic, supports_semantic=True),
            index_state=_index("1"),
            embedding_model="nomic-embed-text",
            embedding_version="1",
        )

        context = composer.compose("hiking")

        # e1 = 0.4 * 0.5 falls under the floor
        assert [c.entry_id for c in context] == ["e2", "e3"]
        assert context[0].relevance_score == pytest.approx(0.62)
        assert context[1].relevance_score == pytest.approx(0.48)

    def test_stale_index_uses_lexical_only(self, caplog):
        import logging
        lexical = [RetrievalHit(_entry("e1", day(2024, 1, 1)), 0.5)]
        retriever = _retriever(lexical, [], supports_semantic=True)
        composer = ContextComposer(
            retriever,
            index_state=_index("0"),
            embedding_model="nomic-embed-text",
            embedding_version="1",
        )

        with caplog.at_level(logging.WARNING, logger="chronicle.retriever.composer"):
            context = composer.compose("hiking")

        assert [c.relevance_score for c in context] == [0.5]
        assert retriever.search.call_count == 1
        assert "stale" in caplog.text

    def test_semantic_failure_falls_back_to_lexical(self):
        lexical = [RetrievalHit(_entry("e1", day(2024, 1, 1)), 0.5)]
        composer = ContextComposer(
            _retriever(lexical, UpstreamUnavailable("down"), supports_semantic=True),
            index_state=_index("1"),
            embedding_model="nomic-embed-text",
            embedding_version="1",
        )

        context = composer.compose("hiking")
        assert [c.entry_id for c in context] == ["e1"]
        assert context[0].relevance_score == 0.5

    def test_with_store_retriever(self, store):
        match = store.add_entry("We went hiking near the lake.", day(2024, 7, 1), title="Lake")
        store.add_entry("Quiet day at home.", day(2024, 7, 2))

        composer = ContextComposer(StoreRetriever(store))
        context = composer.compose("Where did I go hiking?")

        assert [c.entry_id for c in context] == [match.id]
        assert context[0].title == "Lake"
        assert "hiking" in context[0].snippet


class TestBuildSnippet:
    TEXT = (
        "one two three four five six seven eight nine ten eleven twelve "
        "thirteen fourteen rain fifteen sixteen seventeen eighteen nineteen twenty"
    )

    def test_short_text_returned_whole(self):
        assert build_snippet("a  short\ntext", ["short"], 100) == "a short text"

    def test_window_contains_keyword_within_budget(self):
        snippet = build_snippet(self.TEXT, ["rain"], 40)

        assert "rain" in snippet
        assert len(snippet) <= 40
        assert snippet.startswith("...")
        words = set(self.TEXT.split())
        assert all(w in words for w in snippet.strip(".").split())

    def test_no_keyword_starts_at_beginning(self):
        snippet = build_snippet(self.TEXT, ["absent"], 30)

        assert snippet.startswith("one two")
        assert snippet.endswith("...")
        assert len(snippet) <= 30

    def test_keyword_matching_ignores_punctuation_and_plurals(self):
        text = "filler " * 20 + "Storms, then quiet. " + "filler " * 20
        snippet = build_snippet(text, ["storm"], 40)
        assert "Storms," in snippet

    def test_single_long_word_is_cut(self):
        snippet = build_snippet("x" * 50, [], 20)
        assert snippet == "x" * 17 + "..."
