"""
Tests for the SQLite Journal Store

Entries, vocabulary, conversations and transaction atomicity.
"""

import uuid
import pytest

from chronicle.common.errors import Conflict, Internal, NotFound
from chronicle.common.schemas import (
    Citation,
    ContextFilters,
    Conversation,
    DateRange,
    Message,
    Role,
    Tag,
)
from conftest import day


def _tag(name: str, **kwargs) -> Tag:
    return Tag(id=str(uuid.uuid4()), name=name, **kwargs)


class TestEntries:
    def test_add_and_get_entry(self, store):
        entry = store.add_entry("Walked by the river.", day(2024, 3, 1), title="River")

        fetched = store.get_entry(entry.id)
        assert fetched.body == "Walked by the river."
        assert fetched.title == "River"
        assert fetched.entry_date == day(2024, 3, 1)
        assert fetched.tags == []

    def test_duplicate_content_conflicts(self, store):
        first = store.add_entry("Same text", day(2024, 3, 1))
        with pytest.raises(Conflict) as exc:
            store.add_entry("  Same text  ", day(2024, 3, 2))
        assert exc.value.detail["entry_id"] == first.id
        assert store.count_entries() == 1

    def test_unknown_entry_is_none(self, store):
        assert store.get_entry("missing") is None
        assert store.get_entries(["missing"]) == {}

    def test_embedding_round_trip(self, store):
        entry = store.add_entry("Vector entry", day(2024, 1, 1), embedding=[0.5, 0.25])
        assert store.get_entry(entry.id).embedding is None
        assert store.get_entry(entry.id, with_embedding=True).embedding == [0.5, 0.25]

        store.set_entry_embedding(entry.id, [1.0, 0.0])
        assert store.get_entry(entry.id, with_embedding=True).embedding == [1.0, 0.0]

    def test_set_embedding_unknown_entry(self, store):
        with pytest.raises(NotFound):
            store.set_entry_embedding("missing", [1.0])

    def test_list_entries_newest_first(self, store):
        store.add_entry("old", day(2024, 1, 1))
        store.add_entry("new", day(2024, 6, 1))
        assert [e.body for e in store.list_entries()] == ["new", "old"]

    def test_date_range_is_inclusive(self, store):
        store.add_entry("before", day(2024, 1, 31))
        store.add_entry("start", day(2024, 2, 1))
        store.add_entry("end", day(2024, 2, 29))
        store.add_entry("after", day(2024, 3, 1))

        filters = ContextFilters(date_range=DateRange(start=day(2024, 2, 1), end=day(2024, 2, 29)))
        assert {e.body for e in store.list_entries(filters)} == {"start", "end"}

    def test_tag_filter_is_any_of(self, store):
        a = store.add_entry("a", day(2024, 1, 1))
        b = store.add_entry("b", day(2024, 1, 2))
        store.add_entry("c", day(2024, 1, 3))
        work, travel = _tag("work"), _tag("travel")
        store.insert_tag(work)
        store.insert_tag(travel)
        store.apply_tags(a.id, [work.id])
        store.apply_tags(b.id, [travel.id])

        filters = ContextFilters(tags=["WORK", "travel"])
        assert {e.body for e in store.list_entries(filters)} == {"a", "b"}


class TestEntryTags:
    def test_apply_tags_is_idempotent(self, store):
        entry = store.add_entry("text", day(2024, 1, 1))
        tag = _tag("work")
        store.insert_tag(tag)

        assert store.apply_tags(entry.id, [tag.id]) == 1
        assert store.apply_tags(entry.id, [tag.id, tag.id]) == 0
        assert store.entry_tags(entry.id) == ["work"]

    def test_apply_tags_unknown_entry(self, store):
        with pytest.raises(NotFound):
            store.apply_tags("missing", [])

    def test_tag_usage(self, store):
        e1 = store.add_entry("one", day(2024, 1, 1))
        e2 = store.add_entry("two", day(2024, 5, 1))
        work, idle = _tag("work"), _tag("idle")
        store.insert_tag(work)
        store.insert_tag(idle)
        store.apply_tags(e1.id, [work.id])
        store.apply_tags(e2.id, [work.id])

        usage = {name: (count, latest) for name, count, latest in store.tag_usage()}
        assert usage["work"] == (2, day(2024, 5, 1))
        assert usage["idle"] == (0, None)


class TestVocabulary:
    def test_insert_tag_with_aliases(self, store):
        tag = _tag("work", category="professional")
        aliases = store.insert_tag(tag, ["job", "office"])

        assert {a.alias_text for a in aliases} == {"job", "office"}
        assert store.get_tag_by_name("WORK").id == tag.id

    def test_duplicate_name_conflicts_case_insensitively(self, store):
        store.insert_tag(_tag("work"))
        with pytest.raises(Conflict):
            store.insert_tag(_tag("Work"))
        assert len(store.list_tags()) == 1

    def test_failed_alias_rolls_back_tag(self, store):
        store.insert_tag(_tag("work"), ["job"])
        with pytest.raises(Conflict):
            store.insert_tag(_tag("career"), ["office", "job"])

        assert store.get_tag_by_name("career") is None
        assert {a.alias_text for a in store.list_aliases()} == {"job"}

    def test_name_collisions_checks_tags_and_aliases(self, store):
        store.insert_tag(_tag("work"), ["job"])
        assert store.name_collisions(["Job", "work", "travel"]) == ["Job", "work"]

    def test_delete_tag_cascades(self, store):
        entry = store.add_entry("text", day(2024, 1, 1))
        tag = _tag("work")
        store.insert_tag(tag, ["job"])
        store.apply_tags(entry.id, [tag.id])

        assert store.delete_tag(tag.id) is True
        assert store.list_aliases() == []
        assert store.entry_tags(entry.id) == []
        assert store.delete_tag(tag.id) is False

    def test_delete_parent_detaches_children(self, store):
        parent = _tag("health")
        child = _tag("fitness")
        store.insert_tag(parent)
        store.insert_tag(child)
        store.update_tag_parent(child.id, parent.id)

        store.delete_tag(parent.id)
        assert store.get_tag(child.id).parent_id is None


class TestIndexState:
    def test_absent_by_default(self, store):
        assert store.get_index_state() is None

    def test_set_replaces_singleton(self, store):
        store.set_index_state("nomic-embed-text", "1")
        store.set_index_state("nomic-embed-text", "2")
        state = store.get_index_state()
        assert state.version == "2"
        assert state.embedding_model == "nomic-embed-text"


class TestConversations:
    def _conversation(self, store, conv_id="c1"):
        conv = Conversation(
            id=conv_id, title="Title", provider="ollama",
            created_at=day(2024, 1, 1), updated_at=day(2024, 1, 1),
        )
        store.insert_conversation(conv)
        return conv

    def _message(self, conv_id, seq, role=Role.USER, citations=()):
        return Message(
            id=str(uuid.uuid4()), conversation_id=conv_id, role=role,
            content=f"message {seq}", created_at=day(2024, 1, 1), seq=seq,
            citations=list(citations),
        )

    def test_messages_in_seq_order_with_citations(self, store):
        entry = store.add_entry("cited", day(2023, 12, 24), title="Eve")
        self._conversation(store)
        store.insert_message(self._message("c1", 1))
        store.insert_message(self._message("c1", 2, Role.ASSISTANT, [
            Citation(entry_id=entry.id, citation_number=1, snippet="cited", relevance_score=0.8),
        ]))

        messages = store.messages("c1")
        assert [m.seq for m in messages] == [1, 2]
        citation = messages[1].citations[0]
        assert citation.entry_title == "Eve"
        assert citation.entry_date == day(2023, 12, 24)
        assert citation.message_id == messages[1].id

    def test_messages_limit_keeps_most_recent(self, store):
        self._conversation(store)
        for seq in range(1, 6):
            store.insert_message(self._message("c1", seq))
        assert [m.seq for m in store.messages("c1", limit=2)] == [4, 5]
        assert store.next_message_seq("c1") == 6

    def test_duplicate_seq_rolls_back_as_internal(self, store):
        self._conversation(store)
        store.insert_message(self._message("c1", 1))
        with pytest.raises(Internal):
            store.insert_message(self._message("c1", 1))
        assert len(store.messages("c1")) == 1

    def test_nested_transaction_rolls_back_everything(self, store):
        class Boom(Exception):
            pass

        with pytest.raises(Boom):
            with store.transaction():
                self._conversation(store, "c2")
                store.insert_message(self._message("c2", 1))
                raise Boom()

        assert store.get_conversation("c2") is None
        assert store.messages("c2") == []

    def test_summaries_and_delete(self, store):
        self._conversation(store)
        store.insert_message(self._message("c1", 1))
        summaries = store.conversation_summaries()
        assert summaries[0].message_count == 1
        assert summaries[0].last_message == "message 1"

        assert store.delete_conversation("c1") is True
        assert store.messages("c1") == []
        assert store.delete_conversation("c1") is False
