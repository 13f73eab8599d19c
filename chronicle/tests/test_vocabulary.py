"""
Tests for the Vocabulary Store

Default seeding, custom tags, aliases, parent links and deletion.
"""

import pytest

from chronicle.common.errors import Conflict, InvalidInput, NotFound
from chronicle.tagger.vocabulary import DEFAULT_VOCABULARY, VocabularyStore


@pytest.fixture
def vocabulary(store):
    vocab = VocabularyStore(store)
    vocab.seed_defaults()
    return vocab


class TestSeedDefaults:
    def test_seeds_once(self, store):
        vocab = VocabularyStore(store)

        assert vocab.seed_defaults() == len(DEFAULT_VOCABULARY)
        assert vocab.seed_defaults() == 0
        assert vocab.get_vocabulary().size == 10

    def test_default_aliases_resolve(self, vocabulary):
        assert vocabulary.resolve("job").name == "work"
        assert vocabulary.resolve("Vacation").name == "travel"
        assert vocabulary.resolve("work").name == "work"
        assert vocabulary.resolve("unknown") is None

    def test_seeded_vocabulary_survives_reload(self, store, vocabulary):
        reloaded = VocabularyStore(store)
        assert sorted(reloaded.get_vocabulary().tag_names()) == sorted(t.name for t in DEFAULT_VOCABULARY)
        assert reloaded.get_vocabulary().aliases["career"] == "work"


class TestCreateCustomTag:
    def test_create_tag_with_aliases(self, vocabulary):
        tag = vocabulary.create_custom_tag(
            "Gardening", "Plants and the garden", "Activities", ["garden", "plants"]
        )

        assert tag.name == "gardening"
        assert tag.category == "activities"
        assert sorted(tag.aliases) == ["garden", "plants"]
        assert vocabulary.resolve("garden").name == "gardening"
        assert vocabulary.get_vocabulary().size == 11

    def test_second_create_conflicts_and_size_unchanged(self, vocabulary):
        vocabulary.create_custom_tag("gardening")
        size = vocabulary.get_vocabulary().size

        with pytest.raises(Conflict):
            vocabulary.create_custom_tag("Gardening")
        assert vocabulary.get_vocabulary().size == size

    def test_alias_colliding_with_existing_alias(self, vocabulary):
        with pytest.raises(Conflict) as exc:
            vocabulary.create_custom_tag("employment", aliases=["job"])
        assert exc.value.detail["collisions"] == ["job"]
        assert vocabulary.resolve("employment") is None

    def test_name_colliding_with_alias(self, vocabulary):
        with pytest.raises(Conflict):
            vocabulary.create_custom_tag("career")

    def test_empty_name_rejected(self, vocabulary):
        with pytest.raises(InvalidInput):
            vocabulary.create_custom_tag("   ")

    def test_parent_link(self, vocabulary):
        tag = vocabulary.create_custom_tag("running", parent="health")
        assert tag.parent == "health"

    def test_unknown_parent(self, vocabulary):
        with pytest.raises(NotFound):
            vocabulary.create_custom_tag("running", parent="sports")
        assert vocabulary.resolve("running") is None


class TestEditVocabulary:
    def test_add_alias(self, vocabulary):
        tag = vocabulary.add_alias("work", "Office")
        assert "office" in tag.aliases
        assert vocabulary.resolve("office").name == "work"

    def test_add_duplicate_alias(self, vocabulary):
        with pytest.raises(Conflict):
            vocabulary.add_alias("health", "job")

    def test_add_alias_unknown_tag(self, vocabulary):
        with pytest.raises(NotFound):
            vocabulary.add_alias("sports", "running")

    def test_set_parent_rejects_cycle(self, vocabulary):
        vocabulary.create_custom_tag("running", parent="health")
        vocabulary.create_custom_tag("marathon", parent="running")

        with pytest.raises(Conflict, match="cycle"):
            vocabulary.set_parent("health", "marathon")
        with pytest.raises(Conflict):
            vocabulary.set_parent("health", "health")

    def test_set_parent_and_clear(self, vocabulary):
        vocabulary.set_parent("reflection", "personal")
        tags = {t.name: t for t in vocabulary.get_vocabulary().tags}
        assert tags["reflection"].parent == "personal"

        vocabulary.set_parent("reflection", None)
        tags = {t.name: t for t in vocabulary.get_vocabulary().tags}
        assert tags["reflection"].parent is None

    def test_delete_tag_removes_aliases(self, vocabulary):
        vocabulary.delete_tag("work")

        assert vocabulary.resolve("work") is None
        assert vocabulary.resolve("job") is None
        assert vocabulary.get_vocabulary().size == 9

    def test_delete_unknown_tag(self, vocabulary):
        with pytest.raises(NotFound):
            vocabulary.delete_tag("sports")

    def test_snapshot_is_replaced_not_mutated(self, vocabulary):
        before = vocabulary.snapshot()
        vocabulary.create_custom_tag("gardening")
        assert before.vocabulary.size == 10
        assert vocabulary.snapshot().vocabulary.size == 11
