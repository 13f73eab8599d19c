"""
Vocabulary Store

Canonical tags, their aliases, categories and parent links.

Reads go to an immutable snapshot that is swapped atomically after every
write, so matcher calls never block on each other or on a writer. Writes are
serialized by one lock held only for the single write plus the snapshot
rebuild.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..common.errors import Conflict, InvalidInput, NotFound
from ..common.schemas import ControlledVocabulary, Tag, VocabularyTag
from ..common.store import JournalStore

logger = logging.getLogger("chronicle.tagger.vocabulary")


# ============================================================================
# Default vocabulary
# ============================================================================

DEFAULT_VOCABULARY: List[VocabularyTag] = [
    VocabularyTag(
        id="", name="personal",
        description="Personal thoughts, feelings, and experiences",
        aliases=["private", "self"], category="general",
        examples=["personal reflection", "my thoughts"],
    ),
    VocabularyTag(
        id="", name="work",
        description="Work-related entries, career, and professional life",
        aliases=["job", "career", "professional"], category="general",
        examples=["work meeting", "project update"],
    ),
    VocabularyTag(
        id="", name="travel",
        description="Travel experiences, trips, and adventures",
        aliases=["trip", "vacation", "journey"], category="activities",
        examples=["travel diary", "vacation memories"],
    ),
    VocabularyTag(
        id="", name="reflection",
        description="Deep thoughts, introspection, and self-analysis",
        aliases=["introspection", "contemplation"], category="mental",
        examples=["reflecting on life", "deep thoughts"],
    ),
    VocabularyTag(
        id="", name="goals",
        description="Goals, plans, aspirations, and future objectives",
        aliases=["plans", "objectives", "aspirations"], category="planning",
        examples=["life goals", "future plans"],
    ),
    VocabularyTag(
        id="", name="relationships",
        description="Relationships, family, friends, and social connections",
        aliases=["family", "friends", "social"], category="social",
        examples=["family time", "friendship"],
    ),
    VocabularyTag(
        id="", name="health",
        description="Health, wellness, fitness, and medical topics",
        aliases=["wellness", "fitness", "medical"], category="lifestyle",
        examples=["health journey", "fitness goals"],
    ),
    VocabularyTag(
        id="", name="creativity",
        description="Creative pursuits, art, writing, and inspiration",
        aliases=["art", "creative", "inspiration"], category="activities",
        examples=["creative project", "artistic inspiration"],
    ),
    VocabularyTag(
        id="", name="learning",
        description="Learning, education, skills, and knowledge acquisition",
        aliases=["education", "study", "knowledge"], category="development",
        examples=["learning experience", "new skills"],
    ),
    VocabularyTag(
        id="", name="emotions",
        description="Emotional states, feelings, and mood tracking",
        aliases=["feelings", "mood", "emotional"], category="mental",
        examples=["emotional state", "feeling grateful"],
    ),
]

_DEFAULT_EXAMPLES = {t.name: t.examples for t in DEFAULT_VOCABULARY}


def normalize_name(name: str) -> str:
    return " ".join(name.split()).lower()


@dataclass(frozen=True)
class VocabularySnapshot:
    """Immutable read view of the vocabulary"""
    vocabulary: ControlledVocabulary
    tags_by_name: Dict[str, Tag] = field(default_factory=dict)
    # (term, canonical tag name, is_alias)
    terms: Tuple[Tuple[str, str, bool], ...] = ()

    def resolve(self, term: str) -> Optional[Tag]:
        """Tag for a canonical name or alias, if any."""
        key = normalize_name(term)
        tag = self.tags_by_name.get(key)
        if tag is None and key in self.vocabulary.aliases:
            tag = self.tags_by_name.get(self.vocabulary.aliases[key])
        return tag


class VocabularyStore:
    """Controlled vocabulary backed by the journal store."""

    def __init__(self, store: JournalStore):
        self._store = store
        self._write_lock = threading.Lock()
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------ #
    # Reads (lock-free)
    # ------------------------------------------------------------------ #

    def snapshot(self) -> VocabularySnapshot:
        return self._snapshot

    def get_vocabulary(self) -> ControlledVocabulary:
        return self._snapshot.vocabulary

    def resolve(self, term: str) -> Optional[Tag]:
        return self._snapshot.resolve(term)

    def _build_snapshot(self) -> VocabularySnapshot:
        tags = self._store.list_tags()
        aliases = self._store.list_aliases()
        by_id = {t.id: t for t in tags}

        alias_map: Dict[str, str] = {}
        aliases_by_tag: Dict[str, List[str]] = {}
        for alias in aliases:
            owner = by_id.get(alias.tag_id)
            if owner is None:
                continue
            alias_map[alias.alias_text.lower()] = owner.name
            aliases_by_tag.setdefault(owner.id, []).append(alias.alias_text)

        vocab_tags = [
            VocabularyTag(
                id=t.id,
                name=t.name,
                description=t.description,
                aliases=aliases_by_tag.get(t.id, []),
                category=t.category,
                parent=by_id[t.parent_id].name if t.parent_id in by_id else None,
                examples=_DEFAULT_EXAMPLES.get(t.name, []),
            )
            for t in tags
        ]

        terms = [(t.name.lower(), t.name, False) for t in tags]
        terms.extend((alias, name, True) for alias, name in alias_map.items())

        return VocabularySnapshot(
            vocabulary=ControlledVocabulary(tags=vocab_tags, aliases=alias_map),
            tags_by_name={t.name.lower(): t for t in tags},
            terms=tuple(terms),
        )

    def _refresh(self) -> None:
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------ #
    # Writes (exclusive)
    # ------------------------------------------------------------------ #

    def create_custom_tag(
        self,
        name: str,
        description: str = "",
        category: str = "general",
        aliases: Sequence[str] = (),
        parent: Optional[str] = None,
    ) -> VocabularyTag:
        """
        Add a tag with its aliases.

        Args:
            name: Canonical tag name (stored lowercase)
            description: Human-readable description
            category: Category label
            aliases: Alternative texts, globally unique across the vocabulary
            parent: Optional parent tag name

        Returns:
            The created VocabularyTag

        Raises:
            InvalidInput: empty name
            Conflict: name or an alias collides with any existing tag or alias
            NotFound: parent tag does not exist
        """
        tag_name = normalize_name(name or "")
        if not tag_name:
            raise InvalidInput("Tag name must not be empty")

        alias_texts = [
            a for a in dict.fromkeys(normalize_name(a) for a in aliases if a and a.strip())
            if a != tag_name
        ]

        with self._write_lock:
            collisions = self._store.name_collisions([tag_name] + alias_texts)
            if collisions:
                raise Conflict(
                    f"Already in vocabulary: {', '.join(collisions)}",
                    detail={"collisions": collisions},
                )

            parent_id = None
            if parent:
                parent_tag = self._snapshot.tags_by_name.get(normalize_name(parent))
                if parent_tag is None:
                    raise NotFound(f"Parent tag not found: {parent}")
                parent_id = parent_tag.id

            tag = Tag(
                id=str(uuid.uuid4()),
                name=tag_name,
                parent_id=parent_id,
                description=description or "",
                category=(category or "general").strip().lower(),
            )
            self._store.insert_tag(tag, alias_texts)
            self._refresh()

        logger.info("Created tag '%s' with %d alias(es)", tag_name, len(alias_texts))
        return next(t for t in self._snapshot.vocabulary.tags if t.id == tag.id)

    def add_alias(self, tag_name: str, alias: str) -> VocabularyTag:
        """
        Raises:
            NotFound: unknown tag
            Conflict: alias text is already a tag name or alias
        """
        alias_text = normalize_name(alias or "")
        if not alias_text:
            raise InvalidInput("Alias must not be empty")

        with self._write_lock:
            tag = self._require(tag_name)
            if self._store.name_collisions([alias_text]):
                raise Conflict(f"Already in vocabulary: {alias_text}",
                               detail={"collisions": [alias_text]})
            self._store.insert_alias(tag.id, alias_text)
            self._refresh()

        return next(t for t in self._snapshot.vocabulary.tags if t.id == tag.id)

    def set_parent(self, tag_name: str, parent_name: Optional[str]) -> None:
        """Re-parent a tag. The tag tree never contains a cycle.

        Raises:
            NotFound: unknown tag or parent
            Conflict: the new parent is the tag itself or one of its descendants
        """
        with self._write_lock:
            tag = self._require(tag_name)
            parent_id = None
            if parent_name:
                parent = self._require(parent_name)
                by_id = {t.id: t for t in self._snapshot.tags_by_name.values()}
                cursor: Optional[Tag] = parent
                while cursor is not None:
                    if cursor.id == tag.id:
                        raise Conflict(
                            f"Setting '{parent.name}' as parent of '{tag.name}' would create a cycle"
                        )
                    cursor = by_id.get(cursor.parent_id) if cursor.parent_id else None
                parent_id = parent.id
            self._store.update_tag_parent(tag.id, parent_id)
            self._refresh()

    def delete_tag(self, tag_name: str) -> None:
        """Delete a tag; its aliases and entry associations go with it.

        Raises:
            NotFound: unknown tag
        """
        with self._write_lock:
            tag = self._require(tag_name)
            self._store.delete_tag(tag.id)
            self._refresh()
        logger.info("Deleted tag '%s'", tag.name)

    def seed_defaults(self) -> int:
        """Install the default vocabulary into an empty store.

        Returns:
            Number of tags created (0 when the vocabulary is not empty)
        """
        with self._write_lock:
            if self._snapshot.vocabulary.size:
                return 0
            with self._store.transaction():
                for default in DEFAULT_VOCABULARY:
                    tag = Tag(
                        id=str(uuid.uuid4()),
                        name=default.name,
                        description=default.description,
                        category=default.category,
                    )
                    self._store.insert_tag(tag, default.aliases)
            self._refresh()
        logger.info("Seeded default vocabulary (%d tags)", len(DEFAULT_VOCABULARY))
        return len(DEFAULT_VOCABULARY)

    def _require(self, tag_name: str) -> Tag:
        tag = self._snapshot.tags_by_name.get(normalize_name(tag_name or ""))
        if tag is None:
            raise NotFound(f"Tag not found: {tag_name}")
        return tag
