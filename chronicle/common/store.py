"""
Journal store using SQLite.

The store is the source of truth for:
- Entries (immutable once imported; only tag associations change)
- The tag vocabulary (Tag, Alias) and EntryTag associations
- Conversations, their append-only Messages and Citations
- IndexState, which versions the external embedding index

All access goes through one connection guarded by a re-entrant lock.
Multi-row writes run inside transaction(), which either commits every row or
rolls all of them back.
"""

import hashlib
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .embedding_service import from_blob, to_blob
from .errors import ChronicleError, Conflict, Internal, NotFound
from .schemas import (
    Alias,
    Citation,
    ContextFilters,
    Conversation,
    ConversationSummary,
    Entry,
    IndexState,
    Message,
    Role,
    Tag,
)

logger = logging.getLogger("chronicle.common.store")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS Entry (
    id TEXT PRIMARY KEY,
    title TEXT,
    body TEXT NOT NULL,
    entry_date TEXT NOT NULL,
    entry_timezone TEXT NOT NULL DEFAULT 'UTC',
    source_path TEXT NOT NULL DEFAULT '',
    source_type TEXT NOT NULL DEFAULT 'text',
    text_hash TEXT NOT NULL UNIQUE,
    embedding BLOB,
    sentiment REAL,
    language TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entry_date ON Entry(entry_date);

CREATE TABLE IF NOT EXISTS Tag (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    parent_id TEXT REFERENCES Tag(id) ON DELETE SET NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT 'general'
);

CREATE TABLE IF NOT EXISTS Alias (
    id TEXT PRIMARY KEY,
    tag_id TEXT NOT NULL REFERENCES Tag(id) ON DELETE CASCADE,
    alias_text TEXT NOT NULL UNIQUE COLLATE NOCASE
);

CREATE TABLE IF NOT EXISTS EntryTag (
    entry_id TEXT NOT NULL REFERENCES Entry(id) ON DELETE CASCADE,
    tag_id TEXT NOT NULL REFERENCES Tag(id) ON DELETE CASCADE,
    confidence REAL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (entry_id, tag_id)
);

CREATE TABLE IF NOT EXISTS Conversation (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    system_prompt TEXT,
    provider TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS Message (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES Conversation(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    seq INTEGER NOT NULL,
    UNIQUE (conversation_id, seq)
);

CREATE TABLE IF NOT EXISTS Citation (
    id TEXT PRIMARY KEY,
    message_id TEXT NOT NULL REFERENCES Message(id) ON DELETE CASCADE,
    entry_id TEXT NOT NULL REFERENCES Entry(id) ON DELETE CASCADE,
    citation_number INTEGER NOT NULL,
    snippet TEXT NOT NULL DEFAULT '',
    relevance_score REAL NOT NULL DEFAULT 0,
    UNIQUE (message_id, citation_number)
);

CREATE TABLE IF NOT EXISTS IndexState (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    embedding_model TEXT NOT NULL,
    version TEXT NOT NULL,
    last_build TEXT NOT NULL
);
"""


def as_utc(when: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and filter dates compare."""
    if when.tzinfo is None:
        return when.replace(tzinfo=timezone.utc)
    return when.astimezone(timezone.utc)


def _iso(when: datetime) -> str:
    return as_utc(when).isoformat()


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def content_hash(body: str) -> str:
    return hashlib.sha256(body.strip().encode("utf-8")).hexdigest()


class JournalStore:
    """SQLite-backed store for journal entries, vocabulary and conversations."""

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self._db_path = db_path
        self._lock = threading.RLock()
        self._depth = 0
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        if str(self._db_path) != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are opened explicitly in transaction()
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a multi-row write atomically.

        Nested calls join the outermost transaction. sqlite3 errors roll the
        whole transaction back and surface as Internal; typed engine errors
        roll back and propagate unchanged.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except ChronicleError:
                self._conn.execute("ROLLBACK")
                raise
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                logger.error("Storage transaction failed: %s", e, exc_info=True)
                raise Internal("Storage transaction failed") from e
            except BaseException:
                # Cancellation and unexpected errors must not leave partial rows
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def _query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                logger.error("Storage read failed: %s", e, exc_info=True)
                raise Internal("Storage read failed") from e

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def add_entry(
        self,
        body: str,
        entry_date: datetime,
        *,
        title: Optional[str] = None,
        entry_timezone: str = "UTC",
        source_path: str = "",
        source_type: str = "text",
        embedding: Optional[Sequence[float]] = None,
        sentiment: Optional[float] = None,
        language: Optional[str] = None,
        entry_id: Optional[str] = None,
    ) -> Entry:
        """
        Import one entry. The content hash is the dedup key.

        Raises:
            Conflict: an entry with the same body already exists
        """
        entry_id = entry_id or str(uuid.uuid4())
        text_hash = content_hash(body)

        with self.transaction() as conn:
            existing = conn.execute(
                "SELECT id FROM Entry WHERE text_hash = ?", (text_hash,)
            ).fetchone()
            if existing:
                raise Conflict(
                    "An entry with identical content already exists",
                    detail={"entry_id": existing["id"]},
                )
            conn.execute(
                """
                INSERT INTO Entry
                (id, title, body, entry_date, entry_timezone, source_path,
                 source_type, text_hash, embedding, sentiment, language, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id, title, body, _iso(entry_date), entry_timezone,
                    source_path, source_type, text_hash,
                    to_blob(embedding) if embedding is not None else None,
                    sentiment, language, _iso(self._now()),
                ),
            )

        return self.get_entry(entry_id)

    def _row_to_entry(self, row: sqlite3.Row, tags: List[str], with_embedding: bool) -> Entry:
        return Entry(
            id=row["id"],
            title=row["title"],
            body=row["body"],
            entry_date=_parse(row["entry_date"]),
            entry_timezone=row["entry_timezone"],
            source_path=row["source_path"],
            source_type=row["source_type"],
            text_hash=row["text_hash"],
            embedding=from_blob(row["embedding"]) if with_embedding else None,
            sentiment=row["sentiment"],
            language=row["language"],
            tags=tags,
        )

    def _tags_by_entry(self, entry_ids: Optional[Iterable[str]] = None) -> Dict[str, List[str]]:
        sql = """
            SELECT et.entry_id, t.name FROM EntryTag et
            JOIN Tag t ON t.id = et.tag_id
        """
        params: List[str] = []
        if entry_ids is not None:
            ids = list(entry_ids)
            if not ids:
                return {}
            sql += f" WHERE et.entry_id IN ({','.join('?' * len(ids))})"
            params = ids
        sql += " ORDER BY t.name"

        result: Dict[str, List[str]] = {}
        for row in self._query(sql, params):
            result.setdefault(row["entry_id"], []).append(row["name"])
        return result

    def get_entry(self, entry_id: str, *, with_embedding: bool = False) -> Optional[Entry]:
        rows = self._query("SELECT * FROM Entry WHERE id = ?", (entry_id,))
        if not rows:
            return None
        tags = self._tags_by_entry([entry_id]).get(entry_id, [])
        return self._row_to_entry(rows[0], tags, with_embedding)

    def get_entries(self, entry_ids: Sequence[str]) -> Dict[str, Entry]:
        """Fetch several entries by id. Unknown ids are absent from the result."""
        ids = list(dict.fromkeys(entry_ids))
        if not ids:
            return {}
        rows = self._query(
            f"SELECT * FROM Entry WHERE id IN ({','.join('?' * len(ids))})", ids
        )
        tags = self._tags_by_entry(ids)
        return {
            row["id"]: self._row_to_entry(row, tags.get(row["id"], []), False)
            for row in rows
        }

    def list_entries(
        self,
        filters: Optional[ContextFilters] = None,
        *,
        with_embeddings: bool = False,
    ) -> List[Entry]:
        """All entries passing the date-range (inclusive) and any-of tag filters."""
        sql = "SELECT * FROM Entry"
        params: List[str] = []
        if filters is not None and filters.date_range is not None:
            sql += " WHERE entry_date >= ? AND entry_date <= ?"
            params = [_iso(filters.date_range.start), _iso(filters.date_range.end)]
        sql += " ORDER BY entry_date DESC"

        rows = self._query(sql, params)
        tags = self._tags_by_entry()
        entries = [
            self._row_to_entry(row, tags.get(row["id"], []), with_embeddings)
            for row in rows
        ]

        if filters is not None and filters.tags:
            wanted = {t.strip().lower() for t in filters.tags if t.strip()}
            entries = [e for e in entries if wanted & {t.lower() for t in e.tags}]
        return entries

    def count_entries(self) -> int:
        return self._query("SELECT COUNT(*) AS n FROM Entry")[0]["n"]

    def set_entry_embedding(self, entry_id: str, vector: Sequence[float]) -> None:
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE Entry SET embedding = ? WHERE id = ?", (to_blob(vector), entry_id)
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Entry not found: {entry_id}")

    # -------------------------------------------------------------------------
    # EntryTag
    # -------------------------------------------------------------------------

    def apply_tags(
        self, entry_id: str, tag_ids: Sequence[str], confidence: Optional[float] = None
    ) -> int:
        """Associate tags with an entry. Existing pairs are left untouched.

        Returns:
            Number of newly created associations
        """
        added = 0
        now = _iso(self._now())
        with self.transaction() as conn:
            if conn.execute("SELECT 1 FROM Entry WHERE id = ?", (entry_id,)).fetchone() is None:
                raise NotFound(f"Entry not found: {entry_id}")
            for tag_id in dict.fromkeys(tag_ids):
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO EntryTag (entry_id, tag_id, confidence, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (entry_id, tag_id, confidence, now),
                )
                added += cursor.rowcount
        return added

    def entry_tags(self, entry_id: str) -> List[str]:
        return self._tags_by_entry([entry_id]).get(entry_id, [])

    # -------------------------------------------------------------------------
    # IndexState
    # -------------------------------------------------------------------------

    def get_index_state(self) -> Optional[IndexState]:
        rows = self._query("SELECT * FROM IndexState WHERE id = 1")
        if not rows:
            return None
        row = rows[0]
        return IndexState(
            embedding_model=row["embedding_model"],
            version=row["version"],
            last_build=_parse(row["last_build"]),
        )

    def set_index_state(self, embedding_model: str, version: str,
                        last_build: Optional[datetime] = None) -> IndexState:
        state = IndexState(
            embedding_model=embedding_model,
            version=version,
            last_build=last_build or self._now(),
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO IndexState (id, embedding_model, version, last_build) "
                "VALUES (1, ?, ?, ?)",
                (state.embedding_model, state.version, _iso(state.last_build)),
            )
        return state

    # -------------------------------------------------------------------------
    # Vocabulary
    # -------------------------------------------------------------------------

    def list_tags(self) -> List[Tag]:
        return [Tag(**dict(row)) for row in self._query("SELECT * FROM Tag ORDER BY name")]

    def list_aliases(self) -> List[Alias]:
        return [
            Alias(**dict(row))
            for row in self._query("SELECT * FROM Alias ORDER BY alias_text")
        ]

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        rows = self._query("SELECT * FROM Tag WHERE id = ?", (tag_id,))
        return Tag(**dict(rows[0])) if rows else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        rows = self._query("SELECT * FROM Tag WHERE name = ?", (name.strip(),))
        return Tag(**dict(rows[0])) if rows else None

    def name_collisions(self, names: Iterable[str]) -> List[str]:
        """Names already used anywhere in the vocabulary, as tag or alias."""
        found = []
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            rows = self._query(
                "SELECT 1 FROM Tag WHERE name = ? "
                "UNION SELECT 1 FROM Alias WHERE alias_text = ?",
                (name, name),
            )
            if rows:
                found.append(name)
        return found

    def insert_tag(self, tag: Tag, aliases: Sequence[str] = ()) -> List[Alias]:
        """Insert a tag and its aliases in one transaction."""
        created: List[Alias] = []
        with self.transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO Tag (id, name, parent_id, description, category) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (tag.id, tag.name, tag.parent_id, tag.description, tag.category),
                )
                for text in aliases:
                    alias = Alias(id=str(uuid.uuid4()), tag_id=tag.id, alias_text=text)
                    conn.execute(
                        "INSERT INTO Alias (id, tag_id, alias_text) VALUES (?, ?, ?)",
                        (alias.id, alias.tag_id, alias.alias_text),
                    )
                    created.append(alias)
            except sqlite3.IntegrityError as e:
                raise Conflict(f"Tag or alias already exists: {e}") from e
        return created

    def insert_alias(self, tag_id: str, alias_text: str) -> Alias:
        alias = Alias(id=str(uuid.uuid4()), tag_id=tag_id, alias_text=alias_text)
        with self.transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO Alias (id, tag_id, alias_text) VALUES (?, ?, ?)",
                    (alias.id, alias.tag_id, alias.alias_text),
                )
            except sqlite3.IntegrityError as e:
                raise Conflict(f"Alias already exists: {alias_text}") from e
        return alias

    def update_tag_parent(self, tag_id: str, parent_id: Optional[str]) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE Tag SET parent_id = ? WHERE id = ?", (parent_id, tag_id))

    def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag; aliases and entry associations cascade."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM Tag WHERE id = ?", (tag_id,))
            return cursor.rowcount > 0

    def tag_usage(self) -> List[Tuple[str, int, Optional[datetime]]]:
        """(tag name, tagged entry count, most recent tagged entry date) per tag."""
        rows = self._query(
            """
            SELECT t.name AS name, COUNT(e.id) AS n, MAX(e.entry_date) AS latest
            FROM Tag t
            LEFT JOIN EntryTag et ON et.tag_id = t.id
            LEFT JOIN Entry e ON e.id = et.entry_id
            GROUP BY t.id
            ORDER BY n DESC, t.name
            """
        )
        return [(row["name"], row["n"], _parse(row["latest"])) for row in rows]

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            title=row["title"],
            system_prompt=row["system_prompt"],
            provider=row["provider"],
            created_at=_parse(row["created_at"]),
            updated_at=_parse(row["updated_at"]),
        )

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        rows = self._query("SELECT * FROM Conversation WHERE id = ?", (conversation_id,))
        return self._row_to_conversation(rows[0]) if rows else None

    def insert_conversation(self, conversation: Conversation) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO Conversation (id, title, system_prompt, provider, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    conversation.id, conversation.title, conversation.system_prompt,
                    conversation.provider, _iso(conversation.created_at),
                    _iso(conversation.updated_at),
                ),
            )

    def touch_conversation(self, conversation_id: str, updated_at: datetime) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE Conversation SET updated_at = ? WHERE id = ?",
                (_iso(updated_at), conversation_id),
            )

    def next_message_seq(self, conversation_id: str) -> int:
        rows = self._query(
            "SELECT COALESCE(MAX(seq), 0) AS seq FROM Message WHERE conversation_id = ?",
            (conversation_id,),
        )
        return rows[0]["seq"] + 1

    def insert_message(self, message: Message) -> None:
        """Insert a message with its citations (joins an open transaction)."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO Message (id, conversation_id, role, content, created_at, seq) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    message.id, message.conversation_id, message.role.value,
                    message.content, _iso(message.created_at), message.seq,
                ),
            )
            for citation in message.citations:
                conn.execute(
                    "INSERT INTO Citation (id, message_id, entry_id, citation_number, "
                    "snippet, relevance_score) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        citation.id or str(uuid.uuid4()), message.id, citation.entry_id,
                        citation.citation_number, citation.snippet,
                        citation.relevance_score,
                    ),
                )

    def messages(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages of a conversation oldest first; limit keeps the most recent."""
        sql = "SELECT * FROM Message WHERE conversation_id = ? ORDER BY seq"
        params: List = [conversation_id]
        if limit is not None:
            sql = (
                "SELECT * FROM (SELECT * FROM Message WHERE conversation_id = ? "
                "ORDER BY seq DESC LIMIT ?) ORDER BY seq"
            )
            params.append(limit)
        rows = self._query(sql, params)
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        citation_rows = self._query(
            f"""
            SELECT c.*, e.title AS entry_title, e.entry_date AS entry_date
            FROM Citation c JOIN Entry e ON e.id = c.entry_id
            WHERE c.message_id IN ({','.join('?' * len(ids))})
            ORDER BY c.citation_number
            """,
            ids,
        )
        citations: Dict[str, List[Citation]] = {}
        for row in citation_rows:
            citations.setdefault(row["message_id"], []).append(Citation(
                id=row["id"],
                message_id=row["message_id"],
                entry_id=row["entry_id"],
                citation_number=row["citation_number"],
                snippet=row["snippet"],
                relevance_score=row["relevance_score"],
                entry_title=row["entry_title"],
                entry_date=_parse(row["entry_date"]),
            ))

        return [
            Message(
                id=row["id"],
                conversation_id=row["conversation_id"],
                role=Role(row["role"]),
                content=row["content"],
                created_at=_parse(row["created_at"]),
                seq=row["seq"],
                citations=citations.get(row["id"], []),
            )
            for row in rows
        ]

    def conversation_summaries(self) -> List[ConversationSummary]:
        rows = self._query(
            """
            SELECT c.*,
                   (SELECT COUNT(*) FROM Message m WHERE m.conversation_id = c.id) AS message_count,
                   (SELECT m.content FROM Message m WHERE m.conversation_id = c.id
                    ORDER BY m.seq DESC LIMIT 1) AS last_message
            FROM Conversation c
            ORDER BY c.updated_at DESC, c.created_at DESC
            """
        )
        return [
            ConversationSummary(
                id=row["id"],
                title=row["title"],
                provider=row["provider"],
                message_count=row["message_count"],
                created_at=_parse(row["created_at"]),
                updated_at=_parse(row["updated_at"]),
                last_message=row["last_message"],
            )
            for row in rows
        ]

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation; messages and citations cascade."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM Conversation WHERE id = ?", (conversation_id,))
            return cursor.rowcount > 0
