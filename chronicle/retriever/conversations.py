"""
Conversation Manager

Owns the conversation lifecycle:

    NEW --first successful answer--> ACTIVE --each turn--> ACTIVE --delete--> DELETED

A new conversation id is only reserved in memory until its first turn is
appended; the Conversation row is written in the same transaction as that
turn, so a question that fails to synthesize leaves nothing behind.
append_turn is serialized per conversation; different conversations proceed
independently.
"""

import logging
import threading
import uuid
import weakref
from collections import OrderedDict
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Tuple

from ..common.errors import NotFound
from ..common.schemas import (
    Citation,
    Conversation,
    ConversationState,
    ConversationSummary,
    Message,
    Role,
)
from ..common.store import JournalStore

logger = logging.getLogger("chronicle.retriever.conversations")

TITLE_MAX_CHARS = 60
# Deleted ids remembered for a "deleted" NotFound; older ones read as unknown
DELETED_MEMORY = 1024


def make_title(question: str, max_chars: int = TITLE_MAX_CHARS) -> str:
    """Conversation title from the first question, cut at a word boundary."""
    text = " ".join(question.split())
    if len(text) <= max_chars:
        return text or "New conversation"
    cut = text[: max_chars - 3]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,.;:") + "..."


class ConversationManager:
    """Per-conversation aggregate with explicit load/append/persist operations."""

    def __init__(self, store: JournalStore, history_limit: int = 6):
        self._store = store
        self._history_limit = history_limit
        self._guard = threading.Lock()
        # Entries vanish once no turn or delete holds the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._reserved: Set[str] = set()
        self._deleted: "OrderedDict[str, None]" = OrderedDict()

    def _lock_for(self, conversation_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(conversation_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[conversation_id] = lock
            return lock

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start_or_continue(self, conversation_id: Optional[str] = None) -> str:
        """
        Resolve the conversation a question belongs to.

        Without an id a fresh one is reserved (state NEW); nothing is
        persisted until append_turn succeeds.

        Raises:
            NotFound: the id is unknown or was deleted
        """
        if not conversation_id:
            new_id = str(uuid.uuid4())
            with self._guard:
                self._reserved.add(new_id)
            return new_id

        self.state(conversation_id)
        return conversation_id

    def discard(self, conversation_id: str) -> None:
        """Release a reserved id whose first question failed."""
        with self._guard:
            self._reserved.discard(conversation_id)

    def state(self, conversation_id: str) -> ConversationState:
        with self._guard:
            if conversation_id in self._deleted:
                self._raise_deleted(conversation_id)
            reserved = conversation_id in self._reserved
        if self._store.get_conversation(conversation_id) is not None:
            return ConversationState.ACTIVE
        if reserved:
            return ConversationState.NEW
        raise NotFound(f"Conversation not found: {conversation_id}")

    def _remember_deleted(self, conversation_id: str) -> None:
        self._deleted[conversation_id] = None
        self._deleted.move_to_end(conversation_id)
        while len(self._deleted) > DELETED_MEMORY:
            self._deleted.popitem(last=False)

    def _raise_deleted(self, conversation_id: str):
        raise NotFound(
            f"Conversation was deleted: {conversation_id}",
            detail={"state": ConversationState.DELETED.value},
        )

    # ------------------------------------------------------------------ #
    # Turns
    # ------------------------------------------------------------------ #

    def append_turn(
        self,
        conversation_id: str,
        user_message: str,
        assistant_message: str,
        citations: Sequence[Citation] = (),
        *,
        provider: str,
        system_prompt: Optional[str] = None,
    ) -> Tuple[Message, Message]:
        """
        Persist one question/answer pair atomically.

        Both messages and all citations are written in one transaction; the
        Conversation row is created in that same transaction on the first turn.

        Returns:
            (user Message, assistant Message) as stored

        Raises:
            NotFound: the conversation is unknown or was deleted
            Internal: the storage transaction failed (nothing is written)
        """
        with self._lock_for(conversation_id):
            with self._guard:
                if conversation_id in self._deleted:
                    self._raise_deleted(conversation_id)
                reserved = conversation_id in self._reserved

            now = datetime.now(timezone.utc)
            with self._store.transaction():
                if self._store.get_conversation(conversation_id) is None:
                    if not reserved:
                        raise NotFound(f"Conversation not found: {conversation_id}")
                    self._store.insert_conversation(Conversation(
                        id=conversation_id,
                        title=make_title(user_message),
                        system_prompt=system_prompt,
                        provider=provider,
                        created_at=now,
                        updated_at=now,
                    ))
                    logger.info("Created conversation %s", conversation_id)

                seq = self._store.next_message_seq(conversation_id)
                user = Message(
                    id=str(uuid.uuid4()),
                    conversation_id=conversation_id,
                    role=Role.USER,
                    content=user_message,
                    created_at=now,
                    seq=seq,
                )
                assistant_id = str(uuid.uuid4())
                assistant = Message(
                    id=assistant_id,
                    conversation_id=conversation_id,
                    role=Role.ASSISTANT,
                    content=assistant_message,
                    created_at=now,
                    seq=seq + 1,
                    citations=[
                        c.model_copy(update={
                            "id": c.id or str(uuid.uuid4()),
                            "message_id": assistant_id,
                        })
                        for c in citations
                    ],
                )
                self._store.insert_message(user)
                self._store.insert_message(assistant)
                self._store.touch_conversation(conversation_id, now)

            with self._guard:
                self._reserved.discard(conversation_id)

        return user, assistant

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def history(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """Messages in insertion order. A reserved, unanswered id has none."""
        state = self.state(conversation_id)
        if state == ConversationState.NEW:
            return []
        return self._store.messages(conversation_id, limit=limit)

    def recent_history(self, conversation_id: str) -> List[Message]:
        """The bounded history handed to the synthesizer."""
        return self.history(conversation_id, limit=self._history_limit)

    def list_conversations(self) -> List[ConversationSummary]:
        """Summaries sorted by updated_at, most recent first."""
        return self._store.conversation_summaries()

    def delete(self, conversation_id: str) -> bool:
        """
        Delete a conversation with its messages and citations.

        Idempotent: deleting an unknown or already deleted id is a no-op.

        Returns:
            True if a stored conversation was removed
        """
        with self._lock_for(conversation_id):
            removed = self._store.delete_conversation(conversation_id)
            with self._guard:
                if removed or conversation_id in self._reserved:
                    self._remember_deleted(conversation_id)
                self._reserved.discard(conversation_id)
        if removed:
            logger.info("Deleted conversation %s", conversation_id)
        return removed
