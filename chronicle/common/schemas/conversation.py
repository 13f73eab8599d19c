"""
Conversation Schemas

Conversations own an append-only list of messages; assistant messages carry
numbered citations back to journal entries.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field
from enum import Enum


class Role(str, Enum):
    """Message author"""
    USER = "user"
    ASSISTANT = "assistant"


class ConversationState(str, Enum):
    """Conversation lifecycle"""
    NEW = "new"
    ACTIVE = "active"
    DELETED = "deleted"


class Citation(BaseModel):
    """
    A numbered reference from an assistant message to a journal entry.

    citation_number is 1-based, unique within a message, and ordered by first
    appearance in the answer text.
    """
    entry_id: str
    citation_number: int = Field(ge=1)
    snippet: str = ""
    relevance_score: float = Field(ge=0.0, le=1.0, default=0.0)
    entry_title: Optional[str] = None
    entry_date: Optional[datetime] = None
    id: Optional[str] = None
    message_id: Optional[str] = None


class Message(BaseModel):
    """One turn half, ordered by seq within its conversation"""
    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    seq: int = 0
    citations: List[Citation] = Field(default_factory=list)


class Conversation(BaseModel):
    """Persisted conversation header"""
    id: str
    title: str
    system_prompt: Optional[str] = None
    provider: str
    created_at: datetime
    updated_at: datetime


class ConversationSummary(BaseModel):
    """List view of a conversation"""
    id: str
    title: str
    provider: str
    message_count: int
    created_at: datetime
    updated_at: datetime
    last_message: Optional[str] = None
