"""
Journal Record Schemas

Persisted journal data: entries, the tag vocabulary, and the index state that
versions the embedding index. Entries are owned by the storage layer and are
immutable once imported; every other component holds references to them.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field


# ============================================================================
# Entries
# ============================================================================

class Entry(BaseModel):
    """One journal record (text + date + provenance)"""
    model_config = ConfigDict(frozen=True)

    id: str
    title: Optional[str] = None
    body: str
    entry_date: datetime
    entry_timezone: str = "UTC"
    source_path: str = ""
    source_type: str = "text"
    text_hash: str = ""
    embedding: Optional[List[float]] = Field(default=None, exclude=True, repr=False)
    sentiment: Optional[float] = None
    language: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class IndexState(BaseModel):
    """Versions the embedding index backing semantic retrieval"""
    embedding_model: str
    version: str
    last_build: datetime


# ============================================================================
# Vocabulary
# ============================================================================

class Tag(BaseModel):
    """A canonical tag. Tags form a tree through parent_id."""
    id: str
    name: str
    parent_id: Optional[str] = None
    description: str = ""
    category: str = "general"


class Alias(BaseModel):
    """Alternative text for a tag, unique across the whole vocabulary"""
    id: str
    tag_id: str
    alias_text: str


class VocabularyTag(BaseModel):
    """Read-side view of a tag with its aliases and category"""
    id: str
    name: str
    description: str = ""
    aliases: List[str] = Field(default_factory=list)
    category: str = "general"
    parent: Optional[str] = None
    examples: List[str] = Field(default_factory=list)


class ControlledVocabulary(BaseModel):
    """All tags plus their aliases; the read path for the tag matcher"""
    tags: List[VocabularyTag] = Field(default_factory=list)
    aliases: Dict[str, str] = Field(default_factory=dict)  # alias -> canonical tag name

    @computed_field
    @property
    def size(self) -> int:
        return len(self.tags)

    def tag_names(self) -> List[str]:
        return [t.name for t in self.tags]


class TagStatistic(BaseModel):
    """Usage of a tag across the journal"""
    tag: str
    count: int
    percentage: float
    recent_usage: str
