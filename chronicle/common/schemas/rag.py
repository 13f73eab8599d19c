"""
Query and Tagging Schemas

Transient shapes produced per call: composed context, answers with
citations, tag suggestions and bulk results.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum

from .conversation import Citation


# ============================================================================
# Context composition
# ============================================================================

class DateRange(BaseModel):
    """Inclusive entry-date window. Naive ends are read as UTC."""
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ContextFilters(BaseModel):
    """Restrictions applied to retrieval before ranking"""
    date_range: Optional[DateRange] = None
    tags: Optional[List[str]] = None


class ContextEntry(BaseModel):
    """An entry reference selected for one question, with its snippet"""
    entry_id: str
    title: Optional[str] = None
    entry_date: datetime
    tags: List[str] = Field(default_factory=list)
    relevance_score: float = Field(ge=0.0, le=1.0)
    snippet: str = ""


class RagResponse(BaseModel):
    """Response of ask_question"""
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    context_used: List[ContextEntry] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    processing_time_ms: int
    model_used: str
    conversation_id: str
    message_id: str
    warnings: List[str] = Field(default_factory=list)


# ============================================================================
# Tagging
# ============================================================================

class MatchTier(str, Enum):
    """How a tag suggestion was found, strongest first"""
    CANONICAL = "canonical"
    ALIAS = "alias"
    MODEL = "model"


class TagSuggestion(BaseModel):
    """A proposed tag with confidence and the text that supports it"""
    tag: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    text_spans: List[str] = Field(default_factory=list)
    tier: MatchTier = MatchTier.CANONICAL
    in_vocabulary: bool = True
    category: Optional[str] = None
    position: Optional[int] = Field(default=None, exclude=True)


class TagExtractionResult(BaseModel):
    """Response of extract_tags_for_entry"""
    suggestions: List[TagSuggestion] = Field(default_factory=list)
    processing_time_ms: int = 0
    model_used: str = "rules"


class BulkTagResult(BaseModel):
    """Per-entry outcome of bulk extraction"""
    entry_id: str
    success: bool
    suggestions: Optional[List[TagSuggestion]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
