"""
Chronicle Common Module

Shared infrastructure for the Retriever and Tagger.
"""

from .config import ChronicleConfig, load_config
from .embedding_service import EmbeddingService
from .errors import (
    ChronicleError,
    Conflict,
    Internal,
    InvalidInput,
    NotFound,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from .llm_client import LLMClient, resolve_model
from .store import JournalStore

__all__ = [
    "ChronicleConfig",
    "load_config",
    "EmbeddingService",
    "ChronicleError",
    "Conflict",
    "Internal",
    "InvalidInput",
    "NotFound",
    "UpstreamTimeout",
    "UpstreamUnavailable",
    "LLMClient",
    "resolve_model",
    "JournalStore",
]
