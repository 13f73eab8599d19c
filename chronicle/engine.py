"""
Journal Engine

The caller-facing facade: question answering with grounded citations,
conversation management, and controlled-vocabulary tagging.

Blocking work (storage, retrieval, model calls) runs in worker threads so
that concurrent top-level calls proceed independently. Provider and model
strings are resolved into a ModelSpec once, here, and never passed further
as raw strings.
"""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from .common.config import ChronicleConfig
from .common.embedding_service import EmbeddingService
from .common.errors import InvalidInput, NotFound
from .common.llm_client import LLMClient, ModelSpec, resolve_model
from .common.schemas import (
    BulkTagResult,
    ContextFilters,
    ControlledVocabulary,
    ConversationSummary,
    DateRange,
    Message,
    RagResponse,
    TagExtractionResult,
    TagStatistic,
    VocabularyTag,
)
from .common.store import JournalStore
from .retriever import (
    ContextComposer,
    ConversationManager,
    Retriever,
    StoreRetriever,
    Synthesizer,
)
from .tagger import BulkProcessor, LLMTagExtractor, TagMatcher, VocabularyStore

logger = logging.getLogger("chronicle.engine")

ClientFactory = Callable[[ModelSpec], LLMClient]


class JournalEngine:
    """Retrieval-augmented question answering and tag extraction over a journal."""

    def __init__(
        self,
        config: ChronicleConfig,
        store: Optional[JournalStore] = None,
        retriever: Optional[Retriever] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Args:
            config: Engine configuration
            store: Journal store (opened from config.storage.db_path if omitted)
            retriever: Candidate source (store-backed retriever if omitted)
            client_factory: Builds an LLM client for a ModelSpec
        """
        self.config = config
        self.store = store or JournalStore(Path(config.storage.db_path))
        self._client_factory = client_factory or (lambda spec: LLMClient(spec, config.llm))
        self._clients: Dict[ModelSpec, LLMClient] = {}
        self._clients_lock = threading.Lock()

        if retriever is None:
            default_spec = resolve_model(None, None, config.llm)
            embedding = EmbeddingService(self._client_for(default_spec), config.llm.embedding_model)
            retriever = StoreRetriever(self.store, embedding)
        self.retriever = retriever

        self.composer = ContextComposer(
            retriever,
            index_state=self.store.get_index_state,
            embedding_model=config.llm.embedding_model,
            embedding_version=config.llm.embedding_version,
            semantic_weight=config.retriever.semantic_weight,
            min_relevance=config.retriever.min_relevance,
            snippet_chars=config.retriever.snippet_chars,
        )
        self.synthesizer = Synthesizer()
        self.conversations = ConversationManager(
            self.store, history_limit=config.retriever.history_messages
        )
        self.vocabulary = VocabularyStore(self.store)
        self.matcher = TagMatcher(self.vocabulary, alias_discount=config.tagger.alias_discount)
        self.bulk = BulkProcessor(workers=config.tagger.bulk_workers)

    def _client_for(self, spec: ModelSpec) -> LLMClient:
        with self._clients_lock:
            client = self._clients.get(spec)
            if client is None:
                client = self._clients[spec] = self._client_factory(spec)
            return client

    def close(self) -> None:
        with self._clients_lock:
            for client in self._clients.values():
                client.close()
            self._clients.clear()
        self.store.close()

    # ==================================================================== #
    # Question answering
    # ==================================================================== #

    async def ask_question(
        self,
        question: str,
        conversation_id: Optional[str] = None,
        max_context_entries: Optional[int] = None,
        context_date_range: Optional[DateRange] = None,
        context_tags: Optional[Sequence[str]] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> RagResponse:
        """
        Answer a question from the journal and record the turn.

        Nothing is persisted unless the answer succeeds: a failed question
        leaves no message and, for a new conversation, no conversation row.

        Raises:
            InvalidInput: empty question, bad filters, unknown provider
            NotFound: conversation_id is unknown or deleted
            UpstreamUnavailable / UpstreamTimeout: the model failed
            Internal: the turn could not be stored
        """
        started = time.perf_counter()
        if not question or not question.strip():
            raise InvalidInput("Question must not be empty")

        spec = resolve_model(provider, model, self.config.llm)
        max_entries = (
            self.config.retriever.max_context_entries
            if max_context_entries is None else max_context_entries
        )
        filters = ContextFilters(
            date_range=context_date_range,
            tags=[t for t in context_tags if t and t.strip()] if context_tags else None,
        )

        conv_id = self.conversations.start_or_continue(conversation_id)
        try:
            history = await asyncio.to_thread(self.conversations.recent_history, conv_id)
            context = await asyncio.to_thread(
                self.composer.compose, question, filters, max_entries
            )
            client = self._client_for(spec)
            result = await asyncio.to_thread(
                self.synthesizer.answer, question, context, history, client
            )
            _, assistant = await asyncio.to_thread(
                self.conversations.append_turn,
                conv_id,
                question.strip(),
                result.answer,
                result.citations,
                provider=spec.provider,
            )
        except BaseException:
            if not conversation_id:
                self.conversations.discard(conv_id)
            raise

        logger.info(
            "Answered question in conversation %s (%d context, %d citations, confidence %.3f)",
            conv_id, len(context), len(assistant.citations), result.confidence,
        )
        return RagResponse(
            answer=result.answer,
            citations=assistant.citations,
            context_used=context,
            confidence=result.confidence,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            model_used=result.model_used,
            conversation_id=conv_id,
            message_id=assistant.id,
            warnings=result.warnings,
        )

    def get_conversations_list(self) -> List[ConversationSummary]:
        return self.conversations.list_conversations()

    def get_conversation_history(self, conversation_id: str) -> List[Message]:
        return self.conversations.history(conversation_id)

    def delete_conversation(self, conversation_id: str) -> bool:
        return self.conversations.delete(conversation_id)

    # ==================================================================== #
    # Tagging
    # ==================================================================== #

    def _tag_spec(self, provider: Optional[str], model: Optional[str]) -> Optional[ModelSpec]:
        """Model-assisted tagging only runs when a model is requested or configured."""
        if provider or model or self.config.tagger.model_assist:
            return resolve_model(provider, model, self.config.llm)
        return None

    def _extract(
        self,
        entry_id: Optional[str],
        text: Optional[str],
        max_tags: int,
        confidence_threshold: float,
        spec: Optional[ModelSpec],
    ) -> TagExtractionResult:
        started = time.perf_counter()
        if entry_id:
            entry = self.store.get_entry(entry_id)
            if entry is None:
                raise NotFound(f"Entry not found: {entry_id}")
            if not text:
                text = entry.body
        if not text or not text.strip():
            raise InvalidInput("Provide an entry_id or non-empty text")

        extractor = LLMTagExtractor(self._client_for(spec)) if spec is not None else None
        suggestions = self.matcher.extract(
            text,
            max_tags=max_tags,
            confidence_threshold=confidence_threshold,
            model_extractor=extractor,
        )
        return TagExtractionResult(
            suggestions=suggestions,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            model_used=extractor.model_used if extractor else "rules",
        )

    async def extract_tags_for_entry(
        self,
        entry_id: Optional[str] = None,
        text: Optional[str] = None,
        max_tags: Optional[int] = None,
        confidence_threshold: Optional[float] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> TagExtractionResult:
        """
        Suggest tags for one entry, or for free text.

        When text is omitted the entry body is used.

        Raises:
            NotFound: entry_id is unknown
            InvalidInput: no text to tag, bad limits, unknown provider
            UpstreamUnavailable / UpstreamTimeout: model-assisted tier failed
        """
        spec = self._tag_spec(provider, model)
        return await asyncio.to_thread(
            self._extract,
            entry_id,
            text,
            self.config.tagger.max_tags if max_tags is None else max_tags,
            self.config.tagger.confidence_threshold
            if confidence_threshold is None else confidence_threshold,
            spec,
        )

    async def bulk_extract_tags(
        self,
        entry_ids: Sequence[str],
        max_tags: Optional[int] = None,
        confidence_threshold: Optional[float] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> List[BulkTagResult]:
        """
        Suggest tags for many entries. Returns exactly one result per id, in
        order; per-entry failures are reported in that entry's result.
        """
        spec = self._tag_spec(provider, model)
        max_tags = self.config.tagger.max_tags if max_tags is None else max_tags
        threshold = (
            self.config.tagger.confidence_threshold
            if confidence_threshold is None else confidence_threshold
        )

        def _one(entry_id: str):
            return self._extract(entry_id, None, max_tags, threshold, spec).suggestions

        return await self.bulk.extract_tags(list(entry_ids), _one)

    def apply_tags(self, entry_id: str, tag_names: Sequence[str],
                   confidence: Optional[float] = None) -> List[str]:
        """Accept tags for an entry. Re-applying a tag is a no-op.

        Returns:
            The entry's tag names after the update

        Raises:
            NotFound: unknown entry or tag
        """
        tag_ids = []
        for name in tag_names:
            tag = self.vocabulary.resolve(name)
            if tag is None:
                raise NotFound(f"Tag not found: {name}")
            tag_ids.append(tag.id)
        self.store.apply_tags(entry_id, tag_ids, confidence)
        return self.store.entry_tags(entry_id)

    def create_custom_tag(
        self,
        name: str,
        description: str = "",
        category: str = "general",
        aliases: Sequence[str] = (),
        parent: Optional[str] = None,
    ) -> VocabularyTag:
        return self.vocabulary.create_custom_tag(name, description, category, aliases, parent)

    def add_alias(self, tag_name: str, alias: str) -> VocabularyTag:
        return self.vocabulary.add_alias(tag_name, alias)

    def set_tag_parent(self, tag_name: str, parent_name: Optional[str]) -> None:
        self.vocabulary.set_parent(tag_name, parent_name)

    def delete_tag(self, tag_name: str) -> None:
        self.vocabulary.delete_tag(tag_name)

    def get_vocabulary(self) -> ControlledVocabulary:
        return self.vocabulary.get_vocabulary()

    def get_tag_statistics(self) -> List[TagStatistic]:
        """Per tag: tagged entry count, share of all entries (percent), latest use."""
        total = self.store.count_entries()
        stats = []
        for name, count, latest in self.store.tag_usage():
            stats.append(TagStatistic(
                tag=name,
                count=count,
                percentage=round(count / total * 100, 1) if total else 0.0,
                recent_usage=latest.date().isoformat() if latest else "never",
            ))
        return stats

    # ==================================================================== #
    # Health
    # ==================================================================== #

    async def health(self, provider: Optional[str] = None, model: Optional[str] = None) -> Dict[str, Any]:
        spec = resolve_model(provider, model, self.config.llm)
        llm = await asyncio.to_thread(self._client_for(spec).health)
        index_state = self.store.get_index_state()
        return {
            "ok": True,
            "entries": self.store.count_entries(),
            "vocabulary_size": self.vocabulary.get_vocabulary().size,
            "semantic_search": self.composer.semantic_usable(),
            "index_state": index_state.model_dump(mode="json") if index_state else None,
            "llm": llm,
        }
