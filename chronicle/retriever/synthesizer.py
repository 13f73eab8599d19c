"""
Synthesizer

LLM-based answer synthesis over composed journal context.

The prompt lists the context entries as [1]..[n]; that numbering is the only
mapping from model output back to entries. Citation markers are grounded by
citations.ground_citations, and confidence is computed from retrieval
strength, never from the model's own claims.

Confidence formula (reproducible, see compute_confidence):
    base       = 0.6 * mean(relevance_score of cited entries)
               + 0.4 * (number of cited entries / number of context entries)
    confidence = base * 0.5   if the answer hedges, else base
    clamped to [0, 1], rounded to 3 decimals; 0.0 when nothing is cited.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..common.errors import UpstreamUnavailable
from ..common.language import LanguageInfo, detect_language
from ..common.llm_client import LLMClient
from ..common.schemas import Citation, ContextEntry, Message, render_context_block, render_history
from .citations import ground_citations

logger = logging.getLogger("chronicle.retriever.synthesizer")

# Answers scoring below this are flagged low-confidence to the caller
LOW_CONFIDENCE_THRESHOLD = 0.3

RELEVANCE_WEIGHT = 0.6
COVERAGE_WEIGHT = 0.4
HEDGE_PENALTY = 0.5


@dataclass
class SynthesizedAnswer:
    """Synthesized answer from LLM"""
    answer: str
    citations: List[Citation]
    confidence: float  # 0.0 to 1.0
    model_used: str
    processing_time_ms: int
    hedged: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < LOW_CONFIDENCE_THRESHOLD


SYSTEM_PROMPT = (
    "You are a helpful assistant that answers questions about the user's personal "
    "journal entries. Speak to the user directly and kindly."
)

# Synthesis prompt template
SYNTHESIS_PROMPT = """Use only the journal entries below to answer the question.
If the entries do not contain enough information to answer, say so clearly.

{language_instruction}

When you use information from an entry, cite it by its number in square brackets
like [1] or [2]. Only cite numbers that appear in the list below.

Journal entries:
{context}
{history}
Question: {question}

Answer:"""

HISTORY_BLOCK = """
Earlier in this conversation:
{messages}
"""

# Decline templates per language, used when no entry cleared the relevance floor
DECLINE_TEMPLATES = {
    "en": "I couldn't find any journal entries relevant to that question, "
          "so I can't answer it from your journal.",
    "ko": "질문과 관련된 일기 항목을 찾지 못해 답변할 수 없습니다.",
    "ja": "質問に関連する日記のエントリーが見つからなかったため、回答できません。",
}

_HEDGE_RE = re.compile(
    r"\b(?:i['’]?m not sure|i am not sure|not certain|unclear|it['’]?s possible|it is possible"
    r"|might have|may have|perhaps|possibly|i don['’]?t know|i do not know"
    r"|not enough information|no information|cannot determine|can['’]?t determine"
    r"|couldn['’]?t find|could not find|(?:do|does)(?:n['’]?t| not) mention|no mention"
    r"|it seems|hard to say)\b",
    re.IGNORECASE,
)


def detect_hedging(text: str) -> bool:
    """True when the answer signals uncertainty with a hedging phrase."""
    return bool(_HEDGE_RE.search(text.replace("’", "'")))


def compute_confidence(cited_scores: Sequence[float], context_size: int, hedged: bool) -> float:
    """
    Deterministic answer confidence.

    Monotonic in the mean relevance of cited entries and in the fraction of
    context entries cited; halved when the answer hedges.

    Args:
        cited_scores: relevance_score of each distinct cited entry
        context_size: number of entries the answer was composed from
        hedged: whether the answer contains hedging phrases

    Returns:
        Confidence on [0, 1], rounded to 3 decimals
    """
    if not cited_scores or context_size <= 0:
        return 0.0
    mean_relevance = sum(cited_scores) / len(cited_scores)
    coverage = min(len(cited_scores) / context_size, 1.0)
    score = RELEVANCE_WEIGHT * mean_relevance + COVERAGE_WEIGHT * coverage
    if hedged:
        score *= HEDGE_PENALTY
    return round(min(max(score, 0.0), 1.0), 3)


class Synthesizer:
    """
    Synthesizes grounded answers from context entries using an LLM.

    Declines without calling the model when the context is empty.
    """

    def __init__(self, max_tokens: int = 1024, history_chars: int = 600):
        self._max_tokens = max_tokens
        self._history_chars = history_chars

    def build_prompt(
        self,
        question: str,
        context: Sequence[ContextEntry],
        history: Sequence[Message] = (),
        language: Optional[LanguageInfo] = None,
    ) -> str:
        language = language or detect_language(question)
        if language.is_english:
            language_instruction = "Respond in English."
        else:
            language_instruction = (
                f"IMPORTANT: The user asked in {language.name}. "
                f"Respond in the SAME language ({language.code}). "
                f"The journal entries may be in another language; translate relevant parts."
            )

        rendered_history = render_history(list(history), self._history_chars)
        return SYNTHESIS_PROMPT.format(
            language_instruction=language_instruction,
            context=render_context_block(list(context)),
            history=HISTORY_BLOCK.format(messages=rendered_history) if rendered_history else "",
            question=question.strip(),
        )

    def answer(
        self,
        question: str,
        context: Sequence[ContextEntry],
        history: Sequence[Message],
        client: LLMClient,
        language: Optional[LanguageInfo] = None,
    ) -> SynthesizedAnswer:
        """
        Answer a question from composed context.

        Args:
            question: The user's question
            context: Context entries, in the order they are numbered
            history: Prior messages of the conversation, oldest first
            client: LLM client for the selected provider/model
            language: Detected question language (detected here if omitted)

        Returns:
            SynthesizedAnswer with grounded citations and confidence

        Raises:
            UpstreamUnavailable / UpstreamTimeout: the model could not answer
        """
        started = time.perf_counter()
        language = language or detect_language(question)

        if not context:
            return SynthesizedAnswer(
                answer=DECLINE_TEMPLATES.get(language.code, DECLINE_TEMPLATES["en"]),
                citations=[],
                confidence=0.0,
                model_used=client.model_used,
                processing_time_ms=int((time.perf_counter() - started) * 1000),
                warnings=["No relevant journal entries found"],
            )

        prompt = self.build_prompt(question, context, history, language)
        raw = client.generate(prompt, system=SYSTEM_PROMPT, max_tokens=self._max_tokens)
        if not raw.strip():
            raise UpstreamUnavailable(
                f"Model returned an empty answer ({client.spec.label})"
            )

        grounded = ground_citations(raw, len(context))
        citations = []
        for number, position in enumerate(grounded.cited, 1):
            source = context[position - 1]
            citations.append(Citation(
                entry_id=source.entry_id,
                citation_number=number,
                snippet=source.snippet,
                relevance_score=source.relevance_score,
                entry_title=source.title,
                entry_date=source.entry_date,
            ))

        warnings = []
        if grounded.dropped:
            logger.info("Dropped out-of-range citation markers: %s", grounded.dropped)
            warnings.append(f"Dropped {len(grounded.dropped)} invalid citation marker(s)")

        hedged = detect_hedging(grounded.text)
        confidence = compute_confidence(
            [c.relevance_score for c in citations], len(context), hedged
        )
        if confidence < LOW_CONFIDENCE_THRESHOLD:
            warnings.append("Low confidence answer")

        return SynthesizedAnswer(
            answer=grounded.text,
            citations=citations,
            confidence=confidence,
            model_used=client.model_used,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            hedged=hedged,
            warnings=warnings,
        )
