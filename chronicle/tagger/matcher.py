"""
Tag Matcher

Matches free text against the controlled vocabulary and returns ranked,
confidence-scored tag suggestions with evidence spans.

Tiers, strongest first:
    canonical name, whole word       0.90
    canonical name, word prefix      0.70
    alias                            canonical score x alias_discount (0.8),
                                     never below ALIAS_TIER_FLOOR (0.5)
    model-assisted                   at most 0.45 (see llm_extractor)

Substring matches must start at a word boundary and need a term of at least
four characters, so "art" never matches inside "start".

The evidence span is the matched word plus the following word when only
whitespace separates them and that word is not a stop word, e.g. the alias
"job" in "at the job site" gives the span "job site".
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..common.errors import InvalidInput
from ..common.schemas import MatchTier, TagSuggestion
from ..retriever.query_processor import STOP_WORDS
from .llm_extractor import LLMTagExtractor
from .vocabulary import VocabularySnapshot, VocabularyStore, normalize_name

logger = logging.getLogger("chronicle.tagger.matcher")

CANONICAL_WHOLE_WORD = 0.9
CANONICAL_SUBSTRING = 0.7
ALIAS_TIER_FLOOR = 0.5
MIN_SUBSTRING_TERM = 4

_WORD_AT_RE = re.compile(r"\w+", re.UNICODE)
_NEXT_WORD_RE = re.compile(r"([ \t]+)(\w+)", re.UNICODE)


@dataclass
class _Candidate:
    tag: str
    term: str
    is_alias: bool
    whole_word: bool
    start: int
    end: int
    span: str
    confidence: float


def evidence_span(text: str, start: int, end: int) -> str:
    """Matched word(s) plus one following content word, see module docstring."""
    word_end = end
    tail = _WORD_AT_RE.match(text, end)
    if tail:
        word_end = tail.end()
    follow = _NEXT_WORD_RE.match(text, word_end)
    if follow and follow.group(2).lower() not in STOP_WORDS:
        word_end = follow.end()
    return text[start:word_end]


class TagMatcher:
    """Tiered tag matching against the vocabulary store."""

    def __init__(self, vocabulary: VocabularyStore, alias_discount: float = 0.8):
        if not 0.0 < alias_discount <= 1.0:
            raise ValueError("alias_discount must be within (0, 1]")
        self._vocabulary = vocabulary
        self._alias_discount = alias_discount

    def extract(
        self,
        text: str,
        max_tags: int = 5,
        confidence_threshold: float = 0.3,
        model_extractor: Optional[LLMTagExtractor] = None,
    ) -> List[TagSuggestion]:
        """
        Suggest tags for text.

        Args:
            text: Entry text
            max_tags: Maximum suggestions returned; 0 returns []
            confidence_threshold: Minimum confidence kept, within [0, 1]
            model_extractor: Enables the model-assisted tier when given

        Returns:
            Suggestions sorted by confidence, ties by earliest evidence position

        Raises:
            InvalidInput: negative max_tags or threshold outside [0, 1]
            UpstreamUnavailable / UpstreamTimeout: model-assisted tier failed
        """
        if max_tags < 0:
            raise InvalidInput("max_tags must be >= 0", detail={"max_tags": max_tags})
        if not 0.0 <= confidence_threshold <= 1.0:
            raise InvalidInput(
                "confidence_threshold must be within [0, 1]",
                detail={"confidence_threshold": confidence_threshold},
            )
        if max_tags == 0 or not text or not text.strip():
            return []

        snapshot = self._vocabulary.snapshot()
        suggestions = self._match_lexical(text, snapshot)

        if model_extractor is not None:
            suggestions.extend(self._match_model(text, snapshot, suggestions, model_extractor))

        kept = [s for s in suggestions if s.confidence >= confidence_threshold]
        kept.sort(key=lambda s: (-s.confidence, s.position if s.position is not None else len(text)))
        return kept[:max_tags]

    # ------------------------------------------------------------------ #
    # Lexical tiers
    # ------------------------------------------------------------------ #

    def _score(self, is_alias: bool, whole_word: bool) -> float:
        base = CANONICAL_WHOLE_WORD if whole_word else CANONICAL_SUBSTRING
        if not is_alias:
            return base
        return round(max(base * self._alias_discount, ALIAS_TIER_FLOOR), 3)

    def _find(self, text: str, lowered: str, term: str, tag: str, is_alias: bool) -> Optional[_Candidate]:
        escaped = re.escape(term)
        whole = re.search(r"(?<!\w)" + escaped + r"(?!\w)", lowered)
        if whole:
            start, end, whole_word = whole.start(), whole.end(), True
        elif len(term) >= MIN_SUBSTRING_TERM:
            prefix = re.search(r"(?<!\w)" + escaped, lowered)
            if not prefix:
                return None
            start, end, whole_word = prefix.start(), prefix.end(), False
        else:
            return None

        return _Candidate(
            tag=tag,
            term=term,
            is_alias=is_alias,
            whole_word=whole_word,
            start=start,
            end=end,
            span=evidence_span(text, start, end),
            confidence=self._score(is_alias, whole_word),
        )

    def _match_lexical(self, text: str, snapshot: VocabularySnapshot) -> List[TagSuggestion]:
        lowered = text.lower()
        by_tag: Dict[str, List[_Candidate]] = {}
        for term, tag, is_alias in snapshot.terms:
            candidate = self._find(text, lowered, term, tag, is_alias)
            if candidate:
                by_tag.setdefault(tag, []).append(candidate)

        suggestions = []
        for tag, candidates in by_tag.items():
            canonical = [c for c in candidates if not c.is_alias]
            # An alias match on the same evidence as its canonical tag is redundant
            candidates = [
                c for c in candidates
                if not c.is_alias or not any(
                    c.start < k.start + len(k.span) and k.start < c.start + len(c.span)
                    for k in canonical
                )
            ]
            best = min(candidates, key=lambda c: (-c.confidence, c.start))
            spans = list(dict.fromkeys(c.span for c in sorted(candidates, key=lambda c: c.start)))

            if best.is_alias:
                reasoning = f"Matched alias '{best.term}' for '{tag}'"
            elif best.whole_word:
                reasoning = f"Found exact match for '{tag}'"
            else:
                reasoning = f"Found partial match for '{tag}'"

            vocab_tag = snapshot.tags_by_name.get(tag.lower())
            suggestions.append(TagSuggestion(
                tag=tag,
                confidence=best.confidence,
                reasoning=reasoning,
                text_spans=[best.span] + [s for s in spans if s != best.span],
                tier=MatchTier.ALIAS if best.is_alias else MatchTier.CANONICAL,
                in_vocabulary=True,
                category=vocab_tag.category if vocab_tag else None,
                position=best.start,
            ))
        return suggestions

    # ------------------------------------------------------------------ #
    # Model-assisted tier
    # ------------------------------------------------------------------ #

    def _match_model(
        self,
        text: str,
        snapshot: VocabularySnapshot,
        matched: List[TagSuggestion],
        extractor: LLMTagExtractor,
    ) -> List[TagSuggestion]:
        seen = {s.tag.lower() for s in matched}
        results = []
        for offset, proposal in enumerate(extractor.extract(text, snapshot.vocabulary)):
            resolved = snapshot.resolve(proposal.tag)
            name = resolved.name if resolved else normalize_name(proposal.tag)
            if not name or name in seen:
                continue
            seen.add(name)
            results.append(TagSuggestion(
                tag=name,
                confidence=proposal.confidence,
                reasoning=proposal.reasoning or f"Suggested by {extractor.model_used}",
                text_spans=[],
                tier=MatchTier.MODEL,
                in_vocabulary=resolved is not None,
                category=resolved.category if resolved else None,
                # Model suggestions carry no span; they rank after any lexical tie
                position=len(text) + offset,
            ))
        return results
