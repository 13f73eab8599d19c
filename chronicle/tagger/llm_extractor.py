"""
LLM-based Tag Extractor

Asks the selected model for tags when lexical matching leaves gaps. Output is
the lowest-confidence tier of the tag matcher: scores are capped at
MODEL_TIER_CAP regardless of what the model claims.
"""

import logging
import math
from dataclasses import dataclass
from typing import List

from ..common.llm_client import LLMClient
from ..common.llm_utils import as_list_of_dicts, parse_llm_json
from ..common.schemas import ControlledVocabulary

logger = logging.getLogger("chronicle.tagger.llm_extractor")

MODEL_TIER_CAP = 0.45

# Journal entries longer than this are clipped before prompting
MAX_PROMPT_CHARS = 4000


@dataclass
class ModelTagSuggestion:
    """A tag proposed by the model, before vocabulary resolution"""
    tag: str
    confidence: float
    reasoning: str = ""


TAG_EXTRACTION_PROMPT = """Analyze the following journal entry and suggest relevant tags.
Prefer tags from the vocabulary. Only propose a new tag when no vocabulary tag
fits an important theme of the entry.

Respond with a valid JSON object:
{{
    "tags": [
        {{"tag": "tag name", "confidence": 0.0-1.0, "reasoning": "short justification"}}
    ]
}}

Vocabulary: {vocabulary}

Journal entry:
{text}

JSON:"""


class LLMTagExtractor:
    """Extracts free-form and vocabulary tags from text using the selected model."""

    def __init__(self, client: LLMClient, max_suggestions: int = 8):
        self._client = client
        self._max_suggestions = max_suggestions

    @property
    def is_available(self) -> bool:
        """Check if LLM client is ready"""
        return self._client.is_available

    @property
    def model_used(self) -> str:
        return self._client.model_used

    def extract(self, text: str, vocabulary: ControlledVocabulary) -> List[ModelTagSuggestion]:
        """
        Propose tags for text.

        Args:
            text: Entry text
            vocabulary: Current controlled vocabulary, listed in the prompt

        Returns:
            Suggestions with confidence already capped to the model tier.
            Malformed model output yields an empty list.

        Raises:
            UpstreamUnavailable / UpstreamTimeout: the model could not answer
        """
        if not text.strip():
            return []

        prompt = TAG_EXTRACTION_PROMPT.format(
            vocabulary=", ".join(vocabulary.tag_names()) or "(empty)",
            text=text[:MAX_PROMPT_CHARS],
        )
        raw = self._client.generate(prompt, max_tokens=300, temperature=0.2, json_mode=True)

        data = parse_llm_json(raw)
        items = as_list_of_dicts(data.get("tags", data.get("items")))
        if not items and raw.strip():
            logger.warning("Model tag output had no usable tags: %.120s", raw)

        suggestions = []
        for item in items[: self._max_suggestions]:
            tag = str(item.get("tag", "")).strip()
            if not tag:
                continue
            try:
                claimed = float(item.get("confidence", 0.5))
            except (TypeError, ValueError):
                claimed = 0.5
            if not math.isfinite(claimed):
                claimed = 0.5
            claimed = min(max(claimed, 0.0), 1.0)
            suggestions.append(ModelTagSuggestion(
                tag=tag,
                confidence=round(claimed * MODEL_TIER_CAP, 3),
                reasoning=str(item.get("reasoning", "")).strip(),
            ))
        return suggestions
