"""
Query Processor

Cleans a journal question and extracts the keywords used for lexical
retrieval and snippet selection. Language is detected once here and carried
to the synthesizer.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..common.language import LanguageInfo, detect_language

_WORD_RE = re.compile(r"\b\w+\b", re.UNICODE)

# Stop words to filter from keywords
STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "to", "of",
    "in", "for", "on", "with", "at", "by", "from", "up", "about", "into",
    "over", "after", "before", "we", "our", "us", "i", "me", "my", "mine",
    "myself", "you", "your", "it", "its", "they", "them", "their", "he",
    "she", "him", "her", "his", "this", "that", "these", "those", "what",
    "which", "who", "whom", "when", "where", "why", "how", "and", "or",
    "but", "if", "because", "as", "until", "while", "although", "though",
    "even", "just", "also", "so", "than", "then", "there", "here", "any",
    "some", "all", "most", "more", "very", "really", "not", "no", "ever",
    "tell", "write", "wrote", "journal", "entry", "entries", "feel", "felt",
})


def normalize_token(token: str) -> str:
    """Lowercase and fold simple English plurals and possessives."""
    token = token.lower()
    if token.endswith("'s"):
        token = token[:-2]
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        token = token[:-1]
    return token


def tokenize(text: str) -> List[str]:
    """Normalized word tokens of text, in order."""
    return [normalize_token(w) for w in _WORD_RE.findall(text)]


@dataclass
class ParsedQuery:
    """Parsed representation of a user question"""
    original: str
    cleaned: str
    keywords: List[str] = field(default_factory=list)
    language: Optional[LanguageInfo] = None


class QueryProcessor:
    """
    Processes user questions for journal search.

    Responsibilities:
    1. Clean and normalize question text
    2. Extract content keywords (stop words removed, plurals folded)
    3. Detect the question language
    """

    MAX_KEYWORDS = 15

    def parse(self, query: str) -> ParsedQuery:
        """
        Parse a user question into structured form.

        Args:
            query: Raw question string

        Returns:
            ParsedQuery with cleaned text, keywords and language
        """
        cleaned = self._clean_query(query)
        return ParsedQuery(
            original=query,
            cleaned=cleaned,
            keywords=self._extract_keywords(cleaned),
            language=detect_language(query),
        )

    def _clean_query(self, query: str) -> str:
        """Clean and normalize query text"""
        cleaned = query.lower().strip()
        cleaned = re.sub(r'\s+', ' ', cleaned)
        # Remove trailing punctuation (but keep question marks)
        cleaned = re.sub(r'[.!,;:]+$', '', cleaned)
        return cleaned

    def _extract_keywords(self, query: str) -> List[str]:
        """Extract important keywords from query"""
        words = _WORD_RE.findall(query.lower())
        keywords = [
            normalize_token(w) for w in words
            if w not in STOP_WORDS and (len(w) > 2 or not w.isascii())
        ]
        return list(dict.fromkeys(keywords))[:self.MAX_KEYWORDS]
