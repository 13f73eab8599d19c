"""
Question language detection.

The synthesizer answers in the language a question was asked in, so each
question is classified once: langdetect for text long enough to trust, and
the dominant Unicode script for short or undetectable text.
"""

import unicodedata
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from langdetect import DetectorFactory, LangDetectException, detect_langs

DetectorFactory.seed = 0

MIN_DETECT_CHARS = 10
# langdetect often labels short English questions fr/af/nl
MIN_LATIN_GUESS_WORDS = 6
SCRIPT_SHARE = 0.15

# Unicode character-name prefix -> (script, language implied by the script)
_SCRIPTS: Dict[str, Tuple[str, str]] = {
    "HANGUL": ("Hangul", "ko"),
    "HIRAGANA": ("Kana", "ja"),
    "KATAKANA": ("Kana", "ja"),
    "CJK": ("CJK", "zh"),
    "CYRILLIC": ("Cyrillic", "ru"),
    "GREEK": ("Greek", "el"),
    "ARABIC": ("Arabic", "ar"),
    "HEBREW": ("Hebrew", "he"),
    "THAI": ("Thai", "th"),
    "DEVANAGARI": ("Devanagari", "hi"),
}

LANGUAGE_NAMES = {
    "en": "English",
    "ko": "Korean",
    "ja": "Japanese",
    "zh": "Chinese",
    "zh-cn": "Chinese",
    "zh-tw": "Chinese",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "ru": "Russian",
    "el": "Greek",
    "ar": "Arabic",
    "he": "Hebrew",
    "th": "Thai",
    "hi": "Hindi",
}


@dataclass(frozen=True)
class LanguageInfo:
    """Detected language of one piece of text"""
    code: str
    confidence: float
    script: str

    @property
    def is_english(self) -> bool:
        return self.code == "en"

    @property
    def name(self) -> str:
        return LANGUAGE_NAMES.get(self.code, self.code)


ENGLISH_DEFAULT = LanguageInfo(code="en", confidence=0.5, script="Latin")


def _script_of(ch: str) -> Optional[Tuple[str, str]]:
    name = unicodedata.name(ch, "")
    return _SCRIPTS.get(name.split(" ", 1)[0]) if name else None


def dominant_script(text: str) -> Tuple[str, Optional[str]]:
    """
    Most frequent non-Latin script among the letters of text.

    Any kana makes the text Japanese, since Japanese mixes kana with CJK
    ideographs. A script has to cover SCRIPT_SHARE of the letters to count.

    Returns:
        (script, language) or ("Latin", None)
    """
    counts: Dict[Tuple[str, str], int] = {}
    letters = 0
    for ch in text:
        if not ch.isalpha():
            continue
        letters += 1
        script = _script_of(ch)
        if script is not None:
            counts[script] = counts.get(script, 0) + 1

    if not counts:
        return "Latin", None
    if ("Kana", "ja") in counts:
        return "Kana", "ja"
    best = max(counts, key=counts.get)
    if counts[best] > letters * SCRIPT_SHARE:
        return best
    return "Latin", None


def detect_language(text: str) -> LanguageInfo:
    """
    Detect the language of a question.

    Text shorter than MIN_DETECT_CHARS is classified by script alone, and
    a non-English langdetect guess for short Latin-script text is treated
    as English.
    """
    if not text or not text.strip():
        return LanguageInfo(code="en", confidence=1.0, script="Latin")

    cleaned = text.strip()
    script, script_lang = dominant_script(cleaned)

    if len(cleaned) < MIN_DETECT_CHARS:
        if script_lang:
            return LanguageInfo(code=script_lang, confidence=0.6, script=script)
        return ENGLISH_DEFAULT

    try:
        guesses = detect_langs(cleaned)
    except LangDetectException:
        guesses = []

    if not guesses:
        if script_lang:
            return LanguageInfo(code=script_lang, confidence=0.7, script=script)
        return ENGLISH_DEFAULT

    top = guesses[0]
    if script == "Latin" and top.lang != "en" and len(cleaned.split()) < MIN_LATIN_GUESS_WORDS:
        return ENGLISH_DEFAULT
    return LanguageInfo(code=top.lang, confidence=round(top.prob, 4), script=script)
