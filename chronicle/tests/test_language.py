"""
Tests for Language Detection Service

Tests language detection, Unicode script fallback, and LanguageInfo properties.
"""

import pytest


class TestLanguageInfo:
    """Tests for LanguageInfo dataclass"""

    def test_english_language_info(self):
        from chronicle.common.language import LanguageInfo

        info = LanguageInfo(code="en", confidence=0.99, script="Latin")

        assert info.is_english is True
        assert info.name == "English"

    def test_korean_language_info(self):
        from chronicle.common.language import LanguageInfo

        info = LanguageInfo(code="ko", confidence=0.95, script="Hangul")

        assert info.is_english is False
        assert info.name == "Korean"

    def test_unknown_code_name_falls_back_to_code(self):
        from chronicle.common.language import LanguageInfo

        assert LanguageInfo(code="sw", confidence=0.9, script="Latin").name == "sw"

    def test_language_info_is_frozen(self):
        from chronicle.common.language import LanguageInfo

        info = LanguageInfo(code="en", confidence=1.0, script="Latin")
        with pytest.raises(AttributeError):
            info.code = "ko"


class TestDetectLanguage:
    """Tests for detect_language()"""

    def test_empty_text_defaults_to_english(self):
        from chronicle.common.language import detect_language

        assert detect_language("").code == "en"
        assert detect_language("   ").code == "en"

    def test_short_latin_text_defaults_to_english(self):
        from chronicle.common.language import detect_language

        assert detect_language("Why?").code == "en"

    def test_english_question(self):
        from chronicle.common.language import detect_language

        info = detect_language("What did I write about my work at the office last spring?")
        assert info.code == "en"
        assert info.script == "Latin"

    def test_short_latin_guess_is_not_trusted(self):
        from chronicle.common.language import detect_language

        assert detect_language("How was my trip").code == "en"

    def test_korean_question(self):
        from chronicle.common.language import detect_language

        info = detect_language("지난 봄에 회사에서 무슨 일이 있었는지 알려줘")
        assert info.code == "ko"
        assert info.script == "Hangul"

    def test_japanese_question(self):
        from chronicle.common.language import detect_language

        info = detect_language("先月の旅行について何を書きましたか")
        assert info.code == "ja"
        assert info.script == "Kana"

    def test_short_korean_uses_script(self):
        from chronicle.common.language import detect_language

        info = detect_language("여행")
        assert info.code == "ko"
