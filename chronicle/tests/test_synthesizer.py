"""
Tests for the Answer Synthesizer

Prompt numbering, citation grounding, confidence and the empty-context decline.
"""

import pytest

from chronicle.common.errors import UpstreamTimeout, UpstreamUnavailable
from chronicle.common.language import LanguageInfo
from chronicle.common.schemas import ContextEntry
from chronicle.retriever.synthesizer import (
    DECLINE_TEMPLATES,
    LOW_CONFIDENCE_THRESHOLD,
    Synthesizer,
    compute_confidence,
    detect_hedging,
)
from conftest import day, fake_client

ENGLISH = LanguageInfo(code="en", confidence=1.0, script="Latin")


def _context(*scores):
    return [
        ContextEntry(
            entry_id=f"e{i}",
            title=f"Entry {i}",
            entry_date=day(2024, 1, i),
            tags=["work"] if i == 1 else [],
            relevance_score=score,
            snippet=f"snippet {i}",
        )
        for i, score in enumerate(scores, 1)
    ]


class TestComputeConfidence:
    def test_no_citations_is_zero(self):
        assert compute_confidence([], 3, hedged=False) == 0.0

    def test_formula(self):
        # 0.6 * 0.8 + 0.4 * (1 / 2)
        assert compute_confidence([0.8], 2, hedged=False) == 0.68

    def test_hedging_halves(self):
        assert compute_confidence([0.8], 2, hedged=True) == 0.34

    def test_monotonic_in_coverage(self):
        assert compute_confidence([0.5, 0.5], 4, False) > compute_confidence([0.5], 4, False)

    def test_monotonic_in_relevance(self):
        assert compute_confidence([0.9], 4, False) > compute_confidence([0.4], 4, False)

    def test_clamped_to_unit(self):
        assert compute_confidence([1.0, 1.0], 2, False) == 1.0


class TestDetectHedging:
    @pytest.mark.parametrize("text", [
        "I'm not sure, but you may have visited Rome.",
        "Perhaps you were tired.",
        "The entries do not mention it.",
        "Your journal doesn't mention Rome.",
        "The entries don't mention a trip.",
        "It’s possible you moved.",
    ])
    def test_hedged(self, text):
        assert detect_hedging(text) is True

    def test_confident(self):
        assert detect_hedging("You visited Rome in May [1].") is False


class TestBuildPrompt:
    def test_context_is_numbered_in_order(self):
        prompt = Synthesizer().build_prompt("What happened?", _context(0.9, 0.5), [], ENGLISH)

        assert prompt.index("[1] Date: 2024-01-01 | Title: Entry 1 | Tags: work") < prompt.index("[2] Date")
        assert "snippet 2" in prompt
        assert "Respond in English." in prompt

    def test_non_english_question_gets_language_instruction(self):
        korean = LanguageInfo(code="ko", confidence=0.99, script="Hangul")
        prompt = Synthesizer().build_prompt("무슨 일이 있었어?", _context(0.9), [], korean)
        assert "Korean" in prompt
        assert "(ko)" in prompt


class TestAnswer:
    def test_citations_map_to_context_entries(self):
        client = fake_client(["You shipped the release [2] after planning it [1]."])
        context = _context(0.9, 0.6, 0.4)

        result = Synthesizer().answer("What did I ship?", context, [], client, ENGLISH)

        assert result.answer == "You shipped the release [1] after planning it [2]."
        assert [c.citation_number for c in result.citations] == [1, 2]
        assert [c.entry_id for c in result.citations] == ["e2", "e1"]
        assert result.citations[0].relevance_score == 0.6
        assert result.citations[0].entry_title == "Entry 2"
        assert result.confidence == compute_confidence([0.6, 0.9], 3, False)
        assert result.model_used == "llama3.1:8b"

    def test_out_of_range_markers_are_dropped(self):
        client = fake_client(["It rained [1] and snowed [4]."])

        result = Synthesizer().answer("Weather?", _context(0.7), [], client, ENGLISH)

        assert result.answer == "It rained [1] and snowed."
        assert len(result.citations) == 1
        assert any("invalid citation" in w for w in result.warnings)

    def test_uncited_answer_has_zero_confidence(self):
        client = fake_client(["You went hiking."])

        result = Synthesizer().answer("Hobbies?", _context(0.9), [], client, ENGLISH)

        assert result.citations == []
        assert result.confidence == 0.0
        assert result.is_low_confidence

    def test_hedged_answer_is_penalized(self):
        client = fake_client(["Perhaps you were in Paris [1]."])

        result = Synthesizer().answer("Where?", _context(0.8), [], client, ENGLISH)

        assert result.hedged is True
        assert result.confidence == compute_confidence([0.8], 1, True)

    def test_empty_context_declines_without_model_call(self):
        client = fake_client()

        result = Synthesizer().answer("Anything?", [], [], client, ENGLISH)

        assert result.answer == DECLINE_TEMPLATES["en"]
        assert result.citations == []
        assert result.confidence == 0.0
        assert result.confidence < LOW_CONFIDENCE_THRESHOLD
        client.generate.assert_not_called()

    def test_empty_model_output_is_upstream_error(self):
        client = fake_client(["   "])
        with pytest.raises(UpstreamUnavailable):
            Synthesizer().answer("Q?", _context(0.9), [], client, ENGLISH)

    def test_model_timeout_propagates(self):
        client = fake_client()
        client.generate.side_effect = UpstreamTimeout("slow")
        with pytest.raises(UpstreamTimeout):
            Synthesizer().answer("Q?", _context(0.9), [], client, ENGLISH)
