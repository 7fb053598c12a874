"""Tests for decoding provider answers."""

import json

import pytest

from clarity_oracle.domain.models.errors import MalformedResponseError
from clarity_oracle.domain.models.evidence import Verdict
from clarity_oracle.infrastructure.ai.response_parser import decode_evidence, extract_json_text


def _answer(**fields) -> str:
    document = {
        "verdict": "Supported",
        "summary": "The event happened.",
        "sources": [{"title": "Report", "url": "https://example.org/r", "quote": "It happened."}],
        "confidence": 88,
    }
    document.update(fields)
    return json.dumps(document)


def test_decodes_well_formed_answer():
    """Test a valid answer keeps all fields."""
    verdict = decode_evidence(_answer(analysis="facts", evaluation="credible"), "Test")

    assert verdict.verdict == Verdict.SUPPORTED
    assert verdict.summary == "The event happened."
    assert verdict.sources[0].url == "https://example.org/r"
    assert verdict.confidence == 88
    assert verdict.analysis == "facts"
    assert verdict.evaluation == "credible"


def test_extracts_fenced_json():
    """Test markdown code fences are unwrapped."""
    content = "Here you go:\n```json\n" + _answer() + "\n```\nThanks"
    assert extract_json_text(content) == _answer()
    assert decode_evidence(content, "Test").verdict == Verdict.SUPPORTED


@pytest.mark.parametrize("content", ["I think it is true.", "", "[1, 2, 3]", '"Supported"'])
def test_non_json_is_malformed(content: str):
    """Test answers that are not a JSON object raise a typed error."""
    with pytest.raises(MalformedResponseError) as exc_info:
        decode_evidence(content, "Test")
    assert exc_info.value.provider == "Test"


def test_missing_fields_become_unclear():
    """Test an object failing validation is normalized to Unclear."""
    verdict = decode_evidence(json.dumps({"verdict": "Supported"}), "Test")

    assert verdict.verdict == Verdict.UNCLEAR
    assert verdict.sources[0].title == "Insufficient Evidence"


def test_unknown_label_becomes_unclear():
    """Test unrecognized verdict labels fall back to Unclear."""
    assert decode_evidence(_answer(verdict="Probably"), "Test").verdict == Verdict.UNCLEAR
    assert decode_evidence(_answer(verdict="refuted"), "Test").verdict == Verdict.REFUTED


def test_empty_sources_become_insufficient_evidence():
    """Test an answer without sources cannot be Supported."""
    verdict = decode_evidence(_answer(sources=[]), "Test")

    assert verdict.verdict == Verdict.UNCLEAR
    assert len(verdict.sources) == 1
    assert verdict.sources[0].title == "Insufficient Evidence"


def test_sources_are_truncated_and_capped():
    """Test citation limits."""
    sources = [{"title": "T" * 150, "url": "u" * 300, "quote": "q" * 250} for _ in range(5)] + ["not a dict"]
    verdict = decode_evidence(_answer(sources=sources), "Test")

    assert len(verdict.sources) == 3
    assert len(verdict.sources[0].title) == 100
    assert len(verdict.sources[0].url) == 200
    assert len(verdict.sources[0].quote) == 200


def test_untitled_source_gets_placeholder():
    """Test a source without a title is still usable."""
    verdict = decode_evidence(_answer(sources=[{"url": "https://example.org"}]), "Test")
    assert verdict.sources[0].title == "Unknown"


def test_long_summary_is_truncated():
    """Test summaries are cut to 280 characters with an ellipsis."""
    verdict = decode_evidence(_answer(summary="s" * 400), "Test")

    assert len(verdict.summary) == 280
    assert verdict.summary.endswith("...")


@pytest.mark.parametrize(
    "raw,expected",
    [(150, 100.0), (-5, 0.0), ("85%", 85.0), ("high", None), (True, None), (None, None), (72.5, 72.5)],
)
def test_confidence_normalization(raw, expected):
    """Test confidence is clamped and non-numeric values dropped."""
    assert decode_evidence(_answer(confidence=raw), "Test").confidence == expected
