"""Tests for the answer payload codec."""

import json

import pytest

from clarity_oracle.domain.models.evidence import (
    MAX_PAYLOAD_BYTES,
    Citation,
    EvidenceVerdict,
    Verdict,
    decode_payload,
)


def test_payload_is_compact_json():
    """Test the payload carries verdict, summary, sources and confidence only."""
    verdict = EvidenceVerdict(
        verdict=Verdict.REFUTED,
        summary="No launch happened.",
        sources=[Citation(title="Agency log", url="https://example.org/log", quote="Scrubbed")],
        confidence=77,
        analysis="hidden reasoning",
    )

    payload = verdict.to_payload()
    document = json.loads(payload)

    assert document == {
        "verdict": "Refuted",
        "summary": "No launch happened.",
        "sources": [{"title": "Agency log", "url": "https://example.org/log", "quote": "Scrubbed"}],
        "confidence": 77,
    }
    assert b", " not in payload
    assert b"\": " not in payload


def test_missing_confidence_encodes_as_zero():
    """Test confidence defaults to 0 in the payload."""
    verdict = EvidenceVerdict(verdict=Verdict.UNCLEAR, summary="Unknown", sources=[])
    assert decode_payload(verdict.to_payload())["confidence"] == 0


def test_oversized_payload_is_trimmed_to_limit():
    """Test long multibyte content is shortened until it fits."""
    emoji = "\U0001F600"
    citation = Citation(title=emoji * 100, url="https://example.org/" + "a" * 150, quote=emoji * 200)
    verdict = EvidenceVerdict(
        verdict=Verdict.SUPPORTED,
        summary=emoji * 280,
        sources=[citation, citation, citation],
        confidence=50,
    )

    payload = verdict.to_payload()

    assert len(payload) <= MAX_PAYLOAD_BYTES
    document = decode_payload(payload)
    assert document["verdict"] == "Supported"
    assert len(document["sources"]) == 3
    assert len(document["sources"][0]["quote"]) < 200


def test_decode_payload_rejects_garbage():
    """Test decoding errors surface as ValueError."""
    with pytest.raises(ValueError):
        decode_payload(b"not json")
    with pytest.raises(ValueError):
        decode_payload(b"[1, 2]")
    with pytest.raises(ValueError):
        decode_payload(b'{"sources": "none"}')
    with pytest.raises(ValueError):
        decode_payload(b"\xff\xfe")


def test_verdict_labels_are_case_insensitive():
    """Test label matching and the Unclear fallback."""
    assert Verdict.from_label("supported") == Verdict.SUPPORTED
    assert Verdict.from_label(" REFUTED ") == Verdict.REFUTED
    assert Verdict.from_label("maybe") == Verdict.UNCLEAR
    assert Verdict.from_label(None) == Verdict.UNCLEAR
