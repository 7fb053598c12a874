"""Validated decoding of provider answers into evidence verdicts."""

import json
import logging
import re
from typing import Any, List, Optional

from pydantic import BaseModel, Field, StrictStr, ValidationError

from ...domain.models.errors import MalformedResponseError
from ...domain.models.evidence import (
    INSUFFICIENT_EVIDENCE,
    MAX_CITATIONS,
    MAX_QUOTE_LENGTH,
    MAX_SUMMARY_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_URL_LENGTH,
    Citation,
    EvidenceVerdict,
    Verdict,
)

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class RawEvidence(BaseModel):
    """Shape a provider answer must have before normalization."""

    verdict: StrictStr = Field(..., min_length=1)
    summary: StrictStr = Field(..., min_length=1)
    sources: List[Any]
    confidence: Any = None
    analysis: Optional[StrictStr] = None
    evaluation: Optional[StrictStr] = None


def extract_json_text(content: str) -> str:
    """Unwrap a fenced code block if the answer has one."""
    match = _FENCED_BLOCK.search(content)
    return match.group(1) if match else content.strip()


def insufficient_evidence_verdict(summary: str = "Provider response did not contain a usable verdict.") -> EvidenceVerdict:
    return EvidenceVerdict(verdict=Verdict.UNCLEAR, summary=summary, sources=[INSUFFICIENT_EVIDENCE])


def decode_evidence(content: str, provider: str) -> EvidenceVerdict:
    """Decode a provider answer.

    Text that is not a JSON object raises MalformedResponseError. A JSON
    object with missing or mistyped fields is normalized to an Unclear
    verdict backed by an "Insufficient Evidence" citation.

    Raises:
        MalformedResponseError: If no JSON object can be read from the answer
    """
    try:
        document = json.loads(extract_json_text(content))
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}", provider=provider)
    if not isinstance(document, dict):
        raise MalformedResponseError("Response JSON is not an object", provider=provider)

    try:
        raw = RawEvidence.model_validate(document)
    except ValidationError as e:
        logger.warning(f"⚠️ {provider} response missing required fields, normalizing to Unclear: {e.error_count()} errors")
        return insufficient_evidence_verdict()

    verdict = Verdict.from_label(raw.verdict)
    if verdict == Verdict.UNCLEAR and raw.verdict.strip().lower() != "unclear":
        logger.warning(f"⚠️ {provider} returned invalid verdict \"{raw.verdict}\", defaulting to Unclear")

    sources = _normalize_sources(raw.sources)
    if not sources:
        logger.warning(f"⚠️ {provider} provided no sources, defaulting to Unclear")
        sources = [INSUFFICIENT_EVIDENCE]
        verdict = Verdict.UNCLEAR

    summary = raw.summary.strip()
    if len(summary) > MAX_SUMMARY_LENGTH:
        summary = summary[: MAX_SUMMARY_LENGTH - 3] + "..."

    return EvidenceVerdict(
        verdict=verdict,
        summary=summary,
        sources=sources,
        confidence=_normalize_confidence(raw.confidence),
        analysis=raw.analysis,
        evaluation=raw.evaluation,
    )


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _normalize_sources(sources: List[Any]) -> List[Citation]:
    citations = []
    for source in sources:
        if not isinstance(source, dict):
            continue
        citations.append(
            Citation(
                title=(_text(source.get("title")) or "Unknown")[:MAX_TITLE_LENGTH],
                url=_text(source.get("url"))[:MAX_URL_LENGTH],
                quote=_text(source.get("quote"))[:MAX_QUOTE_LENGTH],
            )
        )
    return citations[:MAX_CITATIONS]


def _normalize_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or value != value:
        return None
    return float(min(100.0, max(0.0, value)))
