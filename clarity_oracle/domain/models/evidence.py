"""Domain models for provider evidence and consensus results."""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

MAX_SUMMARY_LENGTH = 280
MAX_TITLE_LENGTH = 100
MAX_URL_LENGTH = 200
MAX_QUOTE_LENGTH = 200
MAX_CITATIONS = 3
MAX_PAYLOAD_BYTES = 5000


class Verdict(str, Enum):
    """Categorical answer to a question."""

    SUPPORTED = "Supported"
    REFUTED = "Refuted"
    UNCLEAR = "Unclear"

    @classmethod
    def from_label(cls, label: Any) -> "Verdict":
        """Match a label case-insensitively, falling back to UNCLEAR."""
        if isinstance(label, str):
            normalized = label.strip().lower()
            for verdict in cls:
                if verdict.value.lower() == normalized:
                    return verdict
        return cls.UNCLEAR


class Citation(BaseModel):
    """A source backing a verdict."""

    title: str = Field(..., max_length=MAX_TITLE_LENGTH, description="Source title")
    url: str = Field(default="", max_length=MAX_URL_LENGTH, description="Locator of the source")
    quote: str = Field(default="", max_length=MAX_QUOTE_LENGTH, description="Quoted excerpt")

    class Config:
        """Pydantic model configuration."""
        frozen = True


INSUFFICIENT_EVIDENCE = Citation(
    title="Insufficient Evidence",
    url="",
    quote="AI could not find sufficient sources to support or refute the question",
)


class EvidenceVerdict(BaseModel):
    """One provider's structured answer."""

    verdict: Verdict = Field(..., description="Supported, Refuted or Unclear")
    summary: str = Field(..., max_length=MAX_SUMMARY_LENGTH, description="Human-readable summary")
    sources: List[Citation] = Field(default_factory=list, max_length=MAX_CITATIONS)
    confidence: Optional[float] = Field(None, ge=0, le=100, description="Reported confidence (0-100)")
    analysis: Optional[str] = Field(None, description="Fact breakdown reported by the provider")
    evaluation: Optional[str] = Field(None, description="Source credibility assessment")

    class Config:
        """Pydantic model configuration."""
        frozen = True
        json_schema_extra = {
            "example": {
                "verdict": "Supported",
                "summary": "The launch took place on 12 March as scheduled.",
                "sources": [
                    {
                        "title": "Launch recap",
                        "url": "https://example.org/launch",
                        "quote": "The vehicle lifted off at 09:14 local time.",
                    }
                ],
                "confidence": 92,
            }
        }

    def to_payload(self) -> bytes:
        """Encode the verdict as the bounded answer payload stored on the ledger.

        Quotes, titles and finally the summary are shortened until the encoded
        JSON fits MAX_PAYLOAD_BYTES.
        """
        document: Dict[str, Any] = {
            "verdict": self.verdict.value,
            "summary": self.summary,
            "sources": [source.model_dump() for source in self.sources[:MAX_CITATIONS]],
            "confidence": self.confidence if self.confidence is not None else 0,
        }
        encoded = _encode(document)
        for field in ("quote", "title"):
            while len(encoded) > MAX_PAYLOAD_BYTES and any(s[field] for s in document["sources"]):
                for source in document["sources"]:
                    source[field] = source[field][: len(source[field]) // 2]
                encoded = _encode(document)
        while len(encoded) > MAX_PAYLOAD_BYTES and document["summary"]:
            document["summary"] = document["summary"][: len(document["summary"]) // 2]
            encoded = _encode(document)
        return encoded


def _encode(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def decode_payload(payload: bytes) -> Dict[str, Any]:
    """Decode an answer payload.

    Raises:
        ValueError: If the payload is not a JSON object with a sources list
    """
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Payload is not UTF-8 JSON: {e}")
    if not isinstance(document, dict) or not isinstance(document.get("sources", []), list):
        raise ValueError("Payload must be an object with a sources list")
    return document


class VerificationOutcome(BaseModel):
    """Result of self-verifying one provider answer."""

    verified: bool
    similarity: float = 0.0
    reconstructed_question: Optional[str] = None
    error: Optional[str] = None


class ProviderDetail(BaseModel):
    """Per-provider audit record of a consensus round."""

    provider: str
    response: Optional[EvidenceVerdict] = None
    verification: Optional[VerificationOutcome] = None
    error: Optional[str] = None

    @property
    def verified(self) -> bool:
        return bool(self.verification and self.verification.verified)


class ConsensusResult(BaseModel):
    """Outcome of one consensus round."""

    is_clear: bool
    answer: Optional[EvidenceVerdict] = None
    consensus_count: int = 0
    total_models: int = 0
    details: List[ProviderDetail] = Field(default_factory=list)
