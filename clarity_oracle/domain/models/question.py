"""Domain model for natural-language questions."""

import hashlib
import unicodedata

from pydantic import BaseModel, Field

MAX_QUESTION_LENGTH = 1000  # bytes of canonical UTF-8


def canonicalize(text: str) -> str:
    """NFC-normalize, collapse whitespace and strip."""
    return " ".join(unicodedata.normalize("NFC", text).split())


def derive_question_id(text: str, requester: str, nonce: int, timestamp: int) -> str:
    """Deterministic fixed-width id for a question.

    The requester, nonce and timestamp salt the hash so that repeated
    identical text gets a fresh id.
    """
    digest = hashlib.sha3_256()
    digest.update(canonicalize(text).encode("utf-8"))
    digest.update(b"\x00")
    digest.update(requester.lower().encode("utf-8"))
    digest.update(nonce.to_bytes(32, "big"))
    digest.update(int(timestamp).to_bytes(32, "big"))
    return "0x" + digest.hexdigest()


class Question(BaseModel):
    """A question submitted to the oracle. Never mutated."""

    question_id: str = Field(..., description="Fixed-width hash id")
    text: str = Field(..., description="Canonical question text")
    requester: str = Field(..., description="Identity that submitted the question")
    timestamp: int = Field(..., description="Ledger time of submission")

    class Config:
        """Pydantic model configuration."""
        frozen = True
        json_schema_extra = {
            "example": {
                "question_id": "0x" + "ab" * 32,
                "text": "Will the mission land on the Moon before 2027-01-01?",
                "requester": "0xrequester",
                "timestamp": 1760000000,
            }
        }
