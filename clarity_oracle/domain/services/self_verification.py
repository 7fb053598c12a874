"""Self-verification: can a provider recover the question from its own answer?"""

import logging

from ..models.evidence import EvidenceVerdict, VerificationOutcome
from ..ports.evidence_provider import EvidenceProvider
from .prompts import create_verification_prompt

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7


def jaccard_similarity(first: str, second: str) -> float:
    """Token-set similarity of two texts (lowercased, whitespace tokens)."""
    tokens_a = set(first.lower().split())
    tokens_b = set(second.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


class SelfVerificationChecker:
    """Detects confabulated answers by asking for the question back."""

    def __init__(self, threshold: float = SIMILARITY_THRESHOLD):
        self.threshold = threshold

    async def verify(
        self,
        provider: EvidenceProvider,
        question: str,
        answer: EvidenceVerdict,
    ) -> VerificationOutcome:
        """Verified iff similarity strictly exceeds the threshold.

        Any failure while asking the provider counts as unverified.
        """
        name = provider.provider_name
        try:
            raw = await provider.complete(create_verification_prompt(answer))
        except Exception as e:
            logger.warning(f"⚠️ Self-verification error for {name}: {e}")
            return VerificationOutcome(verified=False, error=str(e))

        reconstructed = raw.strip().strip('"').strip()
        if not reconstructed:
            logger.warning(f"⚠️ Self-verification for {name} returned an empty question")
            return VerificationOutcome(verified=False, reconstructed_question="", error="empty reconstruction")

        similarity = jaccard_similarity(question, reconstructed)
        verified = similarity > self.threshold
        if not verified:
            logger.warning(f"⚠️ Self-verification failed for {name}. Similarity: {similarity:.1%}")
            logger.warning(f"   Original: \"{question}\"")
            logger.warning(f"   Reconstructed: \"{reconstructed}\"")

        return VerificationOutcome(
            verified=verified,
            similarity=similarity,
            reconstructed_question=reconstructed,
        )
