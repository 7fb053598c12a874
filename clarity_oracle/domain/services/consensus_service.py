"""Multi-provider consensus over self-verified evidence."""

import asyncio
import logging
import math
from collections import Counter
from typing import List, Optional, Sequence

from cachetools import TTLCache

from ..models.errors import ProviderTimeoutError, is_retryable_provider_error
from ..models.evidence import ConsensusResult, ProviderDetail
from ..models.question import canonicalize
from ..ports.evidence_provider import EvidenceProvider
from .retry import RetryPolicy, retry_async
from .self_verification import SelfVerificationChecker

logger = logging.getLogger(__name__)


class ConsensusEngine:
    """Queries every provider in parallel and takes a majority of verified answers.

    A provider that fails (timeout, throttling, malformed output) or fails
    self-verification is left out of the vote. Consensus needs a single
    label holding at least ceil(verified / 2) votes; anything else is an
    unclear round, never a guess.
    """

    def __init__(
        self,
        providers: Sequence[EvidenceProvider],
        verifier: Optional[SelfVerificationChecker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        call_timeout: float = 30.0,
        cache_ttl: int = 600,
        cache_maxsize: int = 256,
    ):
        """Initialize the engine.

        Args:
            providers: Evidence providers in priority order (earlier wins ties)
            verifier: Self-verification checker
            retry_policy: Policy for transient provider failures
            call_timeout: Hard bound on a single provider call in seconds
            cache_ttl: Seconds a clear result is reused for the same question
            cache_maxsize: Maximum cached results
        """
        self._providers = list(providers)
        self._verifier = verifier or SelfVerificationChecker()
        self._retry_policy = retry_policy or RetryPolicy(max_retries=1, base_delay=1.0)
        self._call_timeout = call_timeout
        self._cache: TTLCache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl)

    @property
    def provider_names(self) -> List[str]:
        return [provider.provider_name for provider in self._providers]

    def invalidate(self, question: str) -> None:
        """Drop a cached result."""
        self._cache.pop(canonicalize(question), None)

    async def get_consensus(self, question: str) -> ConsensusResult:
        """Resolve a question off-ledger."""
        cache_key = canonicalize(question)
        if cache_key in self._cache:
            logger.info("♻️ Reusing cached consensus result")
            return self._cache[cache_key]

        logger.info("🤖 Multi-provider consensus")
        logger.info(f"Question: {question}")
        logger.info(f"📡 Querying {len(self._providers)} providers in parallel...")

        details = list(await asyncio.gather(*(self._query(provider, question) for provider in self._providers)))
        result = self._tally(details)

        if result.is_clear:
            self._cache[cache_key] = result
        return result

    async def _query(self, provider: EvidenceProvider, question: str) -> ProviderDetail:
        name = provider.provider_name

        async def attempt():
            try:
                return await asyncio.wait_for(provider.fetch_verdict(question), timeout=self._call_timeout)
            except asyncio.TimeoutError:
                raise ProviderTimeoutError(f"No answer within {self._call_timeout}s", provider=name)

        try:
            response = await retry_async(
                attempt,
                policy=self._retry_policy,
                is_retryable=is_retryable_provider_error,
                label=f"{name} query",
            )
        except Exception as e:
            logger.warning(f"⚠️ {name} query failed: {e}")
            return ProviderDetail(provider=name, error=str(e))

        verification = await self._verifier.verify(provider, question, response)
        mark = "✅" if verification.verified else "❌"
        confidence = f"{response.confidence:g}%" if response.confidence is not None else "N/A"
        logger.info(f"   {mark} {name}: {response.verdict.value} (confidence: {confidence})")
        return ProviderDetail(provider=name, response=response, verification=verification)

    def _tally(self, details: List[ProviderDetail]) -> ConsensusResult:
        verified = [(index, detail) for index, detail in enumerate(details) if detail.verified]
        if not verified:
            logger.error("❌ No verified responses, requires manual resolution")
            return ConsensusResult(
                is_clear=False,
                total_models=sum(1 for detail in details if detail.response is not None),
                details=details,
            )

        counts = Counter(detail.response.verdict for _, detail in verified)
        logger.info(f"   Verdict distribution: { {v.value: c for v, c in counts.items()} }")

        threshold = math.ceil(len(verified) / 2)
        top_count = max(counts.values())
        leaders = [verdict for verdict, count in counts.items() if count == top_count]
        if len(leaders) != 1 or top_count < threshold:
            logger.error("❌ NO CONSENSUS: providers disagree, requires manual resolution")
            return ConsensusResult(is_clear=False, total_models=len(verified), details=details)

        winning_label = leaders[0]
        # Highest confidence first, then provider priority order.
        _, winner = min(
            ((index, detail) for index, detail in verified if detail.response.verdict == winning_label),
            key=lambda item: (-(item[1].response.confidence or 0), item[0]),
        )
        logger.info(f"✅ CONSENSUS REACHED: {winning_label.value} ({top_count}/{len(verified)} providers)")
        return ConsensusResult(
            is_clear=True,
            answer=winner.response,
            consensus_count=top_count,
            total_models=len(verified),
            details=details,
        )
