"""Test configuration and common fixtures."""

import asyncio
from typing import Callable, List, Optional, Union

import pytest

from clarity_oracle.domain.models.evidence import Citation, EvidenceVerdict, Verdict
from clarity_oracle.infrastructure.ledger.in_memory_ledger import InMemoryLedger

ARBITRATOR = "0x00000000000000000000000000000000000a4b17"
RELAYER = "0x000000000000000000000000000000000000be1a"
START_TIME = 1_700_000_000


class FakeEvidenceProvider:
    """Evidence provider double with scripted answers.

    ``answers`` are consumed in order (the last one repeats). An exception
    in the list is raised instead of returned. The reconstruction echoes the
    question unless ``reconstructed`` is given.
    """

    def __init__(
        self,
        name: str,
        answers: List[Union[EvidenceVerdict, Exception]],
        reconstructed: Optional[Union[str, Exception]] = None,
    ):
        self._name = name
        self._answers = list(answers)
        self._reconstructed = reconstructed
        self._last_question = ""
        self.fetch_calls = 0
        self.complete_calls = 0
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.initialized = False

    async def fetch_verdict(self, question: str) -> EvidenceVerdict:
        self._last_question = question
        answer = self._answers[min(self.fetch_calls, len(self._answers) - 1)]
        self.fetch_calls += 1
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def complete(self, prompt: str) -> str:
        self.complete_calls += 1
        if isinstance(self._reconstructed, Exception):
            raise self._reconstructed
        if self._reconstructed is not None:
            return self._reconstructed
        return self._last_question

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def is_available(self) -> bool:
        return self.initialized


def make_verdict(verdict: Verdict = Verdict.SUPPORTED, confidence: Optional[float] = 90, summary: str = "Evidence summary") -> EvidenceVerdict:
    return EvidenceVerdict(
        verdict=verdict,
        summary=summary,
        sources=[Citation(title="Source", url="https://example.org/source", quote="Quoted text")],
        confidence=confidence,
    )


@pytest.fixture
def verdict_factory() -> Callable[..., EvidenceVerdict]:
    """Build evidence verdicts."""
    return make_verdict


@pytest.fixture
def provider_factory() -> Callable[..., FakeEvidenceProvider]:
    """Build scripted evidence providers."""
    return FakeEvidenceProvider


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Provide an in-memory ledger with a fixed clock and a funded relayer."""
    ledger = InMemoryLedger(arbitrator=ARBITRATOR, clock=lambda: START_TIME)
    ledger.fund(RELAYER, 10**18)
    return ledger


@pytest.fixture
def arbitrator() -> str:
    return ARBITRATOR


@pytest.fixture
def relayer() -> str:
    return RELAYER


@pytest.fixture
def no_sleep() -> Callable:
    """Awaitable sleep that records delays without waiting."""
    delays: List[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)
        await asyncio.sleep(0)

    sleep.delays = delays
    return sleep
