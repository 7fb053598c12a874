"""Tests for the orchestrator."""

import asyncio
from typing import List, Optional

import pytest

from clarity_oracle.domain.models.assertion import PROPOSER_BOND, AssertionStatus
from clarity_oracle.domain.models.errors import LedgerUnavailableError, SubmissionTimeoutError
from clarity_oracle.domain.models.evidence import Verdict, decode_payload
from clarity_oracle.domain.ports.ledger import ASSERTION_PROPOSED, LedgerEvent
from clarity_oracle.domain.services.consensus_service import ConsensusEngine
from clarity_oracle.domain.services.orchestrator import Orchestrator, OrchestratorConfig, QuestionState
from clarity_oracle.domain.services.retry import RetryPolicy
from clarity_oracle.infrastructure.ledger.in_memory_ledger import InMemoryLedger

QUESTION = "Did the satellite reach orbit on its first attempt"
ASKER = "0x00000000000000000000000000000000000a5e12"


class FlakyLedger(InMemoryLedger):
    """In-memory ledger whose propose submissions can fail on demand.

    ``failures`` holds exceptions raised by successive propose calls;
    ``land_before_failing`` applies the transaction before raising.
    """

    def __init__(self, *args, failures: Optional[List[Exception]] = None, land_before_failing: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = list(failures or [])
        self.land_before_failing = land_before_failing
        self.propose_attempts = 0
        self.gas_limits: List[Optional[int]] = []

    async def submit_transaction(self, sender, contract_address, function, args, value=0, gas_limit=None):
        if function != "propose":
            return await super().submit_transaction(sender, contract_address, function, args, value, gas_limit)
        self.propose_attempts += 1
        self.gas_limits.append(gas_limit)
        if self.failures:
            failure = self.failures.pop(0)
            if self.land_before_failing:
                await super().submit_transaction(sender, contract_address, function, args, value, gas_limit)
            raise failure
        return await super().submit_transaction(sender, contract_address, function, args, value, gas_limit)


def _flaky_ledger(arbitrator: str, relayer: str, **kwargs) -> FlakyLedger:
    ledger = FlakyLedger(arbitrator=arbitrator, clock=lambda: 1_700_000_000, **kwargs)
    ledger.fund(relayer, 10**18)
    return ledger


def _orchestrator(ledger, providers, relayer, sleep=None, **config) -> Orchestrator:
    config.setdefault("submission_base_delay", 1.0)
    engine = ConsensusEngine(providers, retry_policy=RetryPolicy(max_retries=0))
    return Orchestrator(
        ledger=ledger,
        consensus_engine=engine,
        identity=relayer,
        config=OrchestratorConfig(contract_address=ledger.contract_address, **config),
        sleep=sleep,
    )


async def _ask(ledger: InMemoryLedger, text: str = QUESTION):
    receipt = await ledger.submit_transaction(ASKER, ledger.contract_address, "requestQuestion", {"text": text})
    return receipt.return_value, receipt.events[0]


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def _proposals(ledger: InMemoryLedger) -> List[LedgerEvent]:
    return [event for event in ledger.events if event.name == ASSERTION_PROPOSED]


@pytest.fixture
def agreeing_providers(provider_factory, verdict_factory):
    return [
        provider_factory("A", [verdict_factory(Verdict.SUPPORTED, 90)]),
        provider_factory("B", [verdict_factory(Verdict.SUPPORTED, 80)]),
    ]


@pytest.mark.asyncio
async def test_process_question_proposes_consensus(ledger, relayer, agreeing_providers, no_sleep):
    """Test the happy path from question to proposal."""
    question_id, _ = await _ask(ledger)
    balance_before = ledger.balance_of(relayer)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.DONE
    assertion = await ledger.call(ledger.contract_address, "getAssertion", {"question_id": question_id})
    assert assertion.status == AssertionStatus.PROPOSED
    assert assertion.proposer == relayer
    payload = decode_payload(assertion.answer_payload)
    assert payload["verdict"] == "Supported"
    assert payload["confidence"] == 90
    assert ledger.balance_of(relayer) == balance_before - PROPOSER_BOND
    assert orchestrator.proposals_submitted == 1


@pytest.mark.asyncio
async def test_replayed_event_proposes_once(ledger, relayer, agreeing_providers, no_sleep):
    """Test delivering the same event repeatedly yields one proposal."""
    _, event = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep, check_recent_questions=False)
    await orchestrator.start()
    try:
        first = await orchestrator.dispatch(event)
        second = await orchestrator.dispatch(event)
        await orchestrator.drain()
        third = await orchestrator.dispatch(event)
    finally:
        await orchestrator.stop()

    assert first is not None
    assert second is None
    assert third is None
    assert len(_proposals(ledger)) == 1
    assert agreeing_providers[0].fetch_calls == 1


@pytest.mark.asyncio
async def test_subscription_and_poller_deliver_once(ledger, relayer, agreeing_providers):
    """Test both producers seeing the same question still propose once."""
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, poll_interval=0.01)
    await orchestrator.start()
    try:
        await asyncio.sleep(0.01)
        question_id, _ = await _ask(ledger)
        await _wait_until(lambda: orchestrator.state_of(question_id) == QuestionState.DONE)
        await asyncio.sleep(0.05)
    finally:
        await orchestrator.stop()

    assert len(_proposals(ledger)) == 1
    assert orchestrator.proposals_submitted == 1
    assert not orchestrator.is_running


@pytest.mark.asyncio
async def test_no_consensus_keeps_question_claimed(ledger, relayer, provider_factory, verdict_factory, no_sleep):
    """Test a split vote fails without proposing and is not retried."""
    providers = [
        provider_factory("A", [verdict_factory(Verdict.SUPPORTED)]),
        provider_factory("B", [verdict_factory(Verdict.REFUTED)]),
    ]
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, providers, relayer, sleep=no_sleep)
    orchestrator.idempotency.try_add(question_id)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.FAILED
    assert orchestrator.status()["questions"][question_id]["error"] == "no consensus: requires manual resolution"
    assert orchestrator.idempotency.contains(question_id)
    assert _proposals(ledger) == []


@pytest.mark.asyncio
async def test_terminal_revert_releases_question(arbitrator, relayer, agreeing_providers, no_sleep):
    """Test an unfunded relayer fails terminally without retries."""
    ledger = InMemoryLedger(arbitrator=arbitrator, clock=lambda: 1_700_000_000)
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)
    orchestrator.idempotency.try_add(question_id)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.FAILED
    assert orchestrator.status()["questions"][question_id]["error"] == "terminal: insufficient_funds"
    assert not orchestrator.idempotency.contains(question_id)
    assert no_sleep.delays == []


@pytest.mark.asyncio
async def test_transient_submission_failure_is_retried(arbitrator, relayer, agreeing_providers, no_sleep):
    """Test a dropped connection is retried with backoff."""
    ledger = _flaky_ledger(arbitrator, relayer, failures=[LedgerUnavailableError("connection reset")])
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.DONE
    assert ledger.propose_attempts == 2
    assert no_sleep.delays == [1.0]
    assert len(_proposals(ledger)) == 1


@pytest.mark.asyncio
async def test_retries_exhausted_releases_question(arbitrator, relayer, agreeing_providers, no_sleep):
    """Test persistent transport failure gives up and frees the id."""
    failures = [LedgerUnavailableError("down") for _ in range(10)]
    ledger = _flaky_ledger(arbitrator, relayer, failures=failures)
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep, submission_max_retries=2)
    orchestrator.idempotency.try_add(question_id)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.FAILED
    assert orchestrator.status()["questions"][question_id]["error"].startswith("retries exhausted")
    assert ledger.propose_attempts == 3
    assert not orchestrator.idempotency.contains(question_id)


@pytest.mark.asyncio
async def test_unconfirmed_submission_that_landed_is_not_resent(arbitrator, relayer, agreeing_providers, no_sleep):
    """Test a timeout after the proposal landed ends without a second proposal."""
    ledger = _flaky_ledger(
        arbitrator, relayer, failures=[SubmissionTimeoutError("no receipt")], land_before_failing=True
    )
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.DONE
    assert ledger.propose_attempts == 1
    assert len(_proposals(ledger)) == 1


@pytest.mark.asyncio
async def test_existing_assertion_skips_consensus(ledger, relayer, agreeing_providers, no_sleep):
    """Test a question already proposed by someone else is left alone."""
    question_id, _ = await _ask(ledger)
    other = "0x0000000000000000000000000000000000000bee"
    ledger.fund(other, PROPOSER_BOND)
    payload = b'{"verdict":"Refuted","summary":"x","sources":[],"confidence":1}'
    await ledger.submit_transaction(
        other, ledger.contract_address, "propose",
        {"question_id": question_id, "answer_payload": payload}, value=PROPOSER_BOND,
    )
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    state = await orchestrator.process_question(question_id, QUESTION)

    assert state == QuestionState.DONE
    assert agreeing_providers[0].fetch_calls == 0
    assert len(_proposals(ledger)) == 1


@pytest.mark.asyncio
async def test_gas_limit_has_headroom(arbitrator, relayer, agreeing_providers, no_sleep):
    """Test the submitted gas limit is the estimate plus 20%."""
    ledger = _flaky_ledger(arbitrator, relayer)
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    await orchestrator.process_question(question_id, QUESTION)

    gas_limit = ledger.gas_limits[0]
    payload = (await ledger.call(ledger.contract_address, "getAssertion", {"question_id": question_id})).answer_payload
    estimate = await ledger.estimate_gas(
        ledger.contract_address, "propose", {"question_id": question_id, "answer_payload": payload}
    )
    assert gas_limit == estimate * 120 // 100


@pytest.mark.asyncio
async def test_dispatch_drops_invalid_events(ledger, relayer, agreeing_providers, no_sleep):
    """Test events without an id or with a blank question are dropped."""
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep, check_recent_questions=False)
    await orchestrator.start()
    try:
        blank = LedgerEvent(name="QuestionRequested", args={"question_id": "0x1", "question": "  "}, block_number=1, tx_hash="0x")
        missing = LedgerEvent(name="QuestionRequested", args={"question": "Why?"}, block_number=1, tx_hash="0x")
        assert await orchestrator.dispatch(blank) is None
        assert await orchestrator.dispatch(missing) is None
    finally:
        await orchestrator.stop()
    assert len(orchestrator.idempotency) == 0


@pytest.mark.asyncio
async def test_dispatch_refused_when_stopped(ledger, relayer, agreeing_providers):
    """Test no new work is accepted outside start/stop."""
    _, event = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer)

    assert await orchestrator.dispatch(event) is None
    assert len(orchestrator.idempotency) == 0


@pytest.mark.asyncio
async def test_scan_recent_counts_events(ledger, relayer, agreeing_providers, no_sleep):
    """Test the re-scan enqueues question events from recent blocks."""
    await _ask(ledger, "First question?")
    await _ask(ledger, "Second question?")
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    assert await orchestrator.scan_recent() == 2


@pytest.mark.asyncio
async def test_scan_recent_survives_unavailable_ledger(ledger, relayer, agreeing_providers, no_sleep):
    """Test an unreachable ledger yields an empty scan."""

    async def unavailable():
        raise LedgerUnavailableError("rpc down")

    ledger.block_number = unavailable
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    assert await orchestrator.scan_recent() == 0


@pytest.mark.asyncio
async def test_status_reports_states(ledger, relayer, agreeing_providers, no_sleep):
    """Test the operator snapshot."""
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)
    await orchestrator.process_question(question_id, QUESTION)

    status = orchestrator.status()

    assert status["running"] is False
    assert status["identity"] == relayer
    assert status["proposals_submitted"] == 1
    assert status["questions"][question_id] == {"state": "done", "error": None}


@pytest.mark.asyncio
async def test_scan_recent_skips_blocks_already_scanned(ledger, relayer, agreeing_providers, no_sleep):
    """Test each re-scan only covers blocks mined since the previous one."""
    await _ask(ledger, "First question?")
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep)

    assert await orchestrator.scan_recent() == 1
    assert await orchestrator.scan_recent() == 0

    await _ask(ledger, "Second question?")
    assert await orchestrator.scan_recent() == 1


@pytest.mark.asyncio
async def test_poller_does_not_replay_terminal_failure(arbitrator, relayer, agreeing_providers):
    """Test a terminally failed question is processed once while the poller keeps running."""
    ledger = InMemoryLedger(arbitrator=arbitrator, clock=lambda: 1_700_000_000)
    question_id, _ = await _ask(ledger)
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, poll_interval=0.01)

    calls: List[str] = []
    process_question = orchestrator.process_question

    async def counting(qid, question):
        calls.append(qid)
        return await process_question(qid, question)

    orchestrator.process_question = counting
    await orchestrator.start()
    try:
        await _wait_until(lambda: orchestrator.state_of(question_id) == QuestionState.FAILED)
        await asyncio.sleep(0.2)
    finally:
        await orchestrator.stop()

    assert calls == [question_id]
    assert orchestrator.status()["questions"][question_id]["error"] == "terminal: insufficient_funds"
    assert _proposals(ledger) == []


class GatedProvider:
    """Evidence provider that answers only once its gate is opened."""

    def __init__(self, name: str, answer):
        self.provider_name = name
        self.is_available = True
        self.gate = asyncio.Event()
        self._answer = answer
        self._question = ""

    async def fetch_verdict(self, question):
        self._question = question
        await self.gate.wait()
        return self._answer

    async def complete(self, prompt):
        return self._question


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_question(ledger, relayer, verdict_factory):
    """Test shutdown lets a question that is mid-consensus finish and propose."""
    provider = GatedProvider("Slow", verdict_factory(Verdict.SUPPORTED))
    question_id, event = await _ask(ledger)
    orchestrator = _orchestrator(ledger, [provider], relayer, check_recent_questions=False)
    await orchestrator.start()
    await orchestrator.dispatch(event)
    await _wait_until(lambda: orchestrator.state_of(question_id) == QuestionState.RESOLVING)

    stopping = asyncio.create_task(orchestrator.stop())
    await asyncio.sleep(0.05)
    assert not stopping.done()
    assert await orchestrator.dispatch(event) is None

    provider.gate.set()
    await asyncio.wait_for(stopping, timeout=2.0)

    assert orchestrator.state_of(question_id) == QuestionState.DONE
    assert len(_proposals(ledger)) == 1
    assert orchestrator.idempotency.contains(question_id)


@pytest.mark.asyncio
async def test_stop_cancels_work_past_shutdown_timeout(ledger, relayer, verdict_factory):
    """Test a question still running at the shutdown deadline is cancelled and released."""
    provider = GatedProvider("Stuck", verdict_factory(Verdict.SUPPORTED))
    question_id, event = await _ask(ledger)
    orchestrator = _orchestrator(ledger, [provider], relayer, check_recent_questions=False, shutdown_timeout=0.05)
    await orchestrator.start()
    await orchestrator.dispatch(event)
    await _wait_until(lambda: orchestrator.state_of(question_id) == QuestionState.RESOLVING)

    await asyncio.wait_for(orchestrator.stop(), timeout=2.0)

    assert orchestrator.state_of(question_id) == QuestionState.FAILED
    assert orchestrator.status()["questions"][question_id]["error"] == "cancelled during shutdown"
    assert not orchestrator.idempotency.contains(question_id)
    assert orchestrator.status()["in_flight"] == 0
    assert _proposals(ledger) == []


@pytest.mark.asyncio
async def test_status_keeps_most_recent_questions(ledger, relayer, agreeing_providers, no_sleep):
    """Test per-question state is bounded."""
    orchestrator = _orchestrator(ledger, agreeing_providers, relayer, sleep=no_sleep, state_cache_size=2)
    question_ids = []
    for text in ("First question?", "Second question?", "Third question?"):
        question_id, _ = await _ask(ledger, text)
        await orchestrator.process_question(question_id, text)
        question_ids.append(question_id)

    questions = orchestrator.status()["questions"]

    assert set(questions) == set(question_ids[1:])
    assert orchestrator.state_of(question_ids[0]) is None
