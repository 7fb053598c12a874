"""Orchestrator: watches the ledger for questions and proposes consensus answers."""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from cachetools import TTLCache
from pydantic import BaseModel, Field

from ..models.assertion import Assertion, AssertionStatus
from ..models.errors import (
    LedgerUnavailableError,
    RejectionReason,
    SubmissionTimeoutError,
    TransactionReverted,
    is_retryable_submission_error,
)
from ..ports.ledger import QUESTION_REQUESTED, LedgerEvent, LedgerPort, TransactionReceipt
from .consensus_service import ConsensusEngine
from .idempotency import IdempotencyLedger
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)


class QuestionState(str, Enum):
    """Per-question processing state."""

    SEEN = "seen"
    RESOLVING = "resolving"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


class OrchestratorConfig(BaseModel):
    """Configuration for the orchestrator."""

    contract_address: str = Field(..., description="Address of the assertion state machine")
    check_recent_questions: bool = Field(default=True, description="Periodically re-scan recent blocks")
    recent_blocks_range: int = Field(default=20, description="Blocks covered by each re-scan")
    poll_interval: float = Field(default=15.0, description="Seconds between re-scans")
    queue_maxsize: int = Field(default=100, description="Bound of the dispatch queue")
    confirmation_timeout: float = Field(default=60.0, description="Seconds to wait for a receipt")
    submission_max_retries: int = Field(default=3, description="Retries for transient submission failures")
    submission_base_delay: float = Field(default=2.0, description="First backoff delay in seconds")
    submission_max_delay: float = Field(default=30.0, description="Backoff ceiling in seconds")
    default_gas_limit: int = Field(default=200_000, description="Gas limit when estimation fails")
    max_gas_limit: int = Field(default=500_000, description="Gas limit ceiling")
    shutdown_timeout: float = Field(default=120.0, description="Seconds to let in-flight work finish")
    state_cache_size: int = Field(default=1000, description="Questions tracked for status reporting")
    state_ttl: float = Field(default=3600.0, description="Seconds a question's state is kept")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.submission_max_retries,
            base_delay=self.submission_base_delay,
            max_delay=self.submission_max_delay,
        )


class Orchestrator:
    """Drives each observed question through consensus and proposal exactly once.

    Two producers (a push subscription and a periodic re-scan of recent
    blocks) feed one bounded queue. A single dispatch loop deduplicates
    through the idempotency ledger and starts one task per question, so a
    slow question never blocks the others.
    """

    def __init__(
        self,
        ledger: LedgerPort,
        consensus_engine: ConsensusEngine,
        identity: str,
        config: OrchestratorConfig,
        idempotency: Optional[IdempotencyLedger] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize the orchestrator.

        Args:
            ledger: Ledger port
            consensus_engine: Off-ledger consensus engine
            identity: Address used to sign proposals
            config: Orchestrator configuration
            idempotency: Shared idempotency ledger (a fresh one if omitted)
            sleep: Awaitable sleep used for backoff and polling
        """
        self._ledger = ledger
        self._engine = consensus_engine
        self.identity = identity
        self._config = config
        self._idempotency = idempotency or IdempotencyLedger()
        self._sleep = sleep or asyncio.sleep
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=config.queue_maxsize)
        self._accepting = False
        self._background: List[asyncio.Task] = []
        self._tasks: Set[asyncio.Task] = set()
        self._states: TTLCache = TTLCache(maxsize=config.state_cache_size, ttl=config.state_ttl)
        self._errors: TTLCache = TTLCache(maxsize=config.state_cache_size, ttl=config.state_ttl)
        self._last_scanned_block: Optional[int] = None
        self.proposals_submitted = 0

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def idempotency(self) -> IdempotencyLedger:
        return self._idempotency

    def state_of(self, question_id: str) -> Optional[QuestionState]:
        return self._states.get(question_id)

    def status(self) -> Dict[str, Any]:
        """Snapshot for operators."""
        return {
            "running": self._accepting,
            "identity": self.identity,
            "in_flight": len(self._tasks),
            "proposals_submitted": self.proposals_submitted,
            "questions": {
                question_id: {"state": state.value, "error": self._errors.get(question_id)}
                for question_id, state in self._states.items()
            },
        }

    async def start(self) -> None:
        """Start both producers and the dispatch loop."""
        if self._accepting:
            logger.warning("⚠️ Orchestrator already started")
            return

        logger.info("🚀 Starting orchestrator")
        await self._check_balance()

        self._accepting = True
        self._background = [
            asyncio.create_task(self._dispatch_loop(), name="dispatch"),
            asyncio.create_task(self._subscription_producer(), name="subscription"),
        ]
        if self._config.check_recent_questions:
            self._background.append(asyncio.create_task(self._poll_producer(), name="poller"))
        else:
            logger.info("ℹ️ Skipping recent questions scan, only new events will be processed")
        logger.info(f"✅ Orchestrator started as {self.identity}, listening for {QUESTION_REQUESTED} events")

    async def stop(self) -> None:
        """Stop accepting work and let in-flight questions finish or time out."""
        if not self._accepting and not self._background:
            return
        logger.info("🛑 Stopping orchestrator...")
        self._accepting = False

        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []

        if self._tasks:
            logger.info(f"⏳ Waiting for {len(self._tasks)} in-flight questions")
            pending = list(self._tasks)
            _, still_running = await asyncio.wait(pending, timeout=self._config.shutdown_timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("✅ Orchestrator stopped")

    async def dispatch(self, event: LedgerEvent) -> Optional[asyncio.Task]:
        """Deduplicate a question event and start processing it.

        Returns the processing task, or None if the event was dropped.
        """
        question_id = event.args.get("question_id")
        question = event.args.get("question")
        if not question_id:
            logger.error(f"❌ Could not extract question id from event: {event.args}")
            return None
        if not isinstance(question, str) or not question.strip():
            logger.error(f"❌ Invalid question received for {question_id}: {question!r}")
            return None
        if not self._accepting:
            logger.warning(f"⚠️ Shutting down, not dispatching {question_id}")
            return None
        if not self._idempotency.try_add(question_id):
            logger.debug(f"Question {question_id} already submitted or in flight")
            return None

        self._set_state(question_id, QuestionState.SEEN)
        task = asyncio.create_task(self._run(question_id, question))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every dispatched question has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def scan_recent(self) -> int:
        """Enqueue question events from the recent block range. Returns the count.

        Blocks already covered by an earlier scan are skipped, so an event
        whose question failed terminally is not replayed on every poll.
        """
        try:
            head = await self._ledger.block_number()
            from_block = max(0, head - self._config.recent_blocks_range)
            if self._last_scanned_block is not None:
                from_block = max(from_block, self._last_scanned_block + 1)
            if from_block > head:
                return 0
            events = await retry_async(
                lambda: self._ledger.query_events(QUESTION_REQUESTED, from_block, head),
                policy=self._config.retry_policy(),
                is_retryable=is_retryable_submission_error,
                label="recent questions scan",
                sleep=self._sleep,
            )
        except LedgerUnavailableError as e:
            logger.warning(f"⚠️ Could not scan recent questions: {e}. Will process new events only")
            return 0

        self._last_scanned_block = head
        logger.debug(f"🔍 Checked blocks {from_block}-{head}: {len(events)} question events")
        for event in events:
            await self._queue.put(event)
        return len(events)

    async def process_question(self, question_id: str, question: str) -> QuestionState:
        """Resolve one question and propose the answer."""
        logger.info(f"🔔 Processing question {question_id[:10]}: {question}")

        existing = await self._read_assertion(question_id)
        if existing.status != AssertionStatus.UNPROPOSED:
            logger.info(f"ℹ️ Assertion for {question_id[:10]} already on-ledger ({existing.status.value})")
            return self._set_state(question_id, QuestionState.DONE)

        self._set_state(question_id, QuestionState.RESOLVING)
        consensus = await self._engine.get_consensus(question)
        if not consensus.is_clear or consensus.answer is None:
            # Kept in the idempotency ledger: a new question must be submitted.
            logger.error(f"❌ No consensus for {question_id[:10]}, requires manual resolution")
            self._errors[question_id] = "no consensus: requires manual resolution"
            return self._set_state(question_id, QuestionState.FAILED)

        self._set_state(question_id, QuestionState.SUBMITTING)
        payload = consensus.answer.to_payload()
        try:
            receipt = await self._submit_proposal(question_id, payload)
        except TransactionReverted as e:
            if e.reason == RejectionReason.ALREADY_PROPOSED and await self._proposed_by_us(question_id):
                logger.info(f"ℹ️ Earlier unconfirmed proposal for {question_id[:10]} landed")
                return self._set_state(question_id, QuestionState.DONE)
            return self._fail(question_id, f"terminal: {e.reason.value}")
        except (LedgerUnavailableError, SubmissionTimeoutError) as e:
            return self._fail(question_id, f"retries exhausted: {e}")

        if receipt is None:
            logger.info(f"ℹ️ Assertion for {question_id[:10]} was proposed while resolving")
            return self._set_state(question_id, QuestionState.DONE)

        self.proposals_submitted += 1
        logger.info(
            f"✅ Proposed {consensus.answer.verdict.value} for {question_id[:10]} "
            f"(tx {receipt.tx_hash[:10]}, block {receipt.block_number}, "
            f"agreement {consensus.consensus_count}/{consensus.total_models})"
        )
        return self._set_state(question_id, QuestionState.DONE)

    async def _run(self, question_id: str, question: str) -> None:
        try:
            await self.process_question(question_id, question)
        except asyncio.CancelledError:
            self._fail(question_id, "cancelled during shutdown")
            raise
        except Exception as e:
            logger.error(f"❌ PROCESSING FAILED for {question_id[:10]}: {e}", exc_info=True)
            self._fail(question_id, str(e))

    async def _submit_proposal(self, question_id: str, payload: bytes) -> Optional[TransactionReceipt]:
        address = self._config.contract_address
        bond = await self._ledger.call(address, "PROPOSER_BOND", {})
        balance = await self._ledger.get_balance(self.identity)
        if balance < bond:
            raise TransactionReverted(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Insufficient balance: need {bond}, have {balance}",
            )

        args = {"question_id": question_id, "answer_payload": payload}
        gas_limit = await self._gas_limit(args)
        logger.info(f"📝 Proposing for {question_id[:10]}: {len(payload)} bytes, bond {bond}, gas limit {gas_limit}")

        async def attempt() -> Optional[TransactionReceipt]:
            # Time has passed since dispatch: re-check before spending the bond.
            current = await self._read_assertion(question_id)
            if current.status != AssertionStatus.UNPROPOSED:
                return None
            try:
                return await asyncio.wait_for(
                    self._ledger.submit_transaction(
                        self.identity, address, "propose", args, value=bond, gas_limit=gas_limit
                    ),
                    timeout=self._config.confirmation_timeout,
                )
            except asyncio.TimeoutError:
                raise SubmissionTimeoutError(
                    f"No confirmation within {self._config.confirmation_timeout}s"
                )

        return await retry_async(
            attempt,
            policy=self._config.retry_policy(),
            is_retryable=is_retryable_submission_error,
            label=f"propose {question_id[:10]}",
            sleep=self._sleep,
        )

    async def _gas_limit(self, args: Dict[str, Any]) -> int:
        try:
            estimate = await self._ledger.estimate_gas(self._config.contract_address, "propose", args)
        except Exception as e:
            logger.warning(f"⚠️ Gas estimation failed, using default: {e}")
            return self._config.default_gas_limit
        return min(estimate * 120 // 100, self._config.max_gas_limit)

    async def _read_assertion(self, question_id: str) -> Assertion:
        return await self._ledger.call(
            self._config.contract_address, "getAssertion", {"question_id": question_id}
        )

    async def _proposed_by_us(self, question_id: str) -> bool:
        assertion = await self._read_assertion(question_id)
        return assertion.proposer is not None and assertion.proposer.lower() == self.identity.lower()

    async def _check_balance(self) -> None:
        try:
            balance = await self._ledger.get_balance(self.identity)
            bond = await self._ledger.call(self._config.contract_address, "PROPOSER_BOND", {})
        except LedgerUnavailableError as e:
            logger.warning(f"⚠️ Could not check relayer balance: {e}")
            return
        logger.info(f"Relayer balance: {balance}, required bond: {bond}")
        if balance < bond:
            logger.warning("⚠️ Insufficient balance for proposing assertions, fund the relayer identity")

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._queue.task_done()

    async def _subscription_producer(self) -> None:
        while self._accepting:
            try:
                async for event in self._ledger.subscribe(QUESTION_REQUESTED):
                    await self._queue.put(event)
                logger.warning("⚠️ Subscription ended, re-subscribing")
                await self._sleep(self._config.poll_interval)
            except LedgerUnavailableError as e:
                logger.warning(f"⚠️ Subscription dropped: {e}. Re-subscribing in {self._config.poll_interval}s")
                await self._sleep(self._config.poll_interval)

    async def _poll_producer(self) -> None:
        while self._accepting:
            await self.scan_recent()
            await self._sleep(self._config.poll_interval)

    def _set_state(self, question_id: str, state: QuestionState) -> QuestionState:
        self._states[question_id] = state
        if state != QuestionState.FAILED:
            self._errors.pop(question_id, None)
        return state

    def _fail(self, question_id: str, reason: str) -> QuestionState:
        self._idempotency.remove(question_id)
        self._errors[question_id] = reason
        logger.error(f"❌ Proposal for {question_id[:10]} failed ({reason}); released for re-attempt")
        return self._set_state(question_id, QuestionState.FAILED)
