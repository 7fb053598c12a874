"""Bonded, time-windowed assertion state machine hosted on the ledger."""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from ..models.assertion import (
    DISPUTER_BOND,
    LIVENESS_PERIOD,
    PROPOSER_BOND,
    Assertion,
    AssertionStatus,
)
from ..models.errors import AssertionRejected, RejectionReason
from ..models.evidence import MAX_CITATIONS, MAX_PAYLOAD_BYTES, decode_payload
from ..models.question import MAX_QUESTION_LENGTH, Question, canonicalize, derive_question_id
from ..ports.ledger import (
    ASSERTION_DISPUTED,
    ASSERTION_FINALIZED,
    ASSERTION_PROPOSED,
    ASSERTION_RESOLVED,
    QUESTION_REQUESTED,
)

logger = logging.getLogger(__name__)

PAYOUT_GAS_LIMIT = 30_000

# (recipient, amount, gas_limit) -> delivered
TransferFn = Callable[[str, int, int], bool]
EmitFn = Callable[[str, Dict[str, Any]], None]


class AssertionStateMachine:
    """Holds one assertion per question id and escrows every bond.

    Each transition validates everything first, pays out (if it has to), and
    only then commits the new record and emits its event. A rejected
    transition raises AssertionRejected and leaves no state change.

    Transitions:
        UNPROPOSED -> PROPOSED            propose (exact proposer bond)
        PROPOSED   -> DISPUTED            dispute (exact disputer bond, window open)
        DISPUTED   -> RESOLVED            resolve_dispute (arbitrator only)
        PROPOSED   -> FINALIZED           finalize (window closed)

    A dispute is never resolved by timeout; it waits for the arbitrator.
    """

    def __init__(
        self,
        arbitrator: str,
        transfer: TransferFn,
        emit: Optional[EmitFn] = None,
        proposer_bond: int = PROPOSER_BOND,
        disputer_bond: int = DISPUTER_BOND,
        liveness_period: int = LIVENESS_PERIOD,
    ):
        if disputer_bond <= proposer_bond:
            raise ValueError("Disputer bond must exceed proposer bond")
        self.arbitrator = arbitrator
        self.proposer_bond = proposer_bond
        self.disputer_bond = disputer_bond
        self.liveness_period = liveness_period
        self._transfer = transfer
        self._emit = emit or (lambda name, args: None)
        self._questions: Dict[str, Question] = {}
        self._assertions: Dict[str, Assertion] = {}
        self._nonce = 0
        self._escrow = 0

    @property
    def escrow_balance(self) -> int:
        """Total bonds currently held."""
        return self._escrow

    def request_question(self, sender: str, text: str, now: int) -> str:
        """Register a question and return its id."""
        canonical = canonicalize(text)
        if not canonical:
            raise AssertionRejected(RejectionReason.EMPTY_QUESTION)
        if len(canonical.encode("utf-8")) > MAX_QUESTION_LENGTH:
            raise AssertionRejected(
                RejectionReason.QUESTION_TOO_LONG,
                f"Question exceeds {MAX_QUESTION_LENGTH} bytes",
            )

        question_id = derive_question_id(canonical, sender, self._nonce, now)
        self._nonce += 1
        self._questions[question_id] = Question(
            question_id=question_id,
            text=canonical,
            requester=sender,
            timestamp=now,
        )
        self._emit(
            QUESTION_REQUESTED,
            {"question_id": question_id, "requester": sender, "question": canonical, "timestamp": now},
        )
        return question_id

    def propose(self, sender: str, question_id: str, answer_payload: bytes, value: int, now: int) -> Assertion:
        """Propose an answer with exactly the proposer bond attached."""
        if question_id not in self._questions:
            raise AssertionRejected(RejectionReason.UNKNOWN_QUESTION)

        current = self.get_assertion(question_id)
        if current.is_live:
            raise AssertionRejected(RejectionReason.ALREADY_PROPOSED)
        self._reject_terminal(current)

        if value != self.proposer_bond:
            raise AssertionRejected(
                RejectionReason.WRONG_BOND,
                f"Proposer bond must be exactly {self.proposer_bond}, got {value}",
            )
        self._validate_payload(answer_payload)

        updated = replace(
            current,
            status=AssertionStatus.PROPOSED,
            answer_payload=bytes(answer_payload),
            proposer=sender,
            proposer_bond=value,
            challenge_window_end=now + self.liveness_period,
        )
        self._assertions[question_id] = updated
        self._escrow += value
        self._emit(
            ASSERTION_PROPOSED,
            {
                "question_id": question_id,
                "proposer": sender,
                "data": bytes(answer_payload),
                "challenge_window_end": updated.challenge_window_end,
            },
        )
        return replace(updated)

    def dispute(self, sender: str, question_id: str, value: int, now: int) -> Assertion:
        """Dispute a proposed assertion while its challenge window is open."""
        current = self.get_assertion(question_id)
        self._reject_terminal(current)
        if current.status == AssertionStatus.DISPUTED:
            raise AssertionRejected(RejectionReason.ALREADY_DISPUTED)
        if current.status != AssertionStatus.PROPOSED:
            raise AssertionRejected(RejectionReason.NOT_PROPOSED)
        if now >= current.challenge_window_end:
            raise AssertionRejected(RejectionReason.CHALLENGE_WINDOW_CLOSED)
        if value != self.disputer_bond:
            raise AssertionRejected(
                RejectionReason.WRONG_BOND,
                f"Disputer bond must be exactly {self.disputer_bond}, got {value}",
            )

        updated = replace(
            current,
            status=AssertionStatus.DISPUTED,
            disputer=sender,
            disputer_bond=value,
        )
        self._assertions[question_id] = updated
        self._escrow += value
        self._emit(ASSERTION_DISPUTED, {"question_id": question_id, "disputer": sender, "timestamp": now})
        logger.info(f"⚖️ Assertion {question_id[:10]} disputed, requires manual resolution by arbitrator")
        return replace(updated)

    def resolve_dispute(self, sender: str, question_id: str, outcome_favors_proposer: bool) -> Assertion:
        """Arbitrator settles a dispute; the winner takes both bonds."""
        if sender.lower() != self.arbitrator.lower():
            raise AssertionRejected(RejectionReason.UNAUTHORIZED, "Only the arbitrator can resolve disputes")

        current = self.get_assertion(question_id)
        self._reject_terminal(current)
        if current.status != AssertionStatus.DISPUTED:
            raise AssertionRejected(RejectionReason.NOT_DISPUTED)

        winner = current.proposer if outcome_favors_proposer else current.disputer
        pot = current.proposer_bond + current.disputer_bond
        if not self._transfer(winner, pot, PAYOUT_GAS_LIMIT):
            raise AssertionRejected(RejectionReason.TRANSFER_FAILED, f"Payout to {winner} failed")

        updated = replace(
            current,
            status=AssertionStatus.RESOLVED,
            resolution_outcome=outcome_favors_proposer,
        )
        self._assertions[question_id] = updated
        self._escrow -= pot
        self._emit(
            ASSERTION_RESOLVED,
            {"question_id": question_id, "outcome": outcome_favors_proposer, "winner": winner},
        )
        return replace(updated)

    def finalize(self, sender: str, question_id: str, now: int) -> Assertion:
        """Settle an undisputed assertion after its challenge window. Anyone may call."""
        current = self.get_assertion(question_id)
        self._reject_terminal(current)
        if current.status == AssertionStatus.DISPUTED:
            raise AssertionRejected(RejectionReason.ALREADY_DISPUTED)
        if current.status != AssertionStatus.PROPOSED:
            raise AssertionRejected(RejectionReason.NOT_PROPOSED)
        if now < current.challenge_window_end:
            raise AssertionRejected(RejectionReason.CHALLENGE_WINDOW_OPEN)

        if not self._transfer(current.proposer, current.proposer_bond, PAYOUT_GAS_LIMIT):
            raise AssertionRejected(RejectionReason.TRANSFER_FAILED, f"Bond return to {current.proposer} failed")

        updated = replace(current, status=AssertionStatus.FINALIZED)
        self._assertions[question_id] = updated
        self._escrow -= current.proposer_bond
        self._emit(ASSERTION_FINALIZED, {"question_id": question_id, "proposer": current.proposer})
        return replace(updated)

    def get_assertion(self, question_id: str) -> Assertion:
        """Copy of the current record (UNPROPOSED if none exists)."""
        assertion = self._assertions.get(question_id)
        if assertion is None:
            return Assertion(question_id=question_id)
        return replace(assertion)

    def get_question(self, question_id: str) -> Optional[Question]:
        return self._questions.get(question_id)

    def can_dispute(self, question_id: str, now: int) -> bool:
        assertion = self.get_assertion(question_id)
        return assertion.status == AssertionStatus.PROPOSED and now < assertion.challenge_window_end

    def _reject_terminal(self, assertion: Assertion) -> None:
        if assertion.status == AssertionStatus.FINALIZED:
            raise AssertionRejected(RejectionReason.ALREADY_FINALIZED)
        if assertion.status == AssertionStatus.RESOLVED:
            raise AssertionRejected(RejectionReason.ALREADY_RESOLVED)

    def _validate_payload(self, payload: bytes) -> None:
        if not payload:
            raise AssertionRejected(RejectionReason.EMPTY_PAYLOAD)
        if len(payload) > MAX_PAYLOAD_BYTES:
            raise AssertionRejected(
                RejectionReason.PAYLOAD_TOO_LARGE,
                f"Payload exceeds {MAX_PAYLOAD_BYTES} bytes",
            )
        try:
            document = decode_payload(payload)
        except ValueError as e:
            raise AssertionRejected(RejectionReason.MALFORMED_PAYLOAD, str(e))
        if len(document.get("sources", [])) > MAX_CITATIONS:
            raise AssertionRejected(
                RejectionReason.TOO_MANY_CITATIONS,
                f"At most {MAX_CITATIONS} citations allowed",
            )
