"""Domain model for bonded assertions."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

PROPOSER_BOND = 10**16  # 0.01 native units
DISPUTER_BOND = 2 * 10**16
LIVENESS_PERIOD = 48 * 60 * 60  # seconds


class AssertionStatus(Enum):
    """Lifecycle of an assertion."""
    UNPROPOSED = "unproposed"
    PROPOSED = "proposed"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    FINALIZED = "finalized"


@dataclass
class Assertion:
    """The bonded claim attached to a question id."""

    question_id: str
    status: AssertionStatus = AssertionStatus.UNPROPOSED
    answer_payload: bytes = b""
    proposer: Optional[str] = None
    disputer: Optional[str] = None
    proposer_bond: int = 0
    disputer_bond: int = 0
    challenge_window_end: int = 0
    resolution_outcome: Optional[bool] = None

    @property
    def is_live(self) -> bool:
        """Proposed or disputed, i.e. not yet terminal."""
        return self.status in (AssertionStatus.PROPOSED, AssertionStatus.DISPUTED)

    @property
    def is_terminal(self) -> bool:
        return self.status in (AssertionStatus.RESOLVED, AssertionStatus.FINALIZED)

    @property
    def escrowed(self) -> int:
        """Bonds currently held for this assertion."""
        if not self.is_live:
            return 0
        return self.proposer_bond + self.disputer_bond

    def to_dict(self) -> Dict[str, Any]:
        """Convert assertion to dictionary for API responses."""
        return {
            "question_id": self.question_id,
            "status": self.status.value,
            "answer_payload": self.answer_payload.decode("utf-8", errors="replace"),
            "proposer": self.proposer,
            "disputer": self.disputer,
            "proposer_bond": str(self.proposer_bond),
            "disputer_bond": str(self.disputer_bond),
            "challenge_window_end": self.challenge_window_end,
            "resolution_outcome": self.resolution_outcome,
        }
