"""Ledger port: the append-only event log the assertion state machine lives on."""

from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

QUESTION_REQUESTED = "QuestionRequested"
ASSERTION_PROPOSED = "AssertionProposed"
ASSERTION_DISPUTED = "AssertionDisputed"
ASSERTION_RESOLVED = "AssertionResolved"
ASSERTION_FINALIZED = "AssertionFinalized"


class LedgerEvent(BaseModel):
    """An event emitted by a transaction."""

    name: str = Field(..., description="Event signature name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Decoded event arguments")
    block_number: int = Field(..., description="Block that included the event")
    tx_hash: str = Field(..., description="Hash of the emitting transaction")


class TransactionReceipt(BaseModel):
    """Confirmation of an included transaction."""

    tx_hash: str
    block_number: int
    sender: str
    gas_used: int
    return_value: Any = None
    events: List[LedgerEvent] = Field(default_factory=list)


class LedgerPort(Protocol):
    """Operations the oracle needs from the ledger."""

    async def submit_transaction(
        self,
        sender: str,
        contract_address: str,
        function: str,
        args: Dict[str, Any],
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> TransactionReceipt:
        """Submit and confirm a state-changing call.

        Raises:
            TransactionReverted: Deterministic rejection with a reason
            LedgerUnavailableError: Transport failure
        """
        ...

    async def estimate_gas(
        self,
        contract_address: str,
        function: str,
        args: Dict[str, Any],
    ) -> int:
        """Estimate gas for a call."""
        ...

    async def call(self, contract_address: str, function: str, args: Dict[str, Any]) -> Any:
        """Read-only call."""
        ...

    async def query_events(self, event_name: str, from_block: int, to_block: int) -> List[LedgerEvent]:
        """Pull events in an inclusive block range."""
        ...

    def subscribe(self, event_name: str) -> AsyncIterator[LedgerEvent]:
        """Push subscription to newly emitted events."""
        ...

    async def block_number(self) -> int:
        """Current head block."""
        ...

    async def get_balance(self, address: str) -> int:
        """Native balance in minor units."""
        ...
