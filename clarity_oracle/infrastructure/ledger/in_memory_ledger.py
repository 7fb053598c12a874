"""In-process ledger hosting the assertion state machine."""

import asyncio
import hashlib
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set

from ...domain.models.assertion import DISPUTER_BOND, LIVENESS_PERIOD, PROPOSER_BOND
from ...domain.models.errors import AssertionRejected, RejectionReason, TransactionReverted
from ...domain.ports.ledger import LedgerEvent, LedgerPort, TransactionReceipt
from ...domain.services.assertion_state_machine import AssertionStateMachine

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_ADDRESS = "0x00000000000000000000000000000000c1a71e00"

BASE_GAS = 21_000
CALLDATA_BYTE_GAS = 16
FUNCTION_GAS = {
    "requestQuestion": 60_000,
    "propose": 90_000,
    "dispute": 50_000,
    "resolveDispute": 45_000,
    "finalize": 40_000,
}


class InMemoryLedger(LedgerPort):
    """Append-only ledger with native balances, events and gas metering.

    Every transaction is atomic: the attached value is debited, the state
    machine runs, and on rejection balances and pending events are rolled
    back and TransactionReverted is raised with the machine's reason.
    """

    def __init__(
        self,
        arbitrator: str,
        contract_address: str = DEFAULT_CONTRACT_ADDRESS,
        clock: Optional[Callable[[], float]] = None,
        gas_price: int = 0,
        proposer_bond: int = PROPOSER_BOND,
        disputer_bond: int = DISPUTER_BOND,
        liveness_period: int = LIVENESS_PERIOD,
    ):
        """Initialize the ledger.

        Args:
            arbitrator: Address allowed to resolve disputes
            contract_address: Address the state machine is deployed at
            clock: Wall clock in seconds
            gas_price: Fee per gas unit charged to senders
            proposer_bond: Exact proposer bond
            disputer_bond: Exact disputer bond
            liveness_period: Challenge window length in seconds
        """
        self.contract_address = contract_address
        self.gas_price = gas_price
        self._clock = clock or time.time
        self._time_offset = 0
        self._lock = asyncio.Lock()
        self._balances: Dict[str, int] = {}
        self._receive_gas: Dict[str, int] = {}
        self._events: List[LedgerEvent] = []
        self._pending: List[tuple] = []
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}
        self._block = 0
        self.contract = AssertionStateMachine(
            arbitrator=arbitrator,
            transfer=self._pay_out,
            emit=lambda name, args: self._pending.append((name, args)),
            proposer_bond=proposer_bond,
            disputer_bond=disputer_bond,
            liveness_period=liveness_period,
        )
        self._writes = {
            "requestQuestion": lambda sender, args, value, now: self.contract.request_question(
                sender, args["text"], now
            ),
            "propose": lambda sender, args, value, now: self.contract.propose(
                sender, args["question_id"], args["answer_payload"], value, now
            ),
            "dispute": lambda sender, args, value, now: self.contract.dispute(
                sender, args["question_id"], value, now
            ),
            "resolveDispute": lambda sender, args, value, now: self.contract.resolve_dispute(
                sender, args["question_id"], args["outcome_favors_proposer"]
            ),
            "finalize": lambda sender, args, value, now: self.contract.finalize(
                sender, args["question_id"], now
            ),
        }
        self._reads = {
            "getAssertion": lambda args: self.contract.get_assertion(args["question_id"]),
            "getQuestion": lambda args: self.contract.get_question(args["question_id"]),
            "canDispute": lambda args: self.contract.can_dispute(args["question_id"], self.now()),
            "PROPOSER_BOND": lambda args: self.contract.proposer_bond,
            "DISPUTER_BOND": lambda args: self.contract.disputer_bond,
            "LIVENESS_PERIOD": lambda args: self.contract.liveness_period,
        }

    # Test and operator helpers

    def now(self) -> int:
        """Ledger time in whole seconds."""
        return int(self._clock()) + self._time_offset

    def advance_time(self, seconds: int) -> None:
        self._time_offset += seconds

    def fund(self, address: str, amount: int) -> None:
        key = address.lower()
        self._balances[key] = self._balances.get(key, 0) + amount

    def balance_of(self, address: str) -> int:
        return self._balances.get(address.lower(), 0)

    def set_receive_gas(self, address: str, gas: Optional[int]) -> None:
        """Gas an address consumes on receipt; None restores a plain account."""
        if gas is None:
            self._receive_gas.pop(address.lower(), None)
        else:
            self._receive_gas[address.lower()] = gas

    @property
    def events(self) -> List[LedgerEvent]:
        return list(self._events)

    # LedgerPort

    async def submit_transaction(
        self,
        sender: str,
        contract_address: str,
        function: str,
        args: Dict[str, Any],
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> TransactionReceipt:
        """Execute a state-changing call atomically and mine it into a block."""
        async with self._lock:
            self._check_contract(contract_address)
            handler = self._writes.get(function)
            if handler is None:
                raise TransactionReverted(RejectionReason.UNKNOWN_FUNCTION, f"Unknown function {function}")

            gas_used = self._gas_for(function, args)
            if gas_limit is not None and gas_used > gas_limit:
                raise TransactionReverted(
                    RejectionReason.OUT_OF_GAS, f"{function} needs {gas_used} gas, limit {gas_limit}"
                )
            fee = gas_used * self.gas_price
            if self.balance_of(sender) < value + fee:
                raise TransactionReverted(
                    RejectionReason.INSUFFICIENT_FUNDS,
                    f"Insufficient balance: need {value + fee}, have {self.balance_of(sender)}",
                )

            snapshot = dict(self._balances)
            self._pending = []
            self._move(sender, self.contract_address, value)
            try:
                result = handler(sender, args, value, self.now())
            except AssertionRejected as e:
                self._balances = snapshot
                self._pending = []
                logger.info(f"↩️ {function} from {sender} reverted: {e.reason.value}")
                raise TransactionReverted(e.reason, e.message)
            except Exception:
                self._balances = snapshot
                self._pending = []
                logger.error(f"❌ {function} from {sender} failed, transaction rolled back", exc_info=True)
                raise
            self._move(sender, "", fee)

            self._block += 1
            tx_hash = self._tx_hash(sender, function)
            emitted = [
                LedgerEvent(name=name, args=event_args, block_number=self._block, tx_hash=tx_hash)
                for name, event_args in self._pending
            ]
            self._pending = []
            self._events.extend(emitted)
            for event in emitted:
                for queue in self._subscribers.get(event.name, []):
                    queue.put_nowait(event)

            return TransactionReceipt(
                tx_hash=tx_hash,
                block_number=self._block,
                sender=sender,
                gas_used=gas_used,
                return_value=result,
                events=emitted,
            )

    async def estimate_gas(self, contract_address: str, function: str, args: Dict[str, Any]) -> int:
        self._check_contract(contract_address)
        if function not in self._writes:
            raise TransactionReverted(RejectionReason.UNKNOWN_FUNCTION, f"Unknown function {function}")
        return self._gas_for(function, args)

    async def call(self, contract_address: str, function: str, args: Dict[str, Any]) -> Any:
        self._check_contract(contract_address)
        reader = self._reads.get(function)
        if reader is None:
            raise TransactionReverted(RejectionReason.UNKNOWN_FUNCTION, f"Unknown function {function}")
        return reader(args)

    async def query_events(self, event_name: str, from_block: int, to_block: int) -> List[LedgerEvent]:
        return [
            event
            for event in self._events
            if event.name == event_name and from_block <= event.block_number <= to_block
        ]

    async def subscribe(self, event_name: str) -> AsyncIterator[LedgerEvent]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(event_name, []).append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers[event_name].remove(queue)

    async def block_number(self) -> int:
        return self._block

    async def get_balance(self, address: str) -> int:
        return self.balance_of(address)

    # Internals

    def _pay_out(self, recipient: str, amount: int, gas_limit: int) -> bool:
        if self._receive_gas.get(recipient.lower(), 0) > gas_limit:
            return False
        if self.balance_of(self.contract_address) < amount:
            return False
        self._move(self.contract_address, recipient, amount)
        return True

    def _move(self, source: str, destination: str, amount: int) -> None:
        if amount == 0:
            return
        self._balances[source.lower()] = self.balance_of(source) - amount
        if destination:
            self.fund(destination, amount)

    def _check_contract(self, contract_address: str) -> None:
        if contract_address.lower() != self.contract_address.lower():
            raise TransactionReverted(RejectionReason.UNKNOWN_CONTRACT, f"No contract at {contract_address}")

    def _gas_for(self, function: str, args: Dict[str, Any]) -> int:
        calldata = 0
        for value in args.values():
            if isinstance(value, (bytes, bytearray)):
                calldata += len(value)
            elif isinstance(value, str):
                calldata += len(value.encode("utf-8"))
            else:
                calldata += 32
        return BASE_GAS + CALLDATA_BYTE_GAS * calldata + FUNCTION_GAS.get(function, 0)

    def _tx_hash(self, sender: str, function: str) -> str:
        digest = hashlib.sha3_256(f"{self._block}:{sender.lower()}:{function}:{len(self._events)}".encode("utf-8"))
        return "0x" + digest.hexdigest()
