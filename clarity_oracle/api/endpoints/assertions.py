"""Assertion lifecycle endpoints: propose, dispute, resolve, finalize."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...infrastructure.ledger.in_memory_ledger import InMemoryLedger
from .dependencies import get_ledger

router = APIRouter(prefix="/assertions", tags=["assertions"])


class ProposeRequest(BaseModel):
    """Request model for proposing an answer."""

    sender: str = Field(..., min_length=1, description="Proposer identity")
    answer_payload: str = Field(..., description="JSON answer payload")
    value: Optional[int] = Field(None, ge=0, description="Attached bond (defaults to the proposer bond)")


class DisputeRequest(BaseModel):
    """Request model for disputing an assertion."""

    sender: str = Field(..., min_length=1, description="Disputer identity")
    value: Optional[int] = Field(None, ge=0, description="Attached bond (defaults to the disputer bond)")


class ResolveRequest(BaseModel):
    """Request model for settling a dispute."""

    sender: str = Field(..., min_length=1, description="Arbitrator identity")
    outcome_favors_proposer: bool = Field(..., description="True if the proposer was right")


class FinalizeRequest(BaseModel):
    """Request model for finalizing an assertion."""

    sender: str = Field(..., min_length=1, description="Any identity")


async def _transact(
    ledger: InMemoryLedger,
    sender: str,
    function: str,
    args: Dict[str, Any],
    value: int = 0,
) -> Dict[str, Any]:
    receipt = await ledger.submit_transaction(sender, ledger.contract_address, function, args, value=value)
    return {
        "assertion": receipt.return_value.to_dict(),
        "tx_hash": receipt.tx_hash,
        "block_number": receipt.block_number,
        "events": [event.name for event in receipt.events],
    }


@router.get("/{question_id}")
async def get_assertion(question_id: str, ledger: InMemoryLedger = Depends(get_ledger)) -> Dict[str, Any]:
    """Current assertion record (unproposed if none)."""
    assertion = await ledger.call(ledger.contract_address, "getAssertion", {"question_id": question_id})
    return assertion.to_dict()


@router.get("/{question_id}/can-dispute")
async def can_dispute(question_id: str, ledger: InMemoryLedger = Depends(get_ledger)) -> Dict[str, Any]:
    """Whether the assertion is proposed and inside its challenge window."""
    allowed = await ledger.call(ledger.contract_address, "canDispute", {"question_id": question_id})
    return {"question_id": question_id, "can_dispute": allowed}


@router.post("/{question_id}/propose")
async def propose(
    question_id: str,
    request: ProposeRequest,
    ledger: InMemoryLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    value = request.value
    if value is None:
        value = await ledger.call(ledger.contract_address, "PROPOSER_BOND", {})
    return await _transact(
        ledger,
        request.sender,
        "propose",
        {"question_id": question_id, "answer_payload": request.answer_payload.encode("utf-8")},
        value=value,
    )


@router.post("/{question_id}/dispute")
async def dispute(
    question_id: str,
    request: DisputeRequest,
    ledger: InMemoryLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    value = request.value
    if value is None:
        value = await ledger.call(ledger.contract_address, "DISPUTER_BOND", {})
    return await _transact(ledger, request.sender, "dispute", {"question_id": question_id}, value=value)


@router.post("/{question_id}/resolve")
async def resolve(
    question_id: str,
    request: ResolveRequest,
    ledger: InMemoryLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await _transact(
        ledger,
        request.sender,
        "resolveDispute",
        {"question_id": question_id, "outcome_favors_proposer": request.outcome_favors_proposer},
    )


@router.post("/{question_id}/finalize")
async def finalize(
    question_id: str,
    request: FinalizeRequest,
    ledger: InMemoryLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return await _transact(ledger, request.sender, "finalize", {"question_id": question_id})
