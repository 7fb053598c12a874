"""Question submission endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ...domain.models.question import Question
from ...infrastructure.ledger.in_memory_ledger import InMemoryLedger
from .dependencies import get_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/questions", tags=["questions"])


class QuestionRequest(BaseModel):
    """Request model for submitting a question."""

    text: str = Field(..., min_length=1, description="Natural-language question")
    requester: str = Field(..., min_length=1, description="Identity submitting the question")


class QuestionSubmitted(BaseModel):
    """Response model for a submitted question."""

    question_id: str
    block_number: int
    tx_hash: str


@router.post("", response_model=QuestionSubmitted, status_code=201)
async def submit_question(
    request: QuestionRequest,
    ledger: InMemoryLedger = Depends(get_ledger),
) -> QuestionSubmitted:
    """Record a question on the ledger; the orchestrator picks it up from the event."""
    receipt = await ledger.submit_transaction(
        request.requester,
        ledger.contract_address,
        "requestQuestion",
        {"text": request.text},
    )
    logger.info(f"📨 Question {receipt.return_value[:10]} submitted by {request.requester}")
    return QuestionSubmitted(
        question_id=receipt.return_value,
        block_number=receipt.block_number,
        tx_hash=receipt.tx_hash,
    )


@router.get("/{question_id}", response_model=Question)
async def get_question(question_id: str, ledger: InMemoryLedger = Depends(get_ledger)) -> Question:
    """Look up a submitted question."""
    question = await ledger.call(ledger.contract_address, "getQuestion", {"question_id": question_id})
    if question is None:
        raise HTTPException(status_code=404, detail=f"Question not found: {question_id}")
    return question
