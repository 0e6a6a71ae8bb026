"""API routes for payout and collection transactions."""

from typing import List, Optional

from fastapi import APIRouter, Query

from payouts.deps import SessionDep
from payouts.schemas import TransactionResponse
from payouts.transaction_service import TransactionProcessor

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=List[TransactionResponse])
async def list_transactions(
    db: SessionDep,
    schedule_id: Optional[int] = Query(None, alias="scheduleId"),
):
    """Transactions, newest first, optionally for one schedule."""
    return await TransactionProcessor.list_transactions(db, schedule_id=schedule_id)


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: int, db: SessionDep):
    return await TransactionProcessor.get_transaction(db, transaction_id)
