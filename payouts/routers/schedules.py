"""API routes for collection and payout schedules."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, status

from payouts.deps import LocksDep, ProcessorDep, SessionDep
from payouts.schedule_service import ScheduleService
from payouts.schemas import (
    ProcessRequest,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleStatusUpdate,
    ScheduleUpdate,
    TransactionResponse,
)
from payouts.transaction_service import TransactionProcessor

router = APIRouter(prefix="/schedules", tags=["schedules"])
log = logging.getLogger(__name__)


# ============================================================================
# SCHEDULE ENDPOINTS
# ============================================================================

@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(request: ScheduleCreate, db: SessionDep, locks: LocksDep):
    """Create a collection or payout schedule.

    - **entityType**: pharmacy, vendor (collection) or doctor (payout)
    - **frequency**: weekly, biweekly, monthly
    - **nextDueDate**: defaults to 30 days from now
    - **alertSettings**: omitted fields fall back to the configured defaults
    """
    return await ScheduleService.create(db, request.model_dump(exclude_none=True), locks=locks)


@router.get("", response_model=List[ScheduleResponse])
async def list_schedules(
    db: SessionDep,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    schedule_type: Optional[str] = Query(None, alias="scheduleType"),
    schedule_status: Optional[str] = Query(None, alias="status"),
):
    """List schedules, earliest due first."""
    return await ScheduleService.list(
        db, entity_type=entity_type, schedule_type=schedule_type, status=schedule_status
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: int, db: SessionDep):
    return await ScheduleService.get(db, schedule_id)


@router.patch("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(schedule_id: int, request: ScheduleUpdate, db: SessionDep, locks: LocksDep):
    """Partially update a schedule. Only the fields sent are changed."""
    changes = request.model_dump(exclude_unset=True)
    return await ScheduleService.update(db, schedule_id, changes, locks=locks)


@router.post("/{schedule_id}/status", response_model=ScheduleResponse)
async def set_schedule_status(
    schedule_id: int,
    request: ScheduleStatusUpdate,
    db: SessionDep,
    locks: LocksDep,
):
    """Pause, resume or cancel a schedule. Cancelled is final."""
    return await ScheduleService.set_status(db, schedule_id, request.status, locks=locks)


# ============================================================================
# EXECUTION ENDPOINTS
# ============================================================================

@router.post(
    "/{schedule_id}/process",
    response_model=TransactionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_schedule(
    schedule_id: int,
    db: SessionDep,
    processor: ProcessorDep,
    request: Optional[ProcessRequest] = None,
):
    """Start executing the schedule's pending amount.

    The transaction is returned in `processing`; the payment rail's answer
    is applied in the background.
    """
    notes = request.notes if request else None
    return await processor.process(db, schedule_id, notes=notes)


@router.get("/{schedule_id}/transactions", response_model=List[TransactionResponse])
async def list_schedule_transactions(schedule_id: int, db: SessionDep):
    """Transactions of one schedule, newest first."""
    await ScheduleService.get(db, schedule_id)
    return await TransactionProcessor.list_transactions(db, schedule_id=schedule_id)
